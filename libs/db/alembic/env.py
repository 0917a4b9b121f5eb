# ruff: noqa: I001
"""
Alembic environment for the reconciliation tables.

The database URL comes from `DATABASE_URL` (a workspace `.env` is loaded first
without overriding the process environment) or from `sqlalchemy.url` in the
INI file. Autogenerate only considers `rc_*` tables, so the engine can share a
database with other schemas.
"""

from __future__ import annotations

import os
from logging.config import fileConfig
from typing import Any

from alembic import context
from sqlalchemy import engine_from_config, pool
from dotenv import load_dotenv, find_dotenv

from db import metadata as target_metadata

_TABLE_PREFIX = "rc_"

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Works from the repo root and from inside libs/db.
dotenv_path = find_dotenv(usecwd=True)
if dotenv_path:
    load_dotenv(dotenv_path=dotenv_path, override=False)

db_url = os.getenv("DATABASE_URL") or config.get_main_option("sqlalchemy.url") or ""
if not db_url:
    raise RuntimeError(
        "DATABASE_URL is not set. Provide it via environment or set "
        "'sqlalchemy.url' in alembic.ini."
    )
config.set_main_option("sqlalchemy.url", db_url)


def include_object(obj: Any, name: str | None, type_: str, reflected: bool, compare_to: Any) -> bool:
    if type_ == "table":
        return bool(name and name.startswith(_TABLE_PREFIX))
    table = getattr(obj, "table", None)
    if table is not None:
        return table.name.startswith(_TABLE_PREFIX)
    return True


_COMMON: dict[str, Any] = {
    "target_metadata": target_metadata,
    "compare_type": True,
    "include_object": include_object,
}


def run_migrations_offline() -> None:
    context.configure(url=db_url, literal_binds=True, **_COMMON)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = dict(config.get_section(config.config_ini_section) or {})
    section["sqlalchemy.url"] = db_url
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(connection=connection, **_COMMON)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

"""Test helpers to stub the OpenAI Responses client used by ai_extraction.py.

``OpenAIStub`` has the ``client.responses.create(**kwargs)`` shape. It either
returns a response whose ``output_text`` is the configured reply, or raises the
configured error. ``stub_factory`` wraps one stub so it can replace the
``OpenAI`` class via ``monkeypatch.setattr(ai_extraction, "OpenAI", ...)``.
"""

from __future__ import annotations

import json
from typing import Any

BEGIN = "BEGIN_MESSAGE\n"
END = "\nEND_MESSAGE"


def extract_message(user_content: str) -> str:
    b = user_content.find(BEGIN)
    e = user_content.rfind(END)
    if b == -1 or e == -1 or e <= b:
        raise AssertionError("ai_extraction: input missing embedded message block")
    return user_content[b + len(BEGIN) : e]


class OpenAIStub:
    """Minimal stub matching ``openai.OpenAI`` for ``ai_extraction.py``.

    Parameters
    ----------
    reply:
        A mapping (serialized to JSON) or a raw string used as ``output_text``.
    error:
        When set, ``responses.create`` raises it instead of replying.
    calls_out:
        Appended with each call's kwargs for lightweight assertions.
    """

    def __init__(
        self,
        reply: dict[str, Any] | str | None = None,
        *,
        error: BaseException | None = None,
        calls_out: list[dict[str, Any]] | None = None,
    ) -> None:
        self._reply = reply
        self._error = error
        self._calls = calls_out if calls_out is not None else []

        class _Responses:
            def __init__(self, outer: OpenAIStub) -> None:
                self._outer = outer

            def create(self, **kwargs):
                self._outer._calls.append(kwargs)
                if self._outer._error is not None:
                    raise self._outer._error
                reply = self._outer._reply

                class _Resp:
                    output_text: str | None

                resp = _Resp()
                if isinstance(reply, dict):
                    resp.output_text = json.dumps(reply)
                else:
                    resp.output_text = reply
                return resp

        self.responses = _Responses(self)

    @property
    def calls(self) -> list[dict[str, Any]]:
        return self._calls


def stub_factory(stub: OpenAIStub):
    """Return a class-like callable that ignores client kwargs and yields ``stub``."""

    inits: list[dict[str, Any]] = []

    def _factory(*_a: Any, **kw: Any) -> OpenAIStub:
        inits.append(kw)
        return stub

    _factory.inits = inits  # type: ignore[attr-defined]
    return _factory

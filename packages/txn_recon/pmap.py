"""Order-preserving bounded-concurrency map over a thread pool.

Extraction is I/O bound (at most one AI call per message), so threads are
enough. The first mapper error propagates and pending work is cancelled.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor


def p_map[InT, OutT](
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
) -> list[OutT]:
    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    items = list(iterable)
    if concurrency == 1 or len(items) <= 1:
        return [mapper(item) for item in items]

    pool = ThreadPoolExecutor(
        max_workers=min(concurrency, len(items)), thread_name_prefix="txn_recon"
    )
    try:
        futures = [pool.submit(mapper, item) for item in items]
        return [f.result() for f in futures]
    except BaseException:
        pool.shutdown(wait=False, cancel_futures=True)
        raise
    finally:
        pool.shutdown(wait=True)


__all__ = ["p_map"]

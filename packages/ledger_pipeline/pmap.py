"""Bounded, order-preserving thread-pool map.

A small ``p-map`` style helper: at most ``concurrency`` mapper calls run at
once, results come back in input order, and work that has not started yet is
cancelled on the first error.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
    thread_name_prefix: str = "ledger-map",
) -> list[OutT]:
    """Map ``iterable`` through ``mapper`` with bounded concurrency.

    The first mapper exception propagates after pending (unstarted) work is
    cancelled. Mappers that must not abort the batch should catch their own
    errors and return a value describing them.
    """

    if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    items = list(iterable)
    if not items:
        return []
    if concurrency == 1 or len(items) == 1:
        return [mapper(item) for item in items]

    results: dict[int, OutT] = {}
    pending = iter(enumerate(items))
    with ThreadPoolExecutor(
        max_workers=min(concurrency, len(items)), thread_name_prefix=thread_name_prefix
    ) as pool:
        active: dict[Future[OutT], int] = {}

        def _top_up() -> None:
            while len(active) < concurrency:
                try:
                    idx, item = next(pending)
                except StopIteration:
                    return
                active[pool.submit(mapper, item)] = idx

        _top_up()
        while active:
            done, _ = wait(active, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = active.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception:
                    for other in active:
                        other.cancel()
                    raise
            _top_up()

    return [results[i] for i in range(len(items))]


__all__ = ["p_map"]

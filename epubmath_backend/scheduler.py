from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def run_with_concurrency(
    items: Sequence[T],
    concurrency: int,
    worker: Callable[[T], Awaitable[R]],
) -> list[R]:
    """Run worker over items with at most `concurrency` calls in flight.

    Runners pull the next unclaimed index from a shared counter and store each
    result at its item's index, so the returned list is in input order no
    matter which call finishes first. The counter is only touched between
    awaits on one event loop, which makes the claim step serial.

    A runner whose call raises stops pulling; the others drain the rest of
    the list. Once everything has settled the failure with the lowest item
    index is re-raised.
    """
    if not items:
        return []

    results: list[Optional[R]] = [None] * len(items)
    failures: dict[int, BaseException] = {}
    worker_count = min(max(1, concurrency), len(items))
    next_index = 0

    async def runner(name: str) -> None:
        nonlocal next_index
        while True:
            current = next_index
            next_index += 1
            if current >= len(items):
                return
            try:
                results[current] = await worker(items[current])
            except Exception as exc:
                log.error("%s: item %s failed: %s", name, current, exc)
                failures[current] = exc
                return

    log.debug("Running %s item(s) on %s worker(s)", len(items), worker_count)
    await asyncio.gather(*(runner(f"worker-{i + 1}") for i in range(worker_count)))

    if failures:
        raise failures[min(failures)]
    return results  # type: ignore[return-value]

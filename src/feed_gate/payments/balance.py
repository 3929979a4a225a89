"""All-or-nothing balance aggregation over a set of addresses."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Iterable

from feed_gate.rpc.adapter import RpcAdapter

logger = logging.getLogger("feed_gate.payments.balance")


async def aggregate_balance(adapter: RpcAdapter, addresses: Iterable[str]) -> Decimal:
    """Return the total unspent balance held by *addresses*.

    One balance query per address runs concurrently.  If any query fails,
    the queries still in flight are cancelled and the first error is raised;
    a partial sum is never returned.  Per-address sums are folded in sorted
    address order so the result does not depend on completion order.
    """
    ordered = sorted(set(addresses))
    if not ordered:
        return Decimal(0)

    tasks = [asyncio.ensure_future(adapter.get_address_balance(addr)) for addr in ordered]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    finally:
        stragglers = [task for task in tasks if not task.done()]
        for task in stragglers:
            task.cancel()
        if stragglers:
            await asyncio.gather(*stragglers, return_exceptions=True)

    failures = [
        (addr, task.exception())
        for addr, task in zip(ordered, tasks)
        if task in done and task.exception() is not None
    ]
    if failures:
        addr, exc = failures[0]
        logger.warning(
            f"Balance check failed for {addr} ({len(failures)} of {len(ordered)} failed): {exc}"
        )
        raise exc

    total = Decimal(0)
    for task in tasks:
        total += task.result()
    return total

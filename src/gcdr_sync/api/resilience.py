#!/usr/bin/env python3
"""Bounded-concurrency helpers shared by the fetchers and the orchestrator.

Plan building fans out independent reads (attribute fetches, relation
lookups, registry existence checks) and the orchestrator may fan out within a
dependency level. Both go through ``process_concurrent`` so the fan-out limit
is applied the same way everywhere.

Example:
    async def fetch_attrs(entity):
        return await api.get(f"/attributes/{entity.id}")

    attrs = await process_concurrent(entities, fetch_attrs, max_concurrent=5)
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def process_concurrent(
    items: list[T],
    processor: Callable[[T], Awaitable[Any]],
    max_concurrent: int = 5,
    return_exceptions: bool = False,
) -> list[Any]:
    """Process items concurrently with bounded concurrency.

    Uses a semaphore to limit the number of concurrent operations. A limit
    of 1 processes items strictly one after another in input order.

    Args:
        items: List of items to process
        processor: Async function to apply to each item
        max_concurrent: Maximum concurrent operations (default: 5)
        return_exceptions: If True, return exceptions instead of raising

    Returns:
        List of results in the same order as input items
    """
    if max_concurrent < 1:
        raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")

    semaphore = asyncio.Semaphore(max_concurrent)

    async def bounded_processor(item: T) -> Any:
        async with semaphore:
            return await processor(item)

    tasks = [bounded_processor(item) for item in items]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


__all__ = [
    "process_concurrent",
]

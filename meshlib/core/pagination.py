"""
Retrying, offset-paginated bulk retrieval.

A query is any coroutine function ``query_at(offset)`` answering a dict with
``data``, ``total_results`` and ``error``. Pages are delivered to ``on_page``
as soon as they arrive and are never rolled back, so a walk that gives up
half way still leaves the earlier pages applied.
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from meshlib.core.errors import QueryError
from meshlib.utils.console import print_debug, print_warn

QueryAt = Callable[[int], Awaitable[Dict[str, Any]]]


@dataclass
class FetchResult:
    pages: int = 0
    records: int = 0
    error: Optional[QueryError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def _call(query, *args) -> Dict[str, Any]:
    """Run a query, folding a raised exception into the error field."""
    try:
        response = await query(*args)
    except Exception as e:
        return {"data": [], "total_results": 0, "error": e}
    return response or {"data": [], "total_results": 0, "error": "empty response"}


async def fetch_once(query: Callable[[], Awaitable[Dict[str, Any]]],
                     max_retries: int = 5,
                     retry_delay: float = 1.0) -> Dict[str, Any]:
    """Issue a single query, retrying up to ``max_retries`` times on error."""
    attempts = 0
    while True:
        attempts += 1
        response = await _call(query)
        error = response.get("error")
        if not error:
            return response
        if attempts > max_retries:
            response["error"] = QueryError(
                f"Query failed after {attempts} attempts: {error}",
                attempts=attempts,
                cause=error,
            )
            return response
        print_debug(f"🔁 Query retry {attempts}/{max_retries}: {error}")
        if retry_delay > 0:
            await asyncio.sleep(retry_delay)


async def fetch_all(query_at: QueryAt,
                    start_offset: int = 0,
                    page_size: int = 100,
                    max_retries: int = 5,
                    on_page: Optional[Callable[[List[Any]], Any]] = None,
                    retry_delay: float = 1.0) -> FetchResult:
    """
    Walk every page of an offset-paginated result set.

    Each page is retried at the same offset up to ``max_retries`` times. When
    the budget runs out the walk stops and the error is reported in the
    result; pages delivered before that remain valid.
    """
    if page_size <= 0:
        raise ValueError("page_size must be positive")

    result = FetchResult()
    offset = max(0, int(start_offset or 0))

    while True:
        response = await fetch_once(lambda: query_at(offset), max_retries, retry_delay)
        error = response.get("error")
        if error:
            error.offset = offset
            print_warn(f"⚠️  Pagination stopped at offset {offset}: {error}")
            result.error = error
            return result

        data = response.get("data") or []
        total = int(response.get("total_results") or 0)
        if data and on_page is not None:
            delivered = on_page(data)
            if inspect.isawaitable(delivered):
                await delivered
        result.pages += 1
        result.records += len(data)

        if offset + page_size < total:
            offset += page_size
        else:
            return result

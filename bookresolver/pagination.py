"""Walk a cursor-paginated listing and fold it into one value."""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

PageFetcher = Callable[[str], Awaitable[Dict[str, Any]]]


async def aggregate_pages(
    fetch_page: PageFetcher,
    reducer: Callable[[T, Any], T],
    initial: T,
    url: Optional[str] = None,
    first_page: Optional[Dict[str, Any]] = None,
) -> T:
    """
    Follow ``next`` links to the end, reducing over every item.

    A page looks like ``{"items": [...], "next": url | None}``. Any fetch
    error propagates, so a total is either complete or not returned at all.

    Args:
        fetch_page: Coroutine fetching one page by URL
        reducer: ``reducer(acc, item) -> acc``
        initial: Identity value, returned as-is when there are no pages
        url: URL of the first page
        first_page: Already-fetched first page (e.g. embedded in a parent resource)

    Returns:
        The reduced value
    """
    acc = initial
    page = first_page
    next_url = url
    pages = 0

    if page is None and next_url:
        page = await fetch_page(next_url)

    while page is not None:
        pages += 1
        for item in page.get("items") or []:
            acc = reducer(acc, item)
        next_url = page.get("next")
        page = await fetch_page(next_url) if next_url else None

    logger.debug(f"Aggregated {pages} page(s)")
    return acc


def sum_field(name: str) -> Callable[[int, Any], int]:
    """Reducer summing a numeric field; missing values count as 0."""

    def add(total, item):
        value = item.get(name) if item else None
        return total + (value or 0)

    return add

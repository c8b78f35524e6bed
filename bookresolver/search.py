"""Fan a query out to every provider and merge the result lists."""
import asyncio
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from bookresolver.models import BookRecord
from bookresolver.race import Strategy
from bookresolver.request_log import RequestLog
from bookresolver.similarity import normalize_key_part

logger = logging.getLogger(__name__)


async def gather_all(strategies: Sequence[Strategy], log: Optional[RequestLog] = None) -> List[List[BookRecord]]:
    """
    Run every search strategy concurrently and wait for all of them.

    A failing strategy contributes an empty list instead of failing the
    whole search.

    Args:
        strategies: Search strategies, in output order
        log: Request log

    Returns:
        One result list per strategy
    """
    outcomes = await asyncio.gather(*(s.run() for s in strategies), return_exceptions=True)

    results = []
    for strategy, outcome in zip(strategies, outcomes):
        if isinstance(outcome, BaseException):
            message = f"{strategy.name} search failed: {outcome}"
            if log:
                log.error(message)
            else:
                logger.error(message)
            results.append([])
        else:
            results.append(list(outcome or []))
    return results


def dedup_key(book: BookRecord) -> Tuple[str, str]:
    """(normalized title, normalized first author)."""
    return normalize_key_part(book.title), normalize_key_part(book.primary_author)


def richness(book: BookRecord) -> int:
    """+1 for a rating, +1 for a cover image."""
    return (1 if book.rating else 0) + (1 if book.cover_image_url else 0)


def deduplicate_books(books: List[BookRecord]) -> List[BookRecord]:
    """
    Collapse records sharing a dedup key.

    On a collision the richer record replaces the kept one but keeps its
    slot; on a tie the first-seen record stays.

    Args:
        books: Concatenated result lists

    Returns:
        Deduplicated list in first-seen order
    """
    kept: Dict[Tuple[str, str], BookRecord] = {}
    for book in books:
        key = dedup_key(book)
        existing = kept.get(key)
        if existing is None or richness(book) > richness(existing):
            kept[key] = book
    return list(kept.values())


async def search_and_deduplicate(strategies: Sequence[Strategy], log: Optional[RequestLog] = None) -> List[BookRecord]:
    """Aggregate every provider's results and drop duplicates."""
    per_source = await gather_all(strategies, log)
    combined = [book for books in per_source for book in books]
    unique = deduplicate_books(combined)

    counts = " + ".join(f"{len(books)} {s.name}" for s, books in zip(strategies, per_source))
    message = f"Combined {counts} = {len(combined)} total, {len(unique)} after deduplication"
    if log:
        log.log(message)
    else:
        logger.info(message)
    return unique

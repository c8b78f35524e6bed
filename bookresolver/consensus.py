"""Infer an audiobook duration from what other readers entered."""
import logging
from collections import Counter
from typing import Optional

from bookresolver.models import ConsensusFact
from bookresolver.request_log import RequestLog

logger = logging.getLogger(__name__)

QUORUM = 2


async def resolve_consensus(
    store,
    book_id: str,
    quorum: int = QUORUM,
    log: Optional[RequestLog] = None,
) -> Optional[ConsensusFact]:
    """
    Accept a duration only when at least ``quorum`` submissions agree exactly.

    Zero values are defaults, not submissions, and are ignored. When more
    than one value reaches the quorum the best-supported one wins, ties
    going to the value seen first.

    Args:
        store: Store exposing ``list_audio_durations(book_id)``
        book_id: Book the deadlines refer to
        quorum: Minimum number of agreeing submissions
        log: Request log

    Returns:
        ConsensusFact, or None when there is no consensus
    """
    note = log.log if log else logger.info

    values = [v for v in await store.list_audio_durations(book_id) if v]
    if len(values) < quorum:
        note(f"Community cache: {len(values)} audio deadlines found for book {book_id}")
        return None

    # Counter preserves first-seen order, so max() keeps the earliest on ties
    counts = Counter(values)
    value, support = max(counts.items(), key=lambda pair: pair[1])
    if support < quorum:
        note(f"Community cache miss: no duration with {quorum}+ users")
        return None

    note(f"Community cache hit: {support} users have duration {value} hours")
    return ConsensusFact(value=value, support=support)

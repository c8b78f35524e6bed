"""Decide whether a search hit is the book the user asked for."""
from typing import Optional, Sequence

from bookresolver.models import MatchResult
from bookresolver.similarity import similarity

TITLE_THRESHOLD = 0.6
AUTHOR_THRESHOLD = 0.5


def is_good_match(
    query_title: str,
    result_title: str,
    query_author: Optional[str] = None,
    result_author: Optional[str] = None,
    title_threshold: float = TITLE_THRESHOLD,
    author_threshold: float = AUTHOR_THRESHOLD,
) -> MatchResult:
    """
    Check a candidate against a free-text title/author query.

    Without a query author only the title threshold applies. With one,
    both thresholds must hold; a candidate without an author scores 0.

    Args:
        query_title: Title the user typed
        result_title: Title of the candidate
        query_author: Optional author the user typed
        result_author: Author of the candidate
        title_threshold: Minimum title similarity
        author_threshold: Minimum author similarity

    Returns:
        MatchResult with the verdict and both scores
    """
    title_score = similarity(query_title, result_title)

    if not query_author or not query_author.strip():
        return MatchResult(is_match=title_score >= title_threshold, title_score=title_score)

    author_score = similarity(query_author, result_author) if result_author else 0.0
    return MatchResult(
        is_match=title_score >= title_threshold and author_score >= author_threshold,
        title_score=title_score,
        author_score=author_score,
    )


def best_author_match(query_author: Optional[str], names: Sequence[str]) -> Optional[str]:
    """Pick the candidate author closest to the query, or the first one."""
    if not names:
        return None
    if not query_author:
        return names[0]
    return max(names, key=lambda name: similarity(query_author, name))

"""String similarity used for match validation and deduplication keys."""
import re

from rapidfuzz.distance import Levenshtein

_PUNCTUATION = re.compile(r"[^\w\s]")


def similarity(a: str, b: str) -> float:
    """
    Normalized edit-distance similarity.

    Both inputs are trimmed and lowercased. Equal strings score 1.0, a
    single empty side scores 0.0, otherwise the score is
    ``1 - levenshtein(a, b) / max(len(a), len(b))``.

    Args:
        a: First string
        b: Second string

    Returns:
        Score in [0, 1]
    """
    a = (a or "").strip().lower()
    b = (b or "").strip().lower()

    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    distance = Levenshtein.distance(a, b)
    return 1.0 - distance / max(len(a), len(b))


def normalize_key_part(text) -> str:
    """Lowercase, drop punctuation and trim."""
    if not text:
        return ""
    return _PUNCTUATION.sub("", str(text).lower()).strip()

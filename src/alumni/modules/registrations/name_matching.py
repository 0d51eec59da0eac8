"""
Name Matching

Similarity between a submitted name and the name on a personnel record,
as a 0-100 score derived from Levenshtein edit distance.
"""

from rapidfuzz.distance import Levenshtein


def normalize_name(name: str | None) -> str:
    """Lowercase, split on any whitespace and rejoin with single spaces."""
    if not name:
        return ""
    return " ".join(name.lower().split())


def similarity(a: str | None, b: str | None) -> int:
    """
    Score two names from 0 (nothing in common) to 100 (identical after normalization).

    score = 100 * (1 - distance / max(len(a), len(b))), truncated to an int.
    An empty name on either side scores 0.
    """
    left = normalize_name(a)
    right = normalize_name(b)

    if not left or not right:
        return 0
    if left == right:
        return 100

    distance = Levenshtein.distance(left, right)
    longest = max(len(left), len(right))
    score = int(100 * (1 - distance / longest))
    return max(0, min(100, score))

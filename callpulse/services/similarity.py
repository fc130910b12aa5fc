"""
Edit-distance string similarity.

similarity(a, b) = (maxLen - levenshtein(a, b)) / maxLen, with two empty
strings counting as identical. The comparison is case-sensitive; callers that
want case-insensitive matching lower-case both sides first.

Used by FieldNormalizer to score normalization confidence and by the
DataQualityAuditor to spot near-duplicate operator spellings.
"""

from typing import Iterable, List, Tuple


def levenshtein_distance(a: str, b: str) -> int:
    """
    Classic Levenshtein distance (insert, delete, substitute; unit costs).

    Runs in O(len(a) * len(b)) time with two rolling rows.
    """
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    # Keep the shorter string on the inner loop
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """
    Similarity in [0, 1]; symmetric, and similarity(a, a) == 1.

    Examples:
        >>> similarity("kitten", "sitting")
        0.5714285714285714
        >>> similarity("", "")
        1.0
    """
    a = a or ''
    b = b or ''
    longer = max(len(a), len(b))
    if longer == 0:
        return 1.0
    return (longer - levenshtein_distance(a, b)) / longer


def find_similar(
    value: str,
    candidates: Iterable[str],
    threshold: float = 0.8,
    ignore_case: bool = True,
) -> List[Tuple[str, float]]:
    """
    Candidates whose similarity to `value` exceeds `threshold`.

    Exact matches (after optional case folding) are skipped. Results are
    ordered by descending similarity, then alphabetically.
    """
    needle = value.lower() if ignore_case else value
    matches: List[Tuple[str, float]] = []
    for candidate in candidates:
        other = candidate.lower() if ignore_case else candidate
        if other == needle:
            continue
        score = similarity(needle, other)
        if score > threshold:
            matches.append((candidate, score))
    matches.sort(key=lambda item: (-item[1], item[0]))
    return matches

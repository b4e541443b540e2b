"""
Lexical string similarity based on Levenshtein edit distance.

Callers are responsible for case-folding; comparisons here are exact.
"""


def levenshtein(a: str, b: str) -> int:
    """Return the minimum number of single-character edits turning a into b."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

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
    Normalized similarity ratio in [0, 1].

    1 - levenshtein(a, b) / max(len(a), len(b)); two empty strings are identical.
    """
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / longest

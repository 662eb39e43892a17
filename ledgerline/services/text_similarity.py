"""
Description similarity helpers shared by duplicate detection and export
validation.
"""
import re
from typing import Set

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_text(text: str) -> str:
    """Lowercase and reduce to alphanumeric words separated by single spaces."""
    return " ".join(_NON_ALNUM.sub(" ", (text or "").lower()).split())


def significant_words(text: str) -> Set[str]:
    """Words longer than two characters."""
    return {word for word in normalize_text(text).split() if len(word) > 2}


def levenshtein_distance(s1: str, s2: str) -> int:
    """Calculate Levenshtein distance between two strings."""
    if len(s1) < len(s2):
        return levenshtein_distance(s2, s1)

    if len(s2) == 0:
        return len(s1)

    previous_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row

    return previous_row[-1]


def levenshtein_ratio(s1: str, s2: str) -> float:
    """1.0 for identical strings, 0.0 for nothing in common."""
    max_len = max(len(s1), len(s2))
    if max_len == 0:
        return 1.0
    return 1.0 - levenshtein_distance(s1, s2) / max_len


def jaccard_similarity(a: str, b: str) -> float:
    words_a = significant_words(a)
    words_b = significant_words(b)
    if not words_a and not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def description_similarity(a: str, b: str) -> float:
    """
    Similarity of two transaction descriptions.

    The larger of word-set Jaccard and normalized Levenshtein over the
    normalized text, so reordered words and small typos both score high.
    """
    norm_a = normalize_text(a)
    norm_b = normalize_text(b)
    if not norm_a and not norm_b:
        return 1.0
    if not norm_a or not norm_b:
        return 0.0
    if norm_a == norm_b:
        return 1.0
    return max(jaccard_similarity(norm_a, norm_b), levenshtein_ratio(norm_a, norm_b))

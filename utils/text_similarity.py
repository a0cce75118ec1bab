"""Normalized text similarity used to collapse near-duplicate insights."""
import math
from collections import Counter

DUPLICATE_THRESHOLD = 0.92


def _token_counts(text: str) -> Counter:
    return Counter(text.lower().split())


def cosine_similarity(a: str, b: str) -> float:
    """Cosine similarity of lowercase whitespace-token count vectors.

    Returns a value in [0, 1]. Two empty strings are treated as identical;
    an empty string against a non-empty one scores 0.
    """
    counts_a = _token_counts(a)
    counts_b = _token_counts(b)

    if not counts_a and not counts_b:
        return 1.0
    if not counts_a or not counts_b:
        return 0.0

    dot = sum(counts_a[token] * counts_b[token] for token in counts_a.keys() & counts_b.keys())
    norm_a = math.sqrt(sum(v * v for v in counts_a.values()))
    norm_b = math.sqrt(sum(v * v for v in counts_b.values()))

    # Float error can push identical vectors a hair above 1
    return min(1.0, dot / (norm_a * norm_b))


def is_duplicate(a: str, b: str, threshold: float = DUPLICATE_THRESHOLD) -> bool:
    return cosine_similarity(a, b) > threshold

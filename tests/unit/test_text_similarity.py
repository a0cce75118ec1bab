"""
Unit and Property Tests for Text Similarity
"""

import math

from hypothesis import given, strategies as st, settings

from utils.text_similarity import DUPLICATE_THRESHOLD, cosine_similarity, is_duplicate


class TestCosineSimilarity:

    def test_identical_text_scores_one(self):
        assert cosine_similarity("slow dashboard load", "slow dashboard load") == 1.0

    def test_case_is_ignored(self):
        assert cosine_similarity("Slow Dashboard", "slow dashboard") == 1.0

    def test_disjoint_text_scores_zero(self):
        assert cosine_similarity("billing invoice", "slow dashboard") == 0.0

    def test_one_extra_word_in_ten(self):
        base = "a b c d e f g h i j"
        score = cosine_similarity(base, base + " k")
        assert math.isclose(score, 10 / math.sqrt(110))
        assert score > DUPLICATE_THRESHOLD

    def test_empty_inputs(self):
        assert cosine_similarity("", "") == 1.0
        assert cosine_similarity("", "something") == 0.0

    def test_is_duplicate_uses_strict_threshold(self):
        assert is_duplicate("same words here", "same words here")
        assert not is_duplicate("export to csv", "import from excel")


words = st.lists(st.sampled_from(["slow", "export", "billing", "team", "dashboard", "sync"]), max_size=12)


@given(a=words, b=words)
@settings(max_examples=100, deadline=None)
def test_similarity_symmetric_and_bounded_property(a, b):
    text_a, text_b = " ".join(a), " ".join(b)
    forward = cosine_similarity(text_a, text_b)
    backward = cosine_similarity(text_b, text_a)

    assert math.isclose(forward, backward, abs_tol=1e-12)
    assert 0.0 <= forward <= 1.0

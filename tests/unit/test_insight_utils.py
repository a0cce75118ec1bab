"""
Unit Tests for Insight Normalization Rules
"""

import pytest

from models.db_models import InsightType
from utils.insight_utils import (
    build_summary,
    clamp_confidence,
    clip,
    extract_area,
    map_insight_type,
    suggested_actions,
)


class TestMapInsightType:

    @pytest.mark.parametrize("raw,expected", [
        ("pain_point", InsightType.pain),
        ("insight", InsightType.feedback),
        ("risk", InsightType.blocker),
        ("feature_request", InsightType.feature_request),
        ("Feature Request", InsightType.feature_request),
        ("buying-signal", InsightType.buying_signal),
        ("totally_new_kind", InsightType.feedback),
        ("", InsightType.feedback),
        (None, InsightType.feedback),
    ])
    def test_mapping(self, raw, expected):
        assert map_insight_type(raw) == expected


class TestClipAndClamp:

    def test_clip_keeps_short_text(self):
        assert clip("  short  ", 70) == "short"

    def test_clip_truncates_with_ellipsis(self):
        clipped = clip("x" * 100, 70)
        assert len(clipped) == 70
        assert clipped.endswith("...")

    def test_clamp_bounds(self):
        assert clamp_confidence(1.7) == 1.0
        assert clamp_confidence(-0.2) == 0.0
        assert clamp_confidence(0.42) == 0.42

    def test_clamp_missing_defaults(self):
        assert clamp_confidence(None) == 0.5
        assert clamp_confidence(float("nan")) == 0.5


class TestExtractArea:

    def test_billing(self):
        assert extract_area("Invoice confusion", "The invoice total is unclear") == "billing"

    def test_first_match_wins(self):
        # mentions onboarding and billing; onboarding is checked first
        assert extract_area("Signup asks for payment", "Payment requested during signup") == "onboarding"

    def test_short_keyword_needs_word_start(self):
        assert extract_area("Build failed", "The build broke yesterday") is None

    def test_no_match(self):
        assert extract_area("Nice people", "They liked the call") is None


class TestSuggestedActions:

    def test_high_confidence_pain(self):
        assert suggested_actions(InsightType.pain, 0.9) == [
            "Prioritize for immediate investigation",
            "Schedule follow-up with user",
        ]

    def test_low_confidence_blocker(self):
        assert suggested_actions(InsightType.blocker, 0.6) == ["Monitor for similar feedback"]

    def test_feature_request_validation_only_when_confident(self):
        assert suggested_actions(InsightType.feature_request, 0.5) == ["Add to product backlog"]
        assert "Validate with additional users" in suggested_actions(InsightType.idea, 0.85)

    def test_other_types_have_none(self):
        assert suggested_actions(InsightType.question, 0.9) == []


class TestBuildSummary:

    def test_counts_and_duration(self):
        text = " ".join(["word"] * 300)
        summary = build_summary(text, [InsightType.pain, InsightType.blocker, InsightType.idea])
        assert summary == "Analyzed 2-minute transcript with 2 pain points, 1 feature request extracted"

    def test_fallback_to_total(self):
        summary = build_summary("short call", [InsightType.question])
        assert summary == "Analyzed 0-minute transcript with 1 insights extracted"

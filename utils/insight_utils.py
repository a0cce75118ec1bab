"""Normalization rules applied to raw extraction candidates."""
import re
from typing import Iterable, List, Optional

from models.db_models import InsightType

MAX_TITLE_LENGTH = 70
MAX_DESCRIPTION_LENGTH = 200
DEFAULT_CONFIDENCE = 0.5
WORDS_PER_MINUTE = 150

# Provider-specific spellings that are not taxonomy names
_TYPE_ALIASES = {
    "pain_point": InsightType.pain,
    "insight": InsightType.feedback,
    "risk": InsightType.blocker,
}

_AREA_KEYWORDS = {
    "onboarding": ["onboard", "getting started", "first time", "signup", "registration"],
    "billing": ["billing", "payment", "invoice", "pricing", "subscription"],
    "ux": ["ui", "ux", "design", "interface", "layout", "navigation"],
    "performance": ["slow", "performance", "speed", "loading", "lag"],
    "integration": ["integration", "api", "webhook", "connect", "sync"],
    "reporting": ["report", "analytics", "dashboard", "metrics", "insights"],
    "collaboration": ["collaborate", "team", "sharing", "permission", "access"],
}

_AREA_PATTERNS = {
    area: [re.compile(r"\b" + re.escape(keyword)) for keyword in keywords]
    for area, keywords in _AREA_KEYWORDS.items()
}


def map_insight_type(raw_type: Optional[str]) -> InsightType:
    """Map a provider type string onto the closed taxonomy (default feedback)."""
    if not raw_type:
        return InsightType.feedback
    key = raw_type.strip().lower().replace("-", "_").replace(" ", "_")
    if key in _TYPE_ALIASES:
        return _TYPE_ALIASES[key]
    try:
        return InsightType(key)
    except ValueError:
        return InsightType.feedback


def clip(text: Optional[str], limit: int) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[:limit - 3].rstrip() + "..."


def clamp_confidence(value: Optional[float]) -> float:
    if value is None:
        return DEFAULT_CONFIDENCE
    try:
        value = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if value != value:  # NaN
        return DEFAULT_CONFIDENCE
    return max(0.0, min(1.0, value))


def extract_area(title: str, description: str) -> Optional[str]:
    """Best-effort product area tag; first matching area wins."""
    text = f"{title} {description}".lower()
    for area, patterns in _AREA_PATTERNS.items():
        if any(p.search(text) for p in patterns):
            return area
    return None


def suggested_actions(insight_type: InsightType, confidence: float) -> List[str]:
    high = confidence >= 0.8

    if insight_type in (InsightType.pain, InsightType.blocker):
        if high:
            return ["Prioritize for immediate investigation", "Schedule follow-up with user"]
        return ["Monitor for similar feedback"]
    if insight_type in (InsightType.feature_request, InsightType.idea):
        actions = ["Add to product backlog"]
        if high:
            actions.append("Validate with additional users")
        return actions
    if insight_type in (InsightType.gain, InsightType.outcome):
        return ["Document as success story", "Consider highlighting in marketing"]
    if insight_type == InsightType.objection:
        return ["Prepare response for sales team", "Update FAQ or documentation"]
    return []


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


def build_summary(text: str, insight_types: Iterable[InsightType]) -> str:
    """Fallback summary when the extraction step produced none."""
    types = list(insight_types)
    pains = sum(1 for t in types if t in (InsightType.pain, InsightType.blocker))
    features = sum(1 for t in types if t in (InsightType.feature_request, InsightType.idea))
    gains = sum(1 for t in types if t in (InsightType.gain, InsightType.outcome))

    parts = []
    if pains:
        parts.append(_plural(pains, "pain point"))
    if features:
        parts.append(_plural(features, "feature request"))
    if gains:
        parts.append(_plural(gains, "positive outcome"))

    counts = ", ".join(parts) if parts else f"{len(types)} insights"
    minutes = round(len(text.split()) / WORDS_PER_MINUTE)
    return f"Analyzed {minutes}-minute transcript with {counts} extracted"

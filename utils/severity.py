"""Severity derivation for insights.

Severity is never persisted. Every reader recomputes it from the
insight's type and confidence so a stale stored label cannot leak out.
"""
from typing import Union

from models.db_models import InsightType, Severity

# "risk" is not part of the stored taxonomy but providers still emit it
_BLOCKING_TYPES = {InsightType.blocker.value, "risk"}


def derive_severity(insight_type: Union[InsightType, str], confidence: float) -> Severity:
    """Map (type, confidence) onto high/medium/low.

    Blocking types: confidence > 0.7 is high, otherwise medium.
    Everything else: >= 0.8 high, >= 0.5 medium, else low.
    """
    type_value = insight_type.value if isinstance(insight_type, InsightType) else str(insight_type)

    if type_value in _BLOCKING_TYPES:
        return Severity.high if confidence > 0.7 else Severity.medium

    if confidence >= 0.8:
        return Severity.high
    if confidence >= 0.5:
        return Severity.medium
    return Severity.low

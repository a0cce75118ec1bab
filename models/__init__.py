"""Data models for the transcript insights service."""
from .db_models import (
    TranscriptModel,
    TranscriptActivityModel,
    InsightModel,
    ExportConfigModel,
    TranscriptOrigin,
    TranscriptStatus,
    InsightType,
    InsightStatus,
    Severity,
    ExportProvider,
)
from .extraction_models import (
    CallContext,
    ContextClassification,
    EvidenceQuote,
    RawInsightCandidate,
    ExtractionPass,
    ExtractionOutput,
)

__all__ = [
    # Database models
    "TranscriptModel",
    "TranscriptActivityModel",
    "InsightModel",
    "ExportConfigModel",
    "TranscriptOrigin",
    "TranscriptStatus",
    "InsightType",
    "InsightStatus",
    "Severity",
    "ExportProvider",
    # Extraction models
    "CallContext",
    "ContextClassification",
    "EvidenceQuote",
    "RawInsightCandidate",
    "ExtractionPass",
    "ExtractionOutput",
]

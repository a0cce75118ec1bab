"""
HTTP Request/Response Models

Wire bodies use camelCase keys; Python attributes stay snake_case. Both
spellings are accepted on input.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import Field, field_validator

from models.db_models import (
    ExportProvider,
    InsightModel,
    TranscriptActivityModel,
    TranscriptModel,
    TranscriptOrigin,
    TranscriptStatus,
)
from models.webhook_models import CamelModel
from utils.severity import derive_severity

MIN_WEBHOOK_CONTENT_LENGTH = 10


class TranscriptMetadataIn(CamelModel):
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    link_url: Optional[str] = None
    external_meeting_id: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, ge=0)
    participant_count: Optional[int] = Field(default=None, ge=0)
    language: str = "en"


class IngestRequest(CamelModel):
    """
    Request body for POST /transcripts.

    Attributes:
        title: Optional title; derived from the source when empty
        content: Raw transcript text (required)
        origin: Where the transcript came from
        owner_user_id: Owning user (required)
    """
    title: Optional[str] = None
    content: str = Field(..., description="Raw transcript text")
    origin: TranscriptOrigin = Field(default=TranscriptOrigin.chat_paste)
    owner_user_id: str = Field(..., description="User that owns the transcript")
    channel_id: Optional[str] = None
    metadata: Optional[TranscriptMetadataIn] = None

    @field_validator('content', 'owner_user_id')
    @classmethod
    def must_not_be_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("field cannot be empty or contain only whitespace")
        return v


class IngestResponse(CamelModel):
    transcript_id: UUID
    workflow_started: bool


class InboundWebhookRequest(CamelModel):
    """Body pushed by external recorders and automation tools."""
    content: str = Field(..., min_length=MIN_WEBHOOK_CONTENT_LENGTH)
    owner_user_id: str = Field(..., min_length=1)
    title: Optional[str] = None
    source: Optional[str] = Field(default=None, description="zoom, cloud, link, fireflies, ...")
    channel_id: Optional[str] = None
    meeting_id: Optional[str] = None
    link_url: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, ge=0)
    participant_count: Optional[int] = Field(default=None, ge=0)

    @field_validator('content')
    @classmethod
    def content_must_have_text(cls, v: str) -> str:
        if len(v.strip()) < MIN_WEBHOOK_CONTENT_LENGTH:
            raise ValueError(f"content must be at least {MIN_WEBHOOK_CONTENT_LENGTH} characters")
        return v


class InboundWebhookResponse(CamelModel):
    success: bool
    transcript_id: UUID
    workflow_started: bool
    message: str


class ActivityOut(CamelModel):
    activity_type: str
    message: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @classmethod
    def from_model(cls, activity: TranscriptActivityModel) -> "ActivityOut":
        return cls(
            activity_type=activity.activity_type,
            message=activity.message,
            metadata=activity.metadata_json or {},
            created_at=activity.created_at,
        )


class InsightOut(CamelModel):
    """Insight as shown to clients; severity is recomputed on every read."""
    id: UUID
    type: str
    title: str
    description: str
    confidence: float
    severity: str
    evidence: Optional[str] = None
    area: Optional[str] = None
    suggested_actions: List[str] = Field(default_factory=list)
    timestamp: Optional[str] = None
    speaker: Optional[str] = None
    exported: bool = False
    status: str
    export_destinations: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_model(cls, insight: InsightModel) -> "InsightOut":
        return cls(
            id=insight.id,
            type=insight.type.value,
            title=insight.title,
            description=insight.description,
            confidence=insight.confidence,
            severity=derive_severity(insight.type, insight.confidence).value,
            evidence=insight.evidence_text,
            area=insight.area,
            suggested_actions=insight.suggested_actions or [],
            timestamp=insight.timestamp_start,
            speaker=insight.speaker,
            exported=insight.exported,
            status=insight.status.value,
            export_destinations=insight.export_destinations or {},
        )


class TranscriptOut(CamelModel):
    id: UUID
    title: str
    origin: TranscriptOrigin
    status: TranscriptStatus
    owner_user_id: str
    channel_id: str
    language: str
    summary: Optional[str] = None
    context: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, transcript: TranscriptModel) -> "TranscriptOut":
        return cls(
            id=transcript.id,
            title=transcript.title,
            origin=transcript.origin,
            status=transcript.status,
            owner_user_id=transcript.owner_user_id,
            channel_id=transcript.channel_id,
            language=transcript.language,
            summary=transcript.summary,
            context=transcript.context_theme,
            created_at=transcript.created_at,
            processed_at=transcript.processed_at,
        )


class TranscriptDetailOut(TranscriptOut):
    activities: List[ActivityOut] = Field(default_factory=list)
    insights: List[InsightOut] = Field(default_factory=list)


class TranscriptListOut(CamelModel):
    transcripts: List[TranscriptOut]
    limit: int
    offset: int


class ArchiveResponse(CamelModel):
    transcript_id: UUID
    archived_insights: int


class CloudRecordingIn(CamelModel):
    meeting_id: str = Field(..., min_length=1)
    topic: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, ge=0)
    transcript_url: Optional[str] = None


class CloudImportRequest(CamelModel):
    owner_user_id: str = Field(..., min_length=1)
    access_token: str = Field(..., min_length=1, repr=False)
    recordings: List[CloudRecordingIn] = Field(default_factory=list)


class CloudImportResponse(CamelModel):
    imported: int
    skipped: int
    failed: int
    transcript_ids: List[str]


class ExportRequest(CamelModel):
    owner_user_id: str = Field(..., min_length=1)
    provider: ExportProvider
    insight_ids: List[UUID] = Field(..., min_length=1)


class ExportErrorOut(CamelModel):
    insight_id: UUID
    message: str


class ExportResponse(CamelModel):
    exported_count: int
    failed_count: int
    skipped_count: int
    remote_ids: List[str]
    errors: List[ExportErrorOut] = Field(default_factory=list)

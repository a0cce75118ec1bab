"""SQLModel table definitions for the transcript insight pipeline.

Tables:
    transcripts             - one row per ingested transcript (dedup key lives here)
    transcript_activities   - append-only audit log of lifecycle events
    insights                - typed observations extracted from a transcript
    export_configs          - per-user destination configuration (encrypted credentials)
"""
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, Text, Index, DateTime, JSON, Enum as SAEnum, text
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from uuid import UUID, uuid4
import enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Enums ---

class TranscriptOrigin(str, enum.Enum):
    """Where a transcript entered the system."""
    chat_upload = "chat_upload"
    chat_paste = "chat_paste"
    link = "link"
    cloud_import = "cloud_import"
    inbound_webhook = "inbound_webhook"


class TranscriptStatus(str, enum.Enum):
    """Transcript lifecycle.

    Lifecycle: uploaded -> analyzing -> compiling -> completed | failed
    """
    uploaded = "uploaded"
    analyzing = "analyzing"
    compiling = "compiling"
    completed = "completed"
    failed = "failed"


class InsightType(str, enum.Enum):
    """Closed insight taxonomy."""
    pain = "pain"
    blocker = "blocker"
    confusion = "confusion"
    question = "question"
    feature_request = "feature_request"
    idea = "idea"
    gain = "gain"
    outcome = "outcome"
    opportunity = "opportunity"
    objection = "objection"
    buying_signal = "buying_signal"
    feedback = "feedback"
    other = "other"


class InsightStatus(str, enum.Enum):
    """Export state of an insight."""
    new = "new"
    exported = "exported"
    export_failed = "export_failed"


class Severity(str, enum.Enum):
    high = "high"
    medium = "medium"
    low = "low"


class ExportProvider(str, enum.Enum):
    """Supported export destinations."""
    linear = "linear"
    airtable = "airtable"
    webhook = "webhook"


def _enum_column(enum_cls, name: str, **kwargs) -> Column:
    return Column(SAEnum(enum_cls, name=name, native_enum=False, length=32), **kwargs)


# --- Table Models ---

class TranscriptModel(SQLModel, table=True):
    """A persisted transcript.

    At most one non-archived row exists per (owner_user_id, content_hash);
    the partial unique index enforces it so concurrent duplicate deliveries
    collapse into one record.
    """
    __tablename__ = "transcripts"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    title: str = Field(sa_column=Column(Text, nullable=False))
    origin: TranscriptOrigin = Field(sa_column=_enum_column(TranscriptOrigin, "transcript_origin", nullable=False))
    status: TranscriptStatus = Field(
        default=TranscriptStatus.uploaded,
        sa_column=_enum_column(TranscriptStatus, "transcript_status", nullable=False, index=True)
    )

    owner_user_id: str = Field(index=True)
    channel_id: str = Field(default="app_home")

    raw_text: str = Field(sa_column=Column(Text, nullable=False))
    content_hash: str = Field(max_length=32)
    language: str = Field(default="en")

    # Optional source metadata
    file_name: Optional[str] = Field(default=None, sa_column=Column(Text))
    file_type: Optional[str] = Field(default=None)
    link_url: Optional[str] = Field(default=None, sa_column=Column(Text))
    external_meeting_id: Optional[str] = Field(default=None, index=True)
    duration_minutes: Optional[int] = Field(default=None)
    participant_count: Optional[int] = Field(default=None)

    # Written by the analysis orchestrator
    summary: Optional[str] = Field(default=None, sa_column=Column(Text))
    context_theme: Optional[str] = Field(default=None)

    archived: bool = Field(default=False)
    archived_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))

    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    processed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))

    __table_args__ = (
        Index(
            "uq_transcripts_owner_content_active",
            "owner_user_id",
            "content_hash",
            unique=True,
            postgresql_where=text("archived = false"),
            sqlite_where=text("archived = 0"),
        ),
    )


class TranscriptActivityModel(SQLModel, table=True):
    """Append-only audit trail entry.

    The integer primary key doubles as the ordering key.
    """
    __tablename__ = "transcript_activities"

    id: Optional[int] = Field(default=None, primary_key=True)
    transcript_id: UUID = Field(foreign_key="transcripts.id", index=True)
    activity_type: str
    message: str = Field(sa_column=Column(Text, nullable=False))
    metadata_json: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )


class InsightModel(SQLModel, table=True):
    """One extracted insight.

    Severity is not stored; it is always derived from (type, confidence).
    export_destinations maps provider -> last attempt record. A "pending"
    record is a claim held by an export in flight.
    """
    __tablename__ = "insights"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    transcript_id: UUID = Field(foreign_key="transcripts.id", index=True)
    type: InsightType = Field(sa_column=_enum_column(InsightType, "insight_type", nullable=False))
    title: str = Field(max_length=70)
    description: str = Field(sa_column=Column(Text, nullable=False))
    confidence: float = Field(ge=0.0, le=1.0)

    evidence_quotes: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    evidence_text: Optional[str] = Field(default=None, sa_column=Column(Text))
    timestamp_start: Optional[str] = Field(default=None)
    speaker: Optional[str] = Field(default=None)
    area: Optional[str] = Field(default=None)
    suggested_actions: List[str] = Field(default_factory=list, sa_column=Column(JSON))

    exported: bool = Field(default=False)
    status: InsightStatus = Field(
        default=InsightStatus.new,
        sa_column=_enum_column(InsightStatus, "insight_status", nullable=False)
    )
    export_destinations: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    # Bumped on every export_destinations write; claims compare-and-set on it
    export_version: int = Field(default=0)

    archived: bool = Field(default=False, index=True)
    archived_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )


class ExportConfigModel(SQLModel, table=True):
    """Per-user export destination settings.

    credentials_encrypted is a Fernet token; plaintext credentials never
    touch this table.
    """
    __tablename__ = "export_configs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_user_id: str = Field(index=True)
    provider: ExportProvider = Field(sa_column=_enum_column(ExportProvider, "export_provider", nullable=False))
    enabled: bool = Field(default=True)
    credentials_encrypted: str = Field(default="", sa_column=Column(Text, nullable=False))

    destination: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    field_mapping: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    min_confidence: float = Field(default=0.7)
    types_filter: List[str] = Field(default_factory=list, sa_column=Column(JSON))

    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )

    __table_args__ = (
        Index("uq_export_configs_owner_provider", "owner_user_id", "provider", unique=True),
    )

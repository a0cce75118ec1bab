"""Typed export configuration and export outcome records.

Destinations are a closed, tagged union keyed on `provider` so a Linear
config can never be read with Airtable identifiers.
"""
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Set, Union
from uuid import UUID

from pydantic import BaseModel, Field, field_serializer

from models.db_models import ExportProvider, InsightType


class LinearTarget(BaseModel):
    provider: Literal["linear"] = "linear"
    team_id: str = Field(..., min_length=1, description="Linear team that receives the issues")


class AirtableTarget(BaseModel):
    provider: Literal["airtable"] = "airtable"
    base_id: str = Field(..., min_length=1, description="Airtable base id (app...)")
    table_name: str = Field(default="Insights", min_length=1)


class WebhookTarget(BaseModel):
    provider: Literal["webhook"] = "webhook"
    url: str = Field(..., min_length=1)
    headers: Dict[str, str] = Field(default_factory=dict)


ExportTarget = Annotated[
    Union[LinearTarget, AirtableTarget, WebhookTarget],
    Field(discriminator="provider"),
]


_DEFAULT_TITLE_DESCRIPTION = {
    ExportProvider.linear: ("title", "description"),
    ExportProvider.airtable: ("Title", "Description"),
    ExportProvider.webhook: ("title", "description"),
}


class FieldMapping(BaseModel):
    """Insight field -> destination field name.

    title and description always resolve to a target; the rest are only
    sent when mapped (Airtable additionally defaults author/evidence).
    """
    title: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None
    evidence: Optional[str] = None
    type: Optional[str] = None
    confidence: Optional[str] = None
    source: Optional[str] = None
    status: Optional[str] = None
    severity: Optional[str] = None
    area: Optional[str] = None

    def with_defaults(self, provider: ExportProvider) -> "FieldMapping":
        title, description = _DEFAULT_TITLE_DESCRIPTION[provider]
        updates: Dict[str, str] = {}
        if not self.title:
            updates["title"] = title
        if not self.description:
            updates["description"] = description
        if provider == ExportProvider.airtable:
            if not self.author:
                updates["author"] = "Author"
            if not self.evidence:
                updates["evidence"] = "Evidence"
        return self.model_copy(update=updates)


class ExportConfig(BaseModel):
    """A user's configuration for one destination, credentials decrypted."""
    owner_user_id: str
    target: ExportTarget
    enabled: bool = True
    credentials: Dict[str, Any] = Field(default_factory=dict, repr=False)
    field_mapping: FieldMapping = Field(default_factory=FieldMapping)
    min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    types_filter: Set[InsightType] = Field(default_factory=set)

    @property
    def provider(self) -> ExportProvider:
        return ExportProvider(self.target.provider)

    def resolved_mapping(self) -> FieldMapping:
        return self.field_mapping.with_defaults(self.provider)


class ExportDestinationRecord(BaseModel):
    """Last export attempt for one provider, stored on the insight."""
    provider: ExportProvider
    outcome: Literal["pending", "success", "failed"]
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    remote_id: Optional[str] = None
    error: Optional[str] = None
    technical_error: Optional[str] = None

    @field_serializer('timestamp')
    def serialize_timestamp(self, value: datetime) -> str:
        return value.isoformat()


class ExportItemError(BaseModel):
    insight_id: UUID
    message: str


class ExportResult(BaseModel):
    exported_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    remote_ids: List[str] = Field(default_factory=list)
    errors: List[ExportItemError] = Field(default_factory=list)

"""
Outbound Webhook Data Models

Payload delivered to the configured webhook URL when an analysis run
finishes. Keys are camelCase on the wire so n8n/Zapier style consumers can
map them without renaming.
"""

from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for wire models: snake_case in Python, camelCase in JSON."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def iso_z(value: datetime) -> str:
    """ISO 8601 with Z suffix for UTC."""
    iso_str = value.isoformat()
    if iso_str.endswith('+00:00'):
        return iso_str[:-6] + 'Z'
    elif not iso_str.endswith('Z'):
        return iso_str + 'Z'
    return iso_str


class WebhookInsight(CamelModel):
    """Flattened insight for easy consumption by integrations."""
    id: str
    type: str
    title: str
    description: str
    evidence: Optional[str] = None
    confidence: float
    confidence_percent: int = Field(..., description="Confidence scaled to 0-100")
    severity: Literal["high", "medium", "low"]
    area: Optional[str] = None
    suggested_actions: Optional[List[str]] = None
    timestamp: Optional[str] = None
    speaker: Optional[str] = None


class WebhookResultMetadata(CamelModel):
    processing_time_ms: Optional[int] = None
    insight_count: int
    high_confidence_count: int
    medium_confidence_count: int
    low_confidence_count: int


class WebhookResult(CamelModel):
    context: Optional[str] = None
    summary: str
    insights: List[WebhookInsight]
    metadata: WebhookResultMetadata


class WebhookError(CamelModel):
    message: str
    code: str


class WebhookPayload(CamelModel):
    """analysis.completed carries result; analysis.failed carries error."""
    event: Literal["analysis.completed", "analysis.failed"]
    timestamp: datetime
    call_id: str
    source: str
    result: Optional[WebhookResult] = None
    error: Optional[WebhookError] = None

    @field_serializer('timestamp')
    def serialize_timestamp(self, value: datetime) -> str:
        return iso_z(value)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DeliveryConfig(BaseModel):
    """Retry and timeout policy for one delivery."""
    retry_attempts: int = Field(default=3, ge=1)
    timeout_ms: int = Field(default=30000, gt=0)
    headers: dict[str, str] = Field(default_factory=dict)


class DeliveryResult(BaseModel):
    success: bool
    attempts: int = 0
    status_code: Optional[int] = None
    error: Optional[str] = None

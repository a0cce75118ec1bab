"""
Inbound webhook router.

POST /webhooks/transcript lets external recorders and automation tools push
transcripts. Deliveries are at-least-once: a retried call with the same
content resolves to the same transcript instead of creating a new one.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from middleware.webhook_auth import WebhookAuthError, verify_webhook_secret
from models.api_models import InboundWebhookRequest, InboundWebhookResponse
from models.db_models import TranscriptOrigin
from services.container import ServiceContainer
from services.ingestion_service import IngestionError, IngestionValidationError, TranscriptMetadata
from utils.dependencies import get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

_SOURCE_ORIGINS = {
    "zoom": TranscriptOrigin.cloud_import,
    "cloud": TranscriptOrigin.cloud_import,
    "link": TranscriptOrigin.link,
}


def origin_for_source(source: Optional[str]) -> TranscriptOrigin:
    """zoom/cloud -> cloud_import, link -> link, anything else -> inbound_webhook."""
    return _SOURCE_ORIGINS.get((source or "").strip().lower(), TranscriptOrigin.inbound_webhook)


@router.post("/transcript", status_code=202, response_model=InboundWebhookResponse)
async def receive_transcript(
    body: InboundWebhookRequest,
    x_webhook_secret: Optional[str] = Header(default=None, alias="X-Webhook-Secret"),
    services: ServiceContainer = Depends(get_services),
):
    """
    Accept a transcript from an external system.

    Raises:
        HTTPException 401: Secret missing or wrong
        HTTPException 400: Content too short or owner missing
        HTTPException 500: Store failure
    """
    try:
        verify_webhook_secret(x_webhook_secret)
    except WebhookAuthError as e:
        raise HTTPException(status_code=401, detail={"message": e.message, "code": e.code})

    origin = origin_for_source(body.source)
    logger.info(
        f"Inbound webhook received: source={body.source}, origin={origin.value}, "
        f"owner_user_id={body.owner_user_id}, length={len(body.content)}"
    )

    try:
        result = await services.ingestion.ingest(
            title=body.title,
            content=body.content,
            origin=origin,
            owner_user_id=body.owner_user_id,
            channel_id=body.channel_id,
            metadata=TranscriptMetadata(
                external_meeting_id=body.meeting_id,
                link_url=body.link_url,
                duration_minutes=body.duration_minutes,
                participant_count=body.participant_count,
            ),
        )
    except IngestionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except IngestionError:
        raise HTTPException(status_code=500, detail="Failed to store transcript")

    if result.duplicate and not result.workflow_started:
        message = "Transcript already received"
    elif result.workflow_started:
        message = "Transcript accepted, analysis started"
    else:
        message = "Transcript stored, analysis could not be started"

    return InboundWebhookResponse(
        success=True,
        transcript_id=result.transcript_id,
        workflow_started=result.workflow_started,
        message=message,
    )

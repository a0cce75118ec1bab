"""
Transcripts router: ingestion and status polling.

Endpoints:
    POST /transcripts                      - ingest a transcript
    GET  /transcripts?ownerUserId=...      - list a user's transcripts
    GET  /transcripts/{id}                 - status, activity trail, insights
    POST /transcripts/{id}/reanalyze       - archive insights and analyze again
    POST /transcripts/{id}/archive         - soft-delete transcript and insights

Ingestion returns as soon as the record exists and analysis has been
launched; clients poll GET /transcripts/{id} for progress.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from models.api_models import (
    ArchiveResponse,
    IngestRequest,
    IngestResponse,
    InsightOut,
    ActivityOut,
    TranscriptDetailOut,
    TranscriptListOut,
    TranscriptOut,
)
from models.db_models import TranscriptOrigin
from services.container import ServiceContainer
from services.ingestion_service import (
    IngestionError,
    IngestionValidationError,
    TranscriptMetadata,
)
from services.status_service import InvalidTransitionError, TranscriptNotFoundError
from utils.dependencies import get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transcripts", tags=["transcripts"])


@router.post("", response_model=IngestResponse)
async def ingest_transcript(body: IngestRequest, services: ServiceContainer = Depends(get_services)):
    """
    Ingest a transcript and launch analysis.

    Repeated calls with the same (ownerUserId, content) return the same
    transcriptId; workflowStarted is false when analysis already advanced.

    Raises:
        HTTPException 400: Missing content or ownerUserId
        HTTPException 500: Store failure
    """
    metadata = TranscriptMetadata(**body.metadata.model_dump()) if body.metadata else None

    try:
        result = await services.ingestion.ingest(
            title=body.title,
            content=body.content,
            origin=body.origin,
            owner_user_id=body.owner_user_id,
            channel_id=body.channel_id,
            metadata=metadata,
        )
    except IngestionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except IngestionError:
        raise HTTPException(status_code=500, detail="Failed to store transcript")

    return IngestResponse(transcript_id=result.transcript_id, workflow_started=result.workflow_started)


@router.get("", response_model=TranscriptListOut)
async def list_transcripts(
    owner_user_id: str = Query(..., alias="ownerUserId", min_length=1),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    origin: Optional[TranscriptOrigin] = Query(default=None),
    services: ServiceContainer = Depends(get_services),
):
    transcripts = await services.ingestion.list_transcripts(owner_user_id, limit=limit, offset=offset, origin=origin)
    return TranscriptListOut(
        transcripts=[TranscriptOut.from_model(t) for t in transcripts],
        limit=limit,
        offset=offset,
    )


@router.get("/{transcript_id}", response_model=TranscriptDetailOut)
async def get_transcript(transcript_id: UUID, services: ServiceContainer = Depends(get_services)):
    try:
        detail = await services.ingestion.get_transcript(transcript_id)
    except TranscriptNotFoundError:
        raise HTTPException(status_code=404, detail="Transcript not found")

    base = TranscriptOut.from_model(detail.transcript)
    return TranscriptDetailOut(
        **base.model_dump(),
        activities=[ActivityOut.from_model(a) for a in detail.activities],
        insights=[InsightOut.from_model(i) for i in detail.insights],
    )


@router.post("/{transcript_id}/reanalyze", response_model=IngestResponse)
async def reanalyze_transcript(transcript_id: UUID, services: ServiceContainer = Depends(get_services)):
    """
    Re-run analysis on a finished transcript.

    Raises:
        HTTPException 404: Unknown transcript
        HTTPException 409: Analysis still running (in-flight runs are never cancelled)
    """
    try:
        result = await services.ingestion.reanalyze(transcript_id)
    except TranscriptNotFoundError:
        raise HTTPException(status_code=404, detail="Transcript not found")
    except InvalidTransitionError as e:
        current = e.current.value if e.current else "unknown"
        raise HTTPException(
            status_code=409,
            detail=f"Transcript cannot be re-analyzed while {current}",
        )

    return IngestResponse(transcript_id=result.transcript_id, workflow_started=result.workflow_started)


@router.post("/{transcript_id}/archive", response_model=ArchiveResponse)
async def archive_transcript(transcript_id: UUID, services: ServiceContainer = Depends(get_services)):
    try:
        archived = await services.ingestion.archive_transcript(transcript_id)
    except TranscriptNotFoundError:
        raise HTTPException(status_code=404, detail="Transcript not found")

    return ArchiveResponse(transcript_id=transcript_id, archived_insights=archived)

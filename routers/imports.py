"""Cloud recording import router."""

import logging

from fastapi import APIRouter, Depends

from models.api_models import CloudImportRequest, CloudImportResponse
from services.cloud_import_service import CloudRecording
from services.container import ServiceContainer
from utils.dependencies import get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/imports", tags=["imports"])


@router.post("/cloud-recordings", response_model=CloudImportResponse)
async def import_cloud_recordings(body: CloudImportRequest, services: ServiceContainer = Depends(get_services)):
    """Download and ingest a batch of cloud recordings; per-recording failures are counted, not raised."""
    recordings = [CloudRecording(**r.model_dump()) for r in body.recordings]
    summary = await services.cloud_import.import_recordings(body.owner_user_id, recordings, body.access_token)
    return CloudImportResponse(**summary.model_dump())

"""
Export router.

POST /exports pushes selected insights to the user's configured destination.
Re-sending the same request is safe: insights already exported to that
provider are skipped.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from models.api_models import ExportErrorOut, ExportRequest, ExportResponse
from services.container import ServiceContainer
from utils.dependencies import get_services
from utils.encryption import EncryptionError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/exports", tags=["exports"])


@router.post("", response_model=ExportResponse)
async def export_insights(body: ExportRequest, services: ServiceContainer = Depends(get_services)):
    """
    Raises:
        HTTPException 400: Provider not configured for this user
        HTTPException 500: Stored credentials unreadable
    """
    label = body.provider.value.capitalize()

    try:
        config = await services.exports.get_export_config(body.owner_user_id, body.provider)
    except EncryptionError as e:
        logger.error(
            f"Export config unreadable: owner_user_id={body.owner_user_id}, provider={body.provider.value}, error={e}"
        )
        raise HTTPException(status_code=500, detail=f"{label} credentials could not be read. Please reconnect {label}.")

    if config is None:
        raise HTTPException(
            status_code=400,
            detail=f"{label} not configured. Please connect {label} in settings before exporting.",
        )

    result = await services.exports.export_insights(body.insight_ids, config)
    return ExportResponse(
        exported_count=result.exported_count,
        failed_count=result.failed_count,
        skipped_count=result.skipped_count,
        remote_ids=result.remote_ids,
        errors=[ExportErrorOut(insight_id=e.insight_id, message=e.message) for e in result.errors],
    )

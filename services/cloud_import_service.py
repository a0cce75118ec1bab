"""Cloud recording import.

Downloads meeting transcripts from a cloud recording provider and feeds
them through the ingestion gateway with origin cloud_import. Recordings
already imported (same external meeting id) are skipped, so a scheduled
import can be re-run safely.
"""
import logging
from typing import List, Optional

import httpx
from pydantic import BaseModel, Field
from sqlmodel import select

from models.db_models import TranscriptModel, TranscriptOrigin
from services.database import Database
from services.ingestion_service import IngestionError, IngestionService, TranscriptMetadata

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_SECONDS = 30.0


class CloudRecording(BaseModel):
    meeting_id: str = Field(..., min_length=1)
    topic: Optional[str] = None
    duration_minutes: Optional[int] = None
    transcript_url: Optional[str] = None


class ImportSummary(BaseModel):
    imported: int = 0
    skipped: int = 0
    failed: int = 0
    transcript_ids: List[str] = Field(default_factory=list)


class CloudImportService:
    def __init__(
        self,
        db: Database,
        ingestion: IngestionService,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.db = db
        self.ingestion = ingestion
        self._transport = transport

    async def import_recordings(
        self,
        owner_user_id: str,
        recordings: List[CloudRecording],
        access_token: str,
    ) -> ImportSummary:
        summary = ImportSummary()

        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=DOWNLOAD_TIMEOUT_SECONDS,
            follow_redirects=True,
        ) as client:
            for recording in recordings:
                if await self._already_imported(owner_user_id, recording.meeting_id):
                    logger.info(f"Skipping imported recording: meeting_id={recording.meeting_id}")
                    summary.skipped += 1
                    continue

                if not recording.transcript_url:
                    logger.warning(f"Recording has no transcript: meeting_id={recording.meeting_id}")
                    summary.skipped += 1
                    continue

                try:
                    response = await client.get(
                        recording.transcript_url,
                        headers={"Authorization": f"Bearer {access_token}"},
                    )
                except httpx.HTTPError as e:
                    logger.error(f"Transcript download failed: meeting_id={recording.meeting_id}, error={e}")
                    summary.failed += 1
                    continue

                if not response.is_success:
                    logger.error(
                        f"Transcript download failed: meeting_id={recording.meeting_id}, "
                        f"status={response.status_code}"
                    )
                    summary.failed += 1
                    continue

                content = response.text
                if not content.strip():
                    logger.warning(f"Downloaded transcript is empty: meeting_id={recording.meeting_id}")
                    summary.failed += 1
                    continue

                try:
                    result = await self.ingestion.ingest(
                        title=recording.topic,
                        content=content,
                        origin=TranscriptOrigin.cloud_import,
                        owner_user_id=owner_user_id,
                        metadata=TranscriptMetadata(
                            external_meeting_id=recording.meeting_id,
                            duration_minutes=recording.duration_minutes,
                            file_type="vtt",
                        ),
                    )
                except IngestionError as e:
                    logger.error(f"Recording ingestion failed: meeting_id={recording.meeting_id}, error={e}")
                    summary.failed += 1
                    continue

                summary.imported += 1
                summary.transcript_ids.append(str(result.transcript_id))

        logger.info(
            f"Cloud import finished: owner_user_id={owner_user_id}, imported={summary.imported}, "
            f"skipped={summary.skipped}, failed={summary.failed}"
        )
        return summary

    async def _already_imported(self, owner_user_id: str, meeting_id: str) -> bool:
        async with self.db.session() as session:
            result = await session.execute(
                select(TranscriptModel.id)
                .where(TranscriptModel.owner_user_id == owner_user_id)
                .where(TranscriptModel.external_meeting_id == meeting_id)
                .where(TranscriptModel.archived == False)  # noqa: E712
                .limit(1)
            )
            return result.first() is not None

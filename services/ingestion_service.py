"""Ingestion gateway for transcripts.

Validates and persists a transcript, enforcing at most one non-archived
record per (owner_user_id, content_hash), then launches analysis.

Dedup is enforced by a partial unique index. The read before insert is only
a fast path; a concurrent duplicate that slips past it hits the index, and
the resulting IntegrityError is treated as "already ingested".
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Protocol
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import select

from models.db_models import (
    TranscriptModel,
    TranscriptActivityModel,
    TranscriptOrigin,
    TranscriptStatus,
    InsightModel,
)
from services.database import Database
from services.status_service import (
    StatusService,
    TranscriptNotFoundError,
    add_activity,
)
from utils.fingerprint import fingerprint
from utils.title_utils import derive_title

logger = logging.getLogger(__name__)


class IngestionError(Exception):
    """Raised when a transcript cannot be persisted."""
    pass


class IngestionValidationError(IngestionError):
    """Raised for missing or malformed ingestion input."""
    pass


class AnalysisLaunchFn(Protocol):
    def launch(self, transcript_id: UUID) -> None: ...


class TranscriptMetadata(BaseModel):
    """Optional source metadata supplied with a transcript."""
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    link_url: Optional[str] = None
    external_meeting_id: Optional[str] = None
    duration_minutes: Optional[int] = None
    participant_count: Optional[int] = None
    language: str = "en"


class IngestionResult(BaseModel):
    transcript_id: UUID
    workflow_started: bool
    duplicate: bool = False


@dataclass
class TranscriptDetail:
    transcript: TranscriptModel
    activities: List[TranscriptActivityModel] = field(default_factory=list)
    insights: List[InsightModel] = field(default_factory=list)


class IngestionService:
    """Entry point for every transcript source.

    Args:
        db: Store handle.
        launcher: Schedules analysis for a transcript id.
        status_service: Lifecycle owner (used by re-analysis).
    """

    def __init__(self, db: Database, launcher: AnalysisLaunchFn, status_service: Optional[StatusService] = None):
        self.db = db
        self.launcher = launcher
        self.status_service = status_service or StatusService(db)

    async def ingest(
        self,
        title: Optional[str],
        content: str,
        origin: TranscriptOrigin,
        owner_user_id: str,
        channel_id: Optional[str] = None,
        metadata: Optional[TranscriptMetadata] = None,
    ) -> IngestionResult:
        """Persist a transcript and launch analysis.

        Returns:
            IngestionResult. workflow_started is False only when an existing
            record already advanced past uploaded (idempotent no-op), or
            when the launch itself failed.

        Raises:
            IngestionValidationError: content or owner_user_id missing.
            IngestionError: The store rejected the write.
        """
        if not content or not content.strip():
            raise IngestionValidationError("content is required")
        if not owner_user_id or not owner_user_id.strip():
            raise IngestionValidationError("ownerUserId is required")

        metadata = metadata or TranscriptMetadata()
        content_hash = fingerprint(content)

        logger.info(
            f"Ingesting transcript: owner_user_id={owner_user_id}, origin={origin.value}, "
            f"content_hash={content_hash}, length={len(content)}"
        )

        try:
            existing = await self._find_active(owner_user_id, content_hash)
            if existing is not None:
                return await self._handle_existing(existing)

            transcript = TranscriptModel(
                title=derive_title(
                    title,
                    content,
                    origin,
                    file_name=metadata.file_name,
                    link_url=metadata.link_url,
                ),
                origin=origin,
                status=TranscriptStatus.uploaded,
                owner_user_id=owner_user_id,
                channel_id=channel_id or "app_home",
                raw_text=content,
                content_hash=content_hash,
                language=metadata.language or "en",
                file_name=metadata.file_name,
                file_type=metadata.file_type,
                link_url=metadata.link_url,
                external_meeting_id=metadata.external_meeting_id,
                duration_minutes=metadata.duration_minutes,
                participant_count=metadata.participant_count,
            )

            try:
                async with self.db.session() as session:
                    session.add(transcript)
                    await session.flush()
                    add_activity(
                        session,
                        transcript.id,
                        "ingestion_completed",
                        f"Transcript ingested via {origin.value}",
                        {"origin": origin.value, "content_hash": content_hash, "length": len(content)},
                    )
                    await session.commit()
            except IntegrityError:
                # Lost the race against a concurrent duplicate delivery
                logger.info(
                    f"Duplicate ingestion detected by unique index: owner_user_id={owner_user_id}, "
                    f"content_hash={content_hash}"
                )
                existing = await self._find_active(owner_user_id, content_hash)
                if existing is None:
                    raise
                return await self._handle_existing(existing)

        except SQLAlchemyError as e:
            logger.error(
                f"Transcript ingestion failed: owner_user_id={owner_user_id}, error={e}",
                exc_info=True
            )
            raise IngestionError(f"Failed to persist transcript: {e}") from e

        logger.info(f"Transcript created: transcript_id={transcript.id}, owner_user_id={owner_user_id}")

        started = await self._launch(transcript.id)
        return IngestionResult(transcript_id=transcript.id, workflow_started=started)

    async def get_transcript(self, transcript_id: UUID) -> TranscriptDetail:
        """Transcript with its activity trail and non-archived insights."""
        async with self.db.session() as session:
            transcript = await session.get(TranscriptModel, transcript_id)
            if transcript is None:
                raise TranscriptNotFoundError(transcript_id)

            activities = await session.execute(
                select(TranscriptActivityModel)
                .where(TranscriptActivityModel.transcript_id == transcript_id)
                .order_by(TranscriptActivityModel.id)
            )
            insights = await session.execute(
                select(InsightModel)
                .where(InsightModel.transcript_id == transcript_id)
                .where(InsightModel.archived == False)  # noqa: E712
                .order_by(InsightModel.confidence.desc())
            )

            return TranscriptDetail(
                transcript=transcript,
                activities=list(activities.scalars().all()),
                insights=list(insights.scalars().all()),
            )

    async def list_transcripts(
        self,
        owner_user_id: str,
        limit: int = 20,
        offset: int = 0,
        origin: Optional[TranscriptOrigin] = None,
    ) -> List[TranscriptModel]:
        """Non-archived transcripts for a user, newest first."""
        query = (
            select(TranscriptModel)
            .where(TranscriptModel.owner_user_id == owner_user_id)
            .where(TranscriptModel.archived == False)  # noqa: E712
        )
        if origin is not None:
            query = query.where(TranscriptModel.origin == origin)
        query = query.order_by(TranscriptModel.created_at.desc()).offset(offset).limit(limit)

        async with self.db.session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def archive_transcript(self, transcript_id: UUID) -> int:
        """Soft-delete a transcript and its insights.

        Returns:
            Number of insights archived.
        """
        now = datetime.now(timezone.utc)

        async with self.db.session() as session:
            transcript = await session.get(TranscriptModel, transcript_id)
            if transcript is None:
                raise TranscriptNotFoundError(transcript_id)
            if transcript.archived:
                return 0

            transcript.archived = True
            transcript.archived_at = now
            transcript.updated_at = now

            result = await session.execute(
                update(InsightModel)
                .where(InsightModel.transcript_id == transcript_id)
                .where(InsightModel.archived == False)  # noqa: E712
                .values(archived=True, archived_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            archived_count = result.rowcount or 0

            add_activity(
                session,
                transcript_id,
                "archived",
                "Transcript archived",
                {"archived_insights": archived_count},
            )
            await session.commit()

        logger.info(f"Transcript archived: transcript_id={transcript_id}, insights={archived_count}")
        return archived_count

    async def reanalyze(self, transcript_id: UUID) -> IngestionResult:
        """Archive current insights, reset to uploaded and relaunch analysis.

        Raises:
            TranscriptNotFoundError: No such transcript.
            InvalidTransitionError: Analysis is still running.
        """
        archived_count = await self.status_service.reset_for_reanalysis(transcript_id)
        await self.status_service.record_activity(
            transcript_id,
            "reanalysis_started",
            "Re-analysis requested",
            {"archived_insights": archived_count},
        )
        started = await self._launch(transcript_id)
        return IngestionResult(transcript_id=transcript_id, workflow_started=started)

    async def _find_active(self, owner_user_id: str, content_hash: str) -> Optional[TranscriptModel]:
        async with self.db.session() as session:
            result = await session.execute(
                select(TranscriptModel)
                .where(TranscriptModel.owner_user_id == owner_user_id)
                .where(TranscriptModel.content_hash == content_hash)
                .where(TranscriptModel.archived == False)  # noqa: E712
            )
            return result.scalars().first()

    async def _handle_existing(self, existing: TranscriptModel) -> IngestionResult:
        if existing.status == TranscriptStatus.uploaded:
            # A prior attempt persisted the record but never advanced it
            logger.info(f"Re-triggering analysis for stalled transcript: transcript_id={existing.id}")
            started = await self._launch(existing.id)
            return IngestionResult(transcript_id=existing.id, workflow_started=started, duplicate=True)

        logger.info(
            f"Duplicate transcript ignored: transcript_id={existing.id}, status={existing.status.value}"
        )
        return IngestionResult(transcript_id=existing.id, workflow_started=False, duplicate=True)

    async def _launch(self, transcript_id: UUID) -> bool:
        """Launch analysis; a failure here never invalidates the stored record.

        workflow_started is recorded before the task is scheduled so the
        audit trail never shows analysis ahead of its launch.
        """
        await self.status_service.record_activity(
            transcript_id,
            "workflow_started",
            "Analysis started",
        )
        try:
            self.launcher.launch(transcript_id)
        except Exception as e:
            logger.error(
                f"Analysis launch failed: transcript_id={transcript_id}, error={e}",
                exc_info=True
            )
            await self.status_service.record_activity(
                transcript_id,
                "workflow_launch_failed",
                "Analysis could not be started",
                {"error": str(e)},
            )
            return False
        return True

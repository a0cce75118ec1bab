"""Transcript lifecycle state machine and audit trail.

Lifecycle:
    uploaded -> analyzing -> compiling -> completed
                    |            |
                    +----> failed <----+

Every transition is a compare-and-set UPDATE guarded by the allowed source
states, committed in the same transaction as its status_changed_to_<status>
activity row. A concurrent caller that already advanced the transcript makes
the guard fail instead of silently overwriting the newer status.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import update
from sqlmodel import select

from models.db_models import (
    TranscriptModel,
    TranscriptActivityModel,
    TranscriptStatus,
    InsightModel,
)
from services.database import Database

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[TranscriptStatus, set[TranscriptStatus]] = {
    TranscriptStatus.uploaded: {TranscriptStatus.analyzing},
    TranscriptStatus.analyzing: {TranscriptStatus.compiling, TranscriptStatus.failed},
    TranscriptStatus.compiling: {TranscriptStatus.completed, TranscriptStatus.failed},
    TranscriptStatus.completed: set(),
    TranscriptStatus.failed: set(),
}

TERMINAL_STATUSES = {TranscriptStatus.completed, TranscriptStatus.failed}


class TranscriptNotFoundError(Exception):
    """Raised when a transcript id does not exist."""

    def __init__(self, transcript_id: UUID):
        self.transcript_id = transcript_id
        super().__init__(f"Transcript not found: {transcript_id}")


class InvalidTransitionError(Exception):
    """Raised when a status change is not permitted from the current state."""

    def __init__(self, transcript_id: UUID, current: Optional[TranscriptStatus], target: TranscriptStatus):
        self.transcript_id = transcript_id
        self.current = current
        self.target = target
        current_value = current.value if current else None
        super().__init__(
            f"Cannot transition transcript {transcript_id} from {current_value} to {target.value}"
        )


def source_states_for(target: TranscriptStatus) -> set[TranscriptStatus]:
    """States from which `target` may be entered."""
    return {source for source, targets in ALLOWED_TRANSITIONS.items() if target in targets}


def is_allowed(current: TranscriptStatus, target: TranscriptStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def add_activity(
    session,
    transcript_id: UUID,
    activity_type: str,
    message: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> TranscriptActivityModel:
    """Stage an activity row on the caller's session (caller commits)."""
    activity = TranscriptActivityModel(
        transcript_id=transcript_id,
        activity_type=activity_type,
        message=message,
        metadata_json=metadata or {},
    )
    session.add(activity)
    return activity


class StatusService:
    """Owns every status write for transcripts."""

    def __init__(self, db: Database):
        self.db = db

    async def transition(
        self,
        transcript_id: UUID,
        new_status: TranscriptStatus,
        message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TranscriptModel:
        """Move a transcript forward along the lifecycle.

        Raises:
            TranscriptNotFoundError: No such transcript.
            InvalidTransitionError: Current status does not permit new_status.
        """
        sources = source_states_for(new_status)
        now = datetime.now(timezone.utc)
        values: dict[str, Any] = {"status": new_status, "updated_at": now}
        if new_status == TranscriptStatus.completed:
            values["processed_at"] = now

        async with self.db.session() as session:
            result = await session.execute(
                update(TranscriptModel)
                .where(TranscriptModel.id == transcript_id)
                .where(TranscriptModel.status.in_(list(sources)))
                .values(**values)
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                await session.rollback()
                current = await self._current_status(session, transcript_id)
                if current is None:
                    raise TranscriptNotFoundError(transcript_id)
                logger.warning(
                    f"Rejected transition: transcript_id={transcript_id}, "
                    f"current={current.value}, target={new_status.value}"
                )
                raise InvalidTransitionError(transcript_id, current, new_status)

            add_activity(
                session,
                transcript_id,
                f"status_changed_to_{new_status.value}",
                message or f"Status changed to {new_status.value}",
                metadata,
            )
            await session.commit()

            transcript = await session.get(TranscriptModel, transcript_id, populate_existing=True)

        logger.info(f"Transcript status changed: transcript_id={transcript_id}, status={new_status.value}")
        return transcript

    async def reset_for_reanalysis(self, transcript_id: UUID) -> int:
        """Explicit re-analysis reset: archive insights, return to uploaded.

        Only a finished run (completed or failed) can be reset; an in-flight
        analysis is never cancelled.

        Returns:
            Number of insights archived.
        """
        now = datetime.now(timezone.utc)

        async with self.db.session() as session:
            result = await session.execute(
                update(TranscriptModel)
                .where(TranscriptModel.id == transcript_id)
                .where(TranscriptModel.archived == False)  # noqa: E712
                .where(TranscriptModel.status.in_(list(TERMINAL_STATUSES)))
                .values(
                    status=TranscriptStatus.uploaded,
                    updated_at=now,
                    processed_at=None,
                    summary=None,
                    context_theme=None,
                )
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                await session.rollback()
                current = await self._current_status(session, transcript_id)
                if current is None:
                    raise TranscriptNotFoundError(transcript_id)
                raise InvalidTransitionError(transcript_id, current, TranscriptStatus.uploaded)

            archived = await session.execute(
                update(InsightModel)
                .where(InsightModel.transcript_id == transcript_id)
                .where(InsightModel.archived == False)  # noqa: E712
                .values(archived=True, archived_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            archived_count = archived.rowcount or 0

            add_activity(
                session,
                transcript_id,
                f"status_changed_to_{TranscriptStatus.uploaded.value}",
                "Status reset to uploaded for re-analysis",
                {"archived_insights": archived_count},
            )
            await session.commit()

        logger.info(
            f"Transcript reset for re-analysis: transcript_id={transcript_id}, "
            f"archived_insights={archived_count}"
        )
        return archived_count

    async def record_activity(
        self,
        transcript_id: UUID,
        activity_type: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Write a standalone activity row."""
        async with self.db.session() as session:
            add_activity(session, transcript_id, activity_type, message, metadata)
            await session.commit()

    async def _current_status(self, session, transcript_id: UUID) -> Optional[TranscriptStatus]:
        result = await session.execute(
            select(TranscriptModel.status).where(TranscriptModel.id == transcript_id)
        )
        return result.scalar_one_or_none()

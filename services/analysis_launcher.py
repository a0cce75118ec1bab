"""Out-of-band analysis runs.

Ingestion returns as soon as a run is launched. The launcher schedules the
pipeline as an in-process asyncio task; the pipeline runs the orchestrator
and then, when a webhook URL is configured, notifies it of the outcome.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set
from uuid import UUID

from models.db_models import TranscriptModel
from models.webhook_models import DeliveryConfig
from services.analysis_service import AnalysisError, AnalysisOrchestrator, AnalysisOutcome
from services.database import Database
from services.status_service import StatusService
from services.webhook_dispatcher import (
    WebhookDispatcher,
    build_completed_payload,
    build_failed_payload,
)

logger = logging.getLogger(__name__)


class AnalysisPipeline:
    """Loads a transcript, analyzes it, and dispatches the outcome."""

    def __init__(
        self,
        db: Database,
        orchestrator: AnalysisOrchestrator,
        status_service: Optional[StatusService] = None,
        dispatcher: Optional[WebhookDispatcher] = None,
        webhook_url: Optional[str] = None,
        delivery_config: Optional[DeliveryConfig] = None,
    ):
        self.db = db
        self.orchestrator = orchestrator
        self.status_service = status_service or StatusService(db)
        self.dispatcher = dispatcher or WebhookDispatcher()
        self.webhook_url = webhook_url
        self.delivery_config = delivery_config or DeliveryConfig()

    async def run(self, transcript_id: UUID) -> AnalysisOutcome:
        async with self.db.session() as session:
            transcript = await session.get(TranscriptModel, transcript_id)

        if transcript is None:
            logger.warning(f"Pipeline run for unknown transcript: transcript_id={transcript_id}")
            return AnalysisOutcome(
                success=False,
                transcript_id=transcript_id,
                error=AnalysisError(message="Transcript not found", code="TRANSCRIPT_NOT_FOUND"),
            )

        outcome = await self.orchestrator.analyze(transcript_id, transcript.raw_text)

        if outcome.error and outcome.error.code == "ANALYSIS_ALREADY_STARTED":
            # The run that owns the transcript will dispatch
            return outcome

        if self.webhook_url:
            await self._dispatch(transcript, outcome)

        return outcome

    async def _dispatch(self, transcript: TranscriptModel, outcome: AnalysisOutcome) -> None:
        if outcome.success:
            payload = build_completed_payload(
                transcript,
                summary=outcome.summary or "",
                insights=outcome.insights,
                context=outcome.context,
                processing_time_ms=outcome.processing_time_ms,
            )
        else:
            payload = build_failed_payload(transcript, outcome.error.message, outcome.error.code)

        result = await self.dispatcher.deliver(self.webhook_url, payload, self.delivery_config)

        if result.success:
            await self.status_service.record_activity(
                transcript.id,
                "webhook_delivered",
                f"Webhook {payload.event} delivered",
                {"event": payload.event, "attempts": result.attempts, "status_code": result.status_code},
            )
        else:
            logger.error(f"Webhook dispatch failed: transcript_id={transcript.id}, error={result.error}")
            await self.status_service.record_activity(
                transcript.id,
                "webhook_failed",
                f"Webhook {payload.event} could not be delivered",
                {"event": payload.event, "attempts": result.attempts, "error": result.error},
            )


class AnalysisLauncher:
    """Schedules pipeline runs as asyncio tasks.

    Task references are held until each run finishes so they are not
    garbage collected mid-flight; drain() awaits whatever is still running.
    """

    def __init__(self, runner: Callable[[UUID], Awaitable[AnalysisOutcome]]):
        self._runner = runner
        self._tasks: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def launch(self, transcript_id: UUID) -> None:
        task = asyncio.create_task(self._run(transcript_id), name=f"analysis-{transcript_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"Analysis launched: transcript_id={transcript_id}")

    async def drain(self) -> None:
        if not self._tasks:
            return
        logger.info(f"Waiting for in-flight analyses: count={len(self._tasks)}")
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self, transcript_id: UUID) -> None:
        try:
            outcome = await self._runner(transcript_id)
        except Exception as e:
            # Nothing awaits this task; the store error must at least be visible
            logger.error(f"Analysis run crashed: transcript_id={transcript_id}, error={e}", exc_info=True)
            return

        if outcome.success:
            logger.info(
                f"Analysis run finished: transcript_id={transcript_id}, insights={len(outcome.insights)}"
            )
        else:
            logger.warning(
                f"Analysis run ended without result: transcript_id={transcript_id}, "
                f"code={outcome.error.code if outcome.error else None}"
            )

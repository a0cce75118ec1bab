"""Analysis orchestrator.

Drives one transcript through analyzing -> compiling -> completed, turning
the extraction step's raw candidates into typed, deduplicated insights.
Every path ends in a definite AnalysisOutcome; failures inside the run
mark the transcript failed instead of escaping to the caller.

The orchestrator never notifies anyone. Webhook dispatch and exports are
downstream consumers of its outcome.
"""
import os
import time
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Protocol
from uuid import UUID

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from models.db_models import InsightModel, TranscriptModel, TranscriptStatus
from models.extraction_models import ExtractionOutput, RawInsightCandidate
from services.database import Database
from services.extraction_service import ExtractionTransportError
from services.status_service import (
    StatusService,
    TranscriptNotFoundError,
    InvalidTransitionError,
)
from utils.insight_utils import (
    MAX_DESCRIPTION_LENGTH,
    MAX_TITLE_LENGTH,
    build_summary,
    clamp_confidence,
    clip,
    extract_area,
    map_insight_type,
    suggested_actions,
)
from utils.text_similarity import DUPLICATE_THRESHOLD, is_duplicate

logger = logging.getLogger(__name__)

EXTRACTION_ATTEMPTS = 3


class Extractor(Protocol):
    async def extract(self, text: str) -> ExtractionOutput: ...


@dataclass
class AnalysisError:
    message: str
    code: str


@dataclass
class AnalysisOutcome:
    success: bool
    transcript_id: UUID
    summary: Optional[str] = None
    context: Optional[str] = None
    insights: List[InsightModel] = field(default_factory=list)
    duplicates_removed: int = 0
    processing_time_ms: Optional[int] = None
    error: Optional[AnalysisError] = None


def build_insight(transcript_id: UUID, candidate: RawInsightCandidate) -> InsightModel:
    """Normalize one raw candidate into an unsaved InsightModel."""
    insight_type = map_insight_type(candidate.type)
    title = clip(candidate.title, MAX_TITLE_LENGTH)
    description = clip(candidate.description, MAX_DESCRIPTION_LENGTH) or title
    confidence = clamp_confidence(candidate.confidence)

    evidence = [q.model_dump(exclude_none=True) for q in candidate.evidence if q.quote]
    first = candidate.evidence[0] if candidate.evidence else None

    return InsightModel(
        transcript_id=transcript_id,
        type=insight_type,
        title=title or clip(description, MAX_TITLE_LENGTH),
        description=description,
        confidence=confidence,
        evidence_quotes=evidence,
        evidence_text=evidence[0]["quote"] if evidence else None,
        timestamp_start=candidate.timestamp or (first.timestamp if first else None),
        speaker=candidate.speaker or (first.speaker if first else None),
        area=extract_area(title, description),
        suggested_actions=suggested_actions(insight_type, confidence),
    )


def dedupe_insights(
    insights: List[InsightModel],
    threshold: float = DUPLICATE_THRESHOLD,
) -> tuple[List[InsightModel], int]:
    """Collapse near-identical insights, keeping the higher-confidence one.

    Returns:
        (survivors, discarded_count). Survivors are ordered by confidence,
        highest first; ties keep extraction order.
    """
    ranked = sorted(insights, key=lambda i: i.confidence, reverse=True)
    kept: List[InsightModel] = []
    for insight in ranked:
        text = f"{insight.title} {insight.description}"
        if any(is_duplicate(text, f"{k.title} {k.description}", threshold) for k in kept):
            continue
        kept.append(insight)
    return kept, len(insights) - len(kept)


class AnalysisOrchestrator:
    """Runs the analysis stage for one transcript at a time.

    Args:
        db: Store handle.
        extractor: The extraction step (ExtractionService in production).
        status_service: Lifecycle owner.
        timeout_seconds: Per-attempt extraction timeout.
        sleep: Backoff sleep, injectable for tests.
    """

    def __init__(
        self,
        db: Database,
        extractor: Extractor,
        status_service: Optional[StatusService] = None,
        timeout_seconds: Optional[float] = None,
        max_attempts: int = EXTRACTION_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.db = db
        self.extractor = extractor
        self.status_service = status_service or StatusService(db)
        self.timeout_seconds = timeout_seconds or float(os.getenv("EXTRACTION_TIMEOUT_SECONDS", "180"))
        self.max_attempts = max_attempts
        self._sleep = sleep

    async def analyze(self, transcript_id: UUID, text: str) -> AnalysisOutcome:
        started = time.monotonic()

        try:
            await self.status_service.transition(transcript_id, TranscriptStatus.analyzing)
        except TranscriptNotFoundError:
            logger.warning(f"Analysis requested for unknown transcript: transcript_id={transcript_id}")
            return self._error(transcript_id, "Transcript not found", "TRANSCRIPT_NOT_FOUND", started)
        except InvalidTransitionError as e:
            # Another run owns this transcript; leave its status alone
            logger.info(
                f"Analysis already started: transcript_id={transcript_id}, "
                f"status={e.current.value if e.current else None}"
            )
            return self._error(transcript_id, "Analysis already started", "ANALYSIS_ALREADY_STARTED", started)

        logger.info(f"Analysis started: transcript_id={transcript_id}, length={len(text)}")

        try:
            extraction = await self._extract_with_retry(transcript_id, text)
        except Exception as e:
            logger.error(f"Extraction failed: transcript_id={transcript_id}, error={e}", exc_info=True)
            return await self._fail(transcript_id, f"Extraction failed: {e}", "EXTRACTION_FAILED", started)

        try:
            await self.status_service.transition(transcript_id, TranscriptStatus.compiling)

            candidates = [build_insight(transcript_id, c) for c in extraction.candidates]
            insights, duplicates = dedupe_insights(candidates)

            summary = extraction.summary or build_summary(text, [i.type for i in insights])
            if duplicates:
                summary = f"{summary} ({duplicates} duplicate insight(s) removed)"
            context = extraction.context.value if extraction.context else None

            await self._persist(transcript_id, insights, summary, context)

            elapsed_ms = int((time.monotonic() - started) * 1000)
            await self.status_service.transition(
                transcript_id,
                TranscriptStatus.completed,
                metadata={
                    "insight_count": len(insights),
                    "duplicates_removed": duplicates,
                    "processing_time_ms": elapsed_ms,
                },
            )
        except Exception as e:
            logger.error(f"Analysis failed: transcript_id={transcript_id}, error={e}", exc_info=True)
            return await self._fail(transcript_id, f"Analysis failed: {e}", "ANALYSIS_FAILED", started)

        logger.info(
            f"Analysis complete: transcript_id={transcript_id}, insights={len(insights)}, "
            f"duplicates_removed={duplicates}, processing_time_ms={elapsed_ms}"
        )
        return AnalysisOutcome(
            success=True,
            transcript_id=transcript_id,
            summary=summary,
            context=context,
            insights=insights,
            duplicates_removed=duplicates,
            processing_time_ms=elapsed_ms,
        )

    async def _extract_with_retry(self, transcript_id: UUID, text: str) -> ExtractionOutput:
        """Retry only transport-level failures; output quality is never retried."""

        def _log_retry(retry_state):
            logger.warning(
                f"Extraction transport error, retrying: transcript_id={transcript_id}, "
                f"attempt={retry_state.attempt_number}, error={retry_state.outcome.exception()}"
            )

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(ExtractionTransportError),
            sleep=self._sleep,
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                try:
                    return await asyncio.wait_for(self.extractor.extract(text), timeout=self.timeout_seconds)
                except asyncio.TimeoutError as e:
                    raise ExtractionTransportError(
                        f"Extraction timed out after {self.timeout_seconds}s"
                    ) from e

    async def _persist(
        self,
        transcript_id: UUID,
        insights: List[InsightModel],
        summary: str,
        context: Optional[str],
    ) -> None:
        """Insert the insight batch and write summary/context in one transaction."""
        async with self.db.session() as session:
            transcript = await session.get(TranscriptModel, transcript_id)
            if transcript is None:
                raise TranscriptNotFoundError(transcript_id)

            for insight in insights:
                session.add(insight)

            transcript.summary = summary
            transcript.context_theme = context
            transcript.updated_at = datetime.now(timezone.utc)
            await session.commit()

        logger.info(f"Persisted insights: transcript_id={transcript_id}, count={len(insights)}")

    async def _fail(self, transcript_id: UUID, message: str, code: str, started: float) -> AnalysisOutcome:
        try:
            await self.status_service.transition(
                transcript_id,
                TranscriptStatus.failed,
                message=message,
                metadata={"code": code},
            )
        except (TranscriptNotFoundError, InvalidTransitionError) as e:
            logger.error(f"Could not mark transcript failed: transcript_id={transcript_id}, error={e}")
        return self._error(transcript_id, message, code, started)

    def _error(self, transcript_id: UUID, message: str, code: str, started: float) -> AnalysisOutcome:
        return AnalysisOutcome(
            success=False,
            transcript_id=transcript_id,
            processing_time_ms=int((time.monotonic() - started) * 1000),
            error=AnalysisError(message=message, code=code),
        )

"""
Unit Tests for the Analysis Pipeline and Launcher
"""

import asyncio
import json
import uuid

import httpx
import pytest
from sqlmodel import select

from models.db_models import TranscriptActivityModel, TranscriptModel, TranscriptStatus
from models.extraction_models import ExtractionOutput, RawInsightCandidate
from models.webhook_models import DeliveryConfig
from services.analysis_launcher import AnalysisLauncher, AnalysisPipeline
from services.analysis_service import AnalysisError, AnalysisOrchestrator, AnalysisOutcome
from services.webhook_dispatcher import WebhookDispatcher

WEBHOOK_URL = "https://hooks.example.com/analysis"


class StaticExtractor:
    def __init__(self, output=None, error=None):
        self.output = output or ExtractionOutput(candidates=[
            RawInsightCandidate(type="pain", title="Export is slow", description="CSV export takes minutes", confidence=0.9),
        ])
        self.error = error

    async def extract(self, text):
        if self.error:
            raise self.error
        return self.output


async def no_sleep(seconds):
    return None


def make_pipeline(db, extractor, handler=None, webhook_url=WEBHOOK_URL):
    orchestrator = AnalysisOrchestrator(db, extractor, sleep=no_sleep)
    dispatcher = WebhookDispatcher(
        transport=httpx.MockTransport(handler or (lambda r: httpx.Response(200))),
        sleep=no_sleep,
    )
    return AnalysisPipeline(
        db,
        orchestrator,
        dispatcher=dispatcher,
        webhook_url=webhook_url,
        delivery_config=DeliveryConfig(retry_attempts=2),
    )


async def activity_types(db, transcript_id):
    async with db.session() as session:
        result = await session.execute(
            select(TranscriptActivityModel.activity_type)
            .where(TranscriptActivityModel.transcript_id == transcript_id)
            .order_by(TranscriptActivityModel.id)
        )
        return list(result.scalars().all())


class TestAnalysisPipeline:

    @pytest.mark.asyncio
    async def test_completed_run_is_delivered(self, db, make_transcript):
        transcript = await make_transcript()
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200)

        outcome = await make_pipeline(db, StaticExtractor(), handler).run(transcript.id)

        assert outcome.success is True
        assert len(bodies) == 1
        assert bodies[0]["event"] == "analysis.completed"
        assert bodies[0]["callId"] == str(transcript.id)
        assert bodies[0]["result"]["insights"][0]["title"] == "Export is slow"
        assert (await activity_types(db, transcript.id))[-1] == "webhook_delivered"

    @pytest.mark.asyncio
    async def test_failed_run_sends_failure_event(self, db, make_transcript):
        transcript = await make_transcript()
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200)

        outcome = await make_pipeline(db, StaticExtractor(error=ValueError("bad key")), handler).run(transcript.id)

        assert outcome.success is False
        assert bodies[0]["event"] == "analysis.failed"
        assert bodies[0]["error"]["code"] == "EXTRACTION_FAILED"

    @pytest.mark.asyncio
    async def test_undeliverable_webhook_keeps_analysis(self, db, make_transcript):
        transcript = await make_transcript()
        pipeline = make_pipeline(db, StaticExtractor(), lambda r: httpx.Response(500))

        outcome = await pipeline.run(transcript.id)

        assert outcome.success is True
        async with db.session() as session:
            stored = await session.get(TranscriptModel, transcript.id)
            failure = (await session.execute(
                select(TranscriptActivityModel)
                .where(TranscriptActivityModel.activity_type == "webhook_failed")
            )).scalars().one()
        assert stored.status == TranscriptStatus.completed
        assert failure.metadata_json["attempts"] == 2

    @pytest.mark.asyncio
    async def test_no_webhook_url_skips_dispatch(self, db, make_transcript):
        transcript = await make_transcript()
        calls = []
        pipeline = make_pipeline(db, StaticExtractor(), lambda r: calls.append(r) or httpx.Response(200), webhook_url=None)

        outcome = await pipeline.run(transcript.id)

        assert outcome.success is True
        assert calls == []
        assert "webhook_delivered" not in await activity_types(db, transcript.id)

    @pytest.mark.asyncio
    async def test_already_started_does_not_dispatch(self, db, make_transcript):
        transcript = await make_transcript(status=TranscriptStatus.analyzing)
        calls = []
        pipeline = make_pipeline(db, StaticExtractor(), lambda r: calls.append(r) or httpx.Response(200))

        outcome = await pipeline.run(transcript.id)

        assert outcome.error.code == "ANALYSIS_ALREADY_STARTED"
        assert calls == []

    @pytest.mark.asyncio
    async def test_unknown_transcript(self, db):
        outcome = await make_pipeline(db, StaticExtractor()).run(uuid.uuid4())

        assert outcome.error.code == "TRANSCRIPT_NOT_FOUND"


class TestAnalysisLauncher:

    @pytest.mark.asyncio
    async def test_launch_runs_in_background_and_drains(self):
        started = asyncio.Event()
        release = asyncio.Event()
        seen = []

        async def runner(transcript_id):
            seen.append(transcript_id)
            started.set()
            await release.wait()
            return AnalysisOutcome(success=True, transcript_id=transcript_id)

        launcher = AnalysisLauncher(runner)
        transcript_id = uuid.uuid4()

        launcher.launch(transcript_id)
        await started.wait()
        assert launcher.in_flight == 1

        release.set()
        await launcher.drain()

        assert seen == [transcript_id]
        assert launcher.in_flight == 0

    @pytest.mark.asyncio
    async def test_crashing_run_is_contained(self):
        async def runner(transcript_id):
            raise RuntimeError("database went away")

        launcher = AnalysisLauncher(runner)
        launcher.launch(uuid.uuid4())

        await launcher.drain()

        assert launcher.in_flight == 0

    @pytest.mark.asyncio
    async def test_unsuccessful_outcome_is_not_an_error(self):
        async def runner(transcript_id):
            return AnalysisOutcome(
                success=False,
                transcript_id=transcript_id,
                error=AnalysisError(message="Transcript not found", code="TRANSCRIPT_NOT_FOUND"),
            )

        launcher = AnalysisLauncher(runner)
        launcher.launch(uuid.uuid4())

        await launcher.drain()

        assert launcher.in_flight == 0

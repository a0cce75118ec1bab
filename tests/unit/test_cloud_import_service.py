"""
Unit Tests for Cloud Recording Import
"""

import httpx
import pytest
from sqlmodel import select

from models.db_models import TranscriptModel, TranscriptOrigin
from services.cloud_import_service import CloudImportService, CloudRecording
from services.ingestion_service import IngestionService

VTT = """WEBVTT

00:00:01.000 --> 00:00:04.000
Dana: The weekly report takes me an hour to build by hand.
"""


class DownloadStub:
    """Serves transcript bodies by URL path; unknown paths return 404."""

    def __init__(self, bodies):
        self.bodies = bodies
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        path = request.url.path
        if path == "/boom":
            raise httpx.ConnectError("connection reset", request=request)
        if path not in self.bodies:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, text=self.bodies[path])


def make_service(db, launcher, stub):
    ingestion = IngestionService(db, launcher)
    return CloudImportService(db, ingestion, transport=httpx.MockTransport(stub))


def recording(meeting_id, path=None, **kwargs):
    url = f"https://cloud.example.com{path}" if path else None
    return CloudRecording(meeting_id=meeting_id, transcript_url=url, **kwargs)


class TestCloudImport:

    @pytest.mark.asyncio
    async def test_imports_recording(self, db, launcher):
        stub = DownloadStub({"/m1.vtt": VTT})
        service = make_service(db, launcher, stub)

        summary = await service.import_recordings(
            "U123",
            [recording("m1", "/m1.vtt", topic="Weekly sync", duration_minutes=30)],
            access_token="tok",
        )

        assert summary.imported == 1
        assert summary.failed == 0
        assert stub.requests[0].headers["Authorization"] == "Bearer tok"

        async with db.session() as session:
            transcript = (await session.execute(select(TranscriptModel))).scalars().one()
        assert str(transcript.id) == summary.transcript_ids[0]
        assert transcript.origin == TranscriptOrigin.cloud_import
        assert transcript.title == "Weekly sync"
        assert transcript.external_meeting_id == "m1"
        assert transcript.duration_minutes == 30
        assert transcript.file_type == "vtt"
        assert launcher.launched == [transcript.id]

    @pytest.mark.asyncio
    async def test_rerun_skips_imported_meetings(self, db, launcher):
        stub = DownloadStub({"/m1.vtt": VTT})
        service = make_service(db, launcher, stub)

        await service.import_recordings("U123", [recording("m1", "/m1.vtt")], access_token="tok")
        summary = await service.import_recordings("U123", [recording("m1", "/m1.vtt")], access_token="tok")

        assert summary.imported == 0
        assert summary.skipped == 1
        assert len(stub.requests) == 1

    @pytest.mark.asyncio
    async def test_other_owner_can_import_same_meeting(self, db, launcher):
        stub = DownloadStub({"/m1.vtt": VTT})
        service = make_service(db, launcher, stub)

        await service.import_recordings("U123", [recording("m1", "/m1.vtt")], access_token="tok")
        summary = await service.import_recordings("U999", [recording("m1", "/m1.vtt")], access_token="tok2")

        assert summary.imported == 1
        assert summary.skipped == 0
        assert len(stub.requests) == 2

        async with db.session() as session:
            owners = (await session.execute(select(TranscriptModel.owner_user_id))).scalars().all()
        assert sorted(owners) == ["U123", "U999"]

    @pytest.mark.asyncio
    async def test_failures_are_counted_not_raised(self, db, launcher):
        stub = DownloadStub({"/empty.vtt": "   ", "/ok.vtt": VTT})
        service = make_service(db, launcher, stub)

        summary = await service.import_recordings(
            "U123",
            [
                recording("missing", "/missing.vtt"),
                recording("empty", "/empty.vtt"),
                recording("reset", "/boom"),
                recording("no-url"),
                recording("ok", "/ok.vtt"),
            ],
            access_token="tok",
        )

        assert summary.imported == 1
        assert summary.failed == 3
        assert summary.skipped == 1

"""
Shared fixtures: a throwaway SQLite store per test and fake collaborators.
"""

import pytest
import pytest_asyncio
from sqlalchemy.pool import NullPool

from models.db_models import (
    InsightModel,
    InsightType,
    TranscriptModel,
    TranscriptOrigin,
    TranscriptStatus,
)
from services.database import Database
from utils.fingerprint import fingerprint


class RecordingLauncher:
    """Launcher that records ids instead of starting background work."""

    def __init__(self):
        self.launched = []

    def launch(self, transcript_id):
        self.launched.append(transcript_id)


class FailingLauncher:
    def launch(self, transcript_id):
        raise RuntimeError("scheduler unavailable")


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path}/test.db", poolclass=NullPool)
    await database.create_all()
    yield database
    await database.dispose()


@pytest.fixture
def launcher():
    return RecordingLauncher()


@pytest.fixture
def failing_launcher():
    return FailingLauncher()


@pytest.fixture
def make_transcript(db):
    """Insert a transcript row directly, bypassing ingestion."""

    async def _make(
        content: str = "We talked about onboarding pain for twenty minutes.",
        owner_user_id: str = "U123",
        status: TranscriptStatus = TranscriptStatus.uploaded,
        origin: TranscriptOrigin = TranscriptOrigin.chat_paste,
        title: str = "Customer call",
        **fields,
    ) -> TranscriptModel:
        transcript = TranscriptModel(
            title=title,
            origin=origin,
            status=status,
            owner_user_id=owner_user_id,
            raw_text=content,
            content_hash=fingerprint(content),
            **fields,
        )
        async with db.session() as session:
            session.add(transcript)
            await session.commit()
        return transcript

    return _make


@pytest.fixture
def make_insight(db):
    """Insert an insight row for an existing transcript."""

    async def _make(
        transcript_id,
        insight_type: InsightType = InsightType.pain,
        confidence: float = 0.9,
        title: str = "Onboarding is confusing",
        description: str = "New users cannot find the setup wizard.",
        **fields,
    ) -> InsightModel:
        insight = InsightModel(
            transcript_id=transcript_id,
            type=insight_type,
            title=title,
            description=description,
            confidence=confidence,
            **fields,
        )
        async with db.session() as session:
            session.add(insight)
            await session.commit()
        return insight

    return _make

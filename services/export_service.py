"""Export pipeline: pushes eligible insights to a configured destination.

Per insight: filter on confidence and type, skip anything already exported
successfully to this provider, map fields, create the remote record, and
record the outcome on the insight. One failing insight never aborts the
batch.

Before the remote call each insight is claimed for the provider with a
compare-and-set on export_version, so two overlapping exports of the same
insight never both reach the destination. A claim left behind by a crashed
export expires after EXPORT_CLAIM_TIMEOUT.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

import httpx
from sqlalchemy import update
from sqlmodel import select

from models.db_models import (
    ExportConfigModel,
    ExportProvider,
    InsightModel,
    InsightStatus,
    InsightType,
    TranscriptModel,
)
from models.export_models import (
    ExportConfig,
    ExportDestinationRecord,
    ExportItemError,
    ExportResult,
    ExportTarget,
    FieldMapping,
)
from services.database import Database
from services.destinations import Destination, DestinationError, build_destination
from services.status_service import add_activity
from utils.encryption import CredentialCipher

logger = logging.getLogger(__name__)


EXPORT_CLAIM_TIMEOUT = timedelta(minutes=10)

# Other writers can bump export_version between our read and our update
CLAIM_ATTEMPTS = 3


def has_successful_export(insight: InsightModel, provider: ExportProvider) -> bool:
    record = (insight.export_destinations or {}).get(provider.value)
    return bool(record) and record.get("outcome") == "success"


def has_live_claim(insight: InsightModel, provider: ExportProvider, now: datetime) -> bool:
    record = (insight.export_destinations or {}).get(provider.value)
    if not record or record.get("outcome") != "pending":
        return False
    try:
        claimed_at = datetime.fromisoformat(record["timestamp"])
    except (KeyError, TypeError, ValueError):
        return False
    if claimed_at.tzinfo is None:
        claimed_at = claimed_at.replace(tzinfo=timezone.utc)
    return now - claimed_at < EXPORT_CLAIM_TIMEOUT


class ExportService:
    """Reads/writes export configs and runs export batches.

    Args:
        db: Store handle.
        cipher: Credential cipher. Built from ENCRYPTION_KEY on first use
            when not supplied.
        transport: Optional httpx transport for destinations (tests).
    """

    def __init__(
        self,
        db: Database,
        cipher: Optional[CredentialCipher] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.db = db
        self._cipher = cipher
        self._transport = transport

    @property
    def cipher(self) -> CredentialCipher:
        if self._cipher is None:
            self._cipher = CredentialCipher()
        return self._cipher

    # --- Configuration ---

    async def upsert_export_config(
        self,
        owner_user_id: str,
        target: ExportTarget,
        credentials: Optional[Dict[str, Any]] = None,
        field_mapping: Optional[FieldMapping] = None,
        min_confidence: float = 0.7,
        types_filter: Optional[Iterable[InsightType]] = None,
        enabled: bool = True,
    ) -> ExportConfig:
        """Create or replace the config for (owner_user_id, target provider)."""
        config = ExportConfig(
            owner_user_id=owner_user_id,
            target=target,
            enabled=enabled,
            credentials=credentials or {},
            field_mapping=field_mapping or FieldMapping(),
            min_confidence=min_confidence,
            types_filter=set(types_filter or []),
        )
        provider = config.provider
        encrypted = self.cipher.encrypt_credentials(config.credentials)
        now = datetime.now(timezone.utc)

        async with self.db.session() as session:
            result = await session.execute(
                select(ExportConfigModel)
                .where(ExportConfigModel.owner_user_id == owner_user_id)
                .where(ExportConfigModel.provider == provider)
            )
            row = result.scalars().first()
            if row is None:
                row = ExportConfigModel(owner_user_id=owner_user_id, provider=provider)
                session.add(row)

            row.enabled = enabled
            row.credentials_encrypted = encrypted
            row.destination = config.target.model_dump()
            row.field_mapping = config.field_mapping.model_dump(exclude_none=True)
            row.min_confidence = config.min_confidence
            row.types_filter = sorted(t.value for t in config.types_filter)
            row.updated_at = now
            await session.commit()

        logger.info(
            f"Export config saved: owner_user_id={owner_user_id}, provider={provider.value}, "
            f"enabled={enabled}, credential_fields={sorted(config.credentials.keys())}"
        )
        return config

    async def get_export_config(self, owner_user_id: str, provider: ExportProvider) -> Optional[ExportConfig]:
        """Enabled config with decrypted credentials, or None."""
        async with self.db.session() as session:
            result = await session.execute(
                select(ExportConfigModel)
                .where(ExportConfigModel.owner_user_id == owner_user_id)
                .where(ExportConfigModel.provider == provider)
                .where(ExportConfigModel.enabled == True)  # noqa: E712
            )
            row = result.scalars().first()

        if row is None:
            return None

        return ExportConfig(
            owner_user_id=row.owner_user_id,
            target={**row.destination, "provider": row.provider.value},
            enabled=row.enabled,
            credentials=self.cipher.decrypt_credentials(row.credentials_encrypted),
            field_mapping=FieldMapping(**(row.field_mapping or {})),
            min_confidence=row.min_confidence,
            types_filter={InsightType(t) for t in row.types_filter or []},
        )

    # --- Export ---

    async def export_insights(self, insight_ids: List[UUID], config: ExportConfig) -> ExportResult:
        provider = config.provider
        mapping = config.resolved_mapping()
        result = ExportResult()
        per_transcript: Dict[UUID, Dict[str, int]] = defaultdict(lambda: {"exported": 0, "failed": 0})

        logger.info(
            f"Export started: owner_user_id={config.owner_user_id}, provider={provider.value}, "
            f"requested={len(insight_ids)}, min_confidence={config.min_confidence}"
        )

        rows = await self._load_insights(insight_ids, config.owner_user_id)

        destination: Optional[Destination] = None
        setup_error: Optional[DestinationError] = None
        try:
            destination = build_destination(config, transport=self._transport)
        except DestinationError as e:
            setup_error = e

        for insight_id in dict.fromkeys(insight_ids):
            row = rows.get(insight_id)
            if row is None:
                logger.warning(f"Export skipped, insight not found: insight_id={insight_id}")
                result.skipped_count += 1
                continue
            insight, source_title = row

            if insight.confidence < config.min_confidence:
                logger.info(
                    f"Export skipped, below threshold: insight_id={insight_id}, confidence={insight.confidence}"
                )
                result.skipped_count += 1
                continue
            if config.types_filter and insight.type not in config.types_filter:
                logger.info(f"Export skipped, type filtered: insight_id={insight_id}, type={insight.type.value}")
                result.skipped_count += 1
                continue
            if has_successful_export(insight, provider):
                logger.info(f"Export skipped, already exported: insight_id={insight_id}, provider={provider.value}")
                result.skipped_count += 1
                continue
            if not await self._claim(insight_id, provider):
                logger.info(
                    f"Export skipped, claimed by another export: insight_id={insight_id}, provider={provider.value}"
                )
                result.skipped_count += 1
                continue

            try:
                if setup_error is not None:
                    raise setup_error
                fields = destination.map_fields(insight, source_title, mapping)
                remote_id = await destination.create_record(fields)
            except DestinationError as e:
                logger.error(
                    f"Export failed: insight_id={insight_id}, provider={provider.value}, "
                    f"kind={e.kind}, error={e.message}"
                )
                recorded = await self._record_outcome(
                    insight_id,
                    ExportDestinationRecord(
                        provider=provider,
                        outcome="failed",
                        error=e.user_message,
                        technical_error=e.message,
                    ),
                )
                if not recorded:
                    result.skipped_count += 1
                    continue
                result.failed_count += 1
                result.errors.append(ExportItemError(insight_id=insight_id, message=e.user_message))
                per_transcript[insight.transcript_id]["failed"] += 1
                continue

            recorded = await self._record_outcome(
                insight_id,
                ExportDestinationRecord(provider=provider, outcome="success", remote_id=remote_id),
            )
            if not recorded:
                result.skipped_count += 1
                continue
            logger.info(f"Insight exported: insight_id={insight_id}, provider={provider.value}, remote_id={remote_id}")
            result.exported_count += 1
            result.remote_ids.append(remote_id)
            per_transcript[insight.transcript_id]["exported"] += 1

        await self._record_activities(provider, per_transcript)

        logger.info(
            f"Export finished: provider={provider.value}, exported={result.exported_count}, "
            f"failed={result.failed_count}, skipped={result.skipped_count}"
        )
        return result

    async def _load_insights(
        self,
        insight_ids: List[UUID],
        owner_user_id: str,
    ) -> Dict[UUID, tuple[InsightModel, str]]:
        if not insight_ids:
            return {}
        async with self.db.session() as session:
            result = await session.execute(
                select(InsightModel, TranscriptModel.title)
                .join(TranscriptModel, TranscriptModel.id == InsightModel.transcript_id)
                .where(InsightModel.id.in_(list(insight_ids)))
                .where(InsightModel.archived == False)  # noqa: E712
                .where(TranscriptModel.owner_user_id == owner_user_id)
            )
            return {insight.id: (insight, title) for insight, title in result.all()}

    async def _claim(self, insight_id: UUID, provider: ExportProvider) -> bool:
        """Mark the insight pending for provider unless a success or live claim exists."""
        for _ in range(CLAIM_ATTEMPTS):
            now = datetime.now(timezone.utc)
            async with self.db.session() as session:
                insight = await session.get(InsightModel, insight_id, populate_existing=True)
                if insight is None:
                    return False
                if has_successful_export(insight, provider) or has_live_claim(insight, provider, now):
                    return False

                version = insight.export_version
                destinations = dict(insight.export_destinations or {})
                destinations[provider.value] = ExportDestinationRecord(
                    provider=provider, outcome="pending", timestamp=now
                ).model_dump(mode="json", exclude_none=True)

                result = await session.execute(
                    update(InsightModel)
                    .where(InsightModel.id == insight_id)
                    .where(InsightModel.export_version == version)
                    .values(export_destinations=destinations, export_version=version + 1, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    await session.commit()
                    return True
                await session.rollback()

        logger.warning(f"Export claim contended: insight_id={insight_id}, provider={provider.value}")
        return False

    async def _record_outcome(self, insight_id: UUID, record: ExportDestinationRecord) -> bool:
        """Store the outcome; False when a success for this provider is already recorded."""
        provider = record.provider
        async with self.db.session() as session:
            insight = await session.get(InsightModel, insight_id, populate_existing=True)
            if insight is None:
                return False

            if has_successful_export(insight, provider):
                logger.warning(
                    f"Concurrent export already recorded: insight_id={insight_id}, provider={provider.value}, "
                    f"kept_remote_id={insight.export_destinations[provider.value].get('remote_id')}"
                )
                return False

            destinations = dict(insight.export_destinations or {})
            destinations[provider.value] = record.model_dump(mode="json", exclude_none=True)
            insight.export_destinations = destinations
            insight.export_version += 1

            if record.outcome == "success":
                insight.exported = True
                insight.status = InsightStatus.exported
            else:
                insight.status = InsightStatus.export_failed
            insight.updated_at = datetime.now(timezone.utc)
            await session.commit()
            return True

    async def _record_activities(self, provider: ExportProvider, per_transcript: Dict[UUID, Dict[str, int]]) -> None:
        if not per_transcript:
            return
        async with self.db.session() as session:
            for transcript_id, counts in per_transcript.items():
                add_activity(
                    session,
                    transcript_id,
                    "export_completed",
                    f"Exported {counts['exported']} insight(s) to {provider.value}",
                    {"provider": provider.value, **counts},
                )
            await session.commit()

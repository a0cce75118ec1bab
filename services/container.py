"""Wires the services together around one Database handle."""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from models.webhook_models import DeliveryConfig
from services.analysis_launcher import AnalysisLauncher, AnalysisPipeline
from services.analysis_service import AnalysisOrchestrator, Extractor
from services.cloud_import_service import CloudImportService
from services.database import Database
from services.export_service import ExportService
from services.extraction_service import ExtractionService
from services.ingestion_service import IngestionService
from services.status_service import StatusService
from services.webhook_dispatcher import WebhookDispatcher, get_delivery_config, get_webhook_url
from utils.encryption import CredentialCipher

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    db: Database
    status: StatusService
    ingestion: IngestionService
    orchestrator: AnalysisOrchestrator
    pipeline: AnalysisPipeline
    launcher: AnalysisLauncher
    exports: ExportService
    cloud_import: CloudImportService

    async def shutdown(self) -> None:
        await self.launcher.drain()
        await self.db.dispose()


def build_services(
    db: Database,
    extractor: Optional[Extractor] = None,
    webhook_url: Optional[str] = None,
    delivery_config: Optional[DeliveryConfig] = None,
    dispatcher: Optional[WebhookDispatcher] = None,
    cipher: Optional[CredentialCipher] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ServiceContainer:
    """Build every service once; environment fills whatever is not passed."""
    status = StatusService(db)
    orchestrator = AnalysisOrchestrator(db, extractor or ExtractionService(), status_service=status)
    pipeline = AnalysisPipeline(
        db,
        orchestrator,
        status_service=status,
        dispatcher=dispatcher or WebhookDispatcher(transport=transport),
        webhook_url=webhook_url if webhook_url is not None else get_webhook_url(),
        delivery_config=delivery_config or get_delivery_config(),
    )
    launcher = AnalysisLauncher(pipeline.run)
    ingestion = IngestionService(db, launcher, status_service=status)

    logger.info("Services initialized")
    return ServiceContainer(
        db=db,
        status=status,
        ingestion=ingestion,
        orchestrator=orchestrator,
        pipeline=pipeline,
        launcher=launcher,
        exports=ExportService(db, cipher=cipher, transport=transport),
        cloud_import=CloudImportService(db, ingestion, transport=transport),
    )

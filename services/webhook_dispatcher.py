"""Webhook dispatcher for analysis notifications.

Delivers analysis.completed / analysis.failed payloads to an external URL
with a bounded timeout and exponential backoff between attempts (2s, 4s,
8s...). Delivery failures are reported to the caller, never raised: a
webhook that cannot be reached must not undo the analysis it describes.
"""
import os
import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from models.db_models import InsightModel, TranscriptModel
from models.webhook_models import (
    DeliveryConfig,
    DeliveryResult,
    WebhookError,
    WebhookInsight,
    WebhookPayload,
    WebhookResult,
    WebhookResultMetadata,
)
from utils.severity import derive_severity

logger = logging.getLogger(__name__)

USER_AGENT = "TranscriptInsights/1.0"


class WebhookDeliveryError(Exception):
    """Raised for a non-2xx webhook response (retried)."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        super().__init__(f"Webhook returned {status_code}: {body[:200]}")


def get_webhook_url() -> Optional[str]:
    return os.getenv("WEBHOOK_URL") or os.getenv("N8N_WEBHOOK_URL")


def get_delivery_config() -> DeliveryConfig:
    return DeliveryConfig(
        retry_attempts=int(os.getenv("WEBHOOK_RETRY_ATTEMPTS", "3")),
        timeout_ms=int(os.getenv("WEBHOOK_TIMEOUT_MS", "30000")),
    )


def log_webhook_status() -> None:
    """Log whether outbound webhook dispatch is configured."""
    url = get_webhook_url()
    if url:
        config = get_delivery_config()
        logger.info("=" * 60)
        logger.info("Webhook dispatch ENABLED")
        logger.info(f"  Retry attempts: {config.retry_attempts}")
        logger.info(f"  Timeout: {config.timeout_ms}ms")
        logger.info("=" * 60)
    else:
        logger.warning("=" * 60)
        logger.warning("Webhook dispatch DISABLED")
        logger.warning("Missing WEBHOOK_URL (or N8N_WEBHOOK_URL)")
        logger.warning("Analysis results will only be available via the transcripts API")
        logger.warning("=" * 60)


def to_webhook_insight(insight: InsightModel) -> WebhookInsight:
    return WebhookInsight(
        id=str(insight.id),
        type=insight.type.value,
        title=insight.title,
        description=insight.description,
        evidence=insight.evidence_text,
        confidence=insight.confidence,
        confidence_percent=round(insight.confidence * 100),
        severity=derive_severity(insight.type, insight.confidence).value,
        area=insight.area,
        suggested_actions=insight.suggested_actions or None,
        timestamp=insight.timestamp_start,
        speaker=insight.speaker,
    )


def build_completed_payload(
    transcript: TranscriptModel,
    summary: str,
    insights: Iterable[InsightModel],
    context: Optional[str] = None,
    processing_time_ms: Optional[int] = None,
) -> WebhookPayload:
    items = [to_webhook_insight(i) for i in insights]
    return WebhookPayload(
        event="analysis.completed",
        timestamp=datetime.now(timezone.utc),
        call_id=str(transcript.id),
        source=transcript.origin.value,
        result=WebhookResult(
            context=context,
            summary=summary,
            insights=items,
            metadata=WebhookResultMetadata(
                processing_time_ms=processing_time_ms,
                insight_count=len(items),
                high_confidence_count=sum(1 for i in items if i.confidence >= 0.8),
                medium_confidence_count=sum(1 for i in items if 0.5 <= i.confidence < 0.8),
                low_confidence_count=sum(1 for i in items if i.confidence < 0.5),
            ),
        ),
    )


def build_failed_payload(transcript: TranscriptModel, message: str, code: str = "ANALYSIS_FAILED") -> WebhookPayload:
    return WebhookPayload(
        event="analysis.failed",
        timestamp=datetime.now(timezone.utc),
        call_id=str(transcript.id),
        source=transcript.origin.value,
        error=WebhookError(message=message, code=code),
    )


class WebhookDispatcher:
    """Sends webhook payloads with bounded retries.

    Args:
        transport: Optional httpx transport (tests pass httpx.MockTransport).
        sleep: Backoff sleep, injectable for tests.
    """

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._transport = transport
        self._sleep = sleep

    async def deliver(
        self,
        url: str,
        payload: WebhookPayload,
        config: Optional[DeliveryConfig] = None,
    ) -> DeliveryResult:
        """POST the payload, retrying up to config.retry_attempts times in total."""
        config = config or DeliveryConfig()
        body = payload.to_wire()
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT, **config.headers}
        attempts = 0

        logger.info(
            f"Sending webhook: event={payload.event}, call_id={payload.call_id}, "
            f"max_attempts={config.retry_attempts}"
        )

        def _log_retry(retry_state):
            logger.warning(
                f"Webhook attempt failed: call_id={payload.call_id}, "
                f"attempt={retry_state.attempt_number}/{config.retry_attempts}, "
                f"error={retry_state.outcome.exception()}"
            )

        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=config.timeout_ms / 1000,
            ) as client:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(config.retry_attempts),
                    wait=wait_exponential(multiplier=2, max=60),
                    retry=retry_if_exception_type((WebhookDeliveryError, httpx.TransportError)),
                    sleep=self._sleep,
                    before_sleep=_log_retry,
                    reraise=True,
                ):
                    with attempt:
                        attempts += 1
                        response = await client.post(url, json=body, headers=headers)
                        if not response.is_success:
                            raise WebhookDeliveryError(response.status_code, response.text)
        except (WebhookDeliveryError, httpx.TransportError) as e:
            logger.error(
                f"Webhook delivery failed: call_id={payload.call_id}, attempts={attempts}, error={e}"
            )
            return DeliveryResult(
                success=False,
                attempts=attempts,
                status_code=getattr(e, "status_code", None),
                error=f"Failed after {attempts} attempts: {e}",
            )

        logger.info(
            f"Webhook delivered: call_id={payload.call_id}, status={response.status_code}, attempt={attempts}"
        )
        return DeliveryResult(success=True, attempts=attempts, status_code=response.status_code)

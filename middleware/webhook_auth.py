"""
Inbound Webhook Authentication

External systems (meeting recorders, automation tools) push transcripts to
POST /webhooks/transcript. Calls are authenticated with a shared secret sent
in the X-Webhook-Secret header and compared in constant time.

When INBOUND_WEBHOOK_SECRET is unset the endpoint accepts unauthenticated
calls, which is only meant for local development. Secrets are never logged.
"""

import os
import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)

WEBHOOK_SECRET_HEADER = "X-Webhook-Secret"


class WebhookAuthError(Exception):
    """
    Raised when inbound webhook authentication fails.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for logging/metrics
    """
    def __init__(self, message: str, code: str = "WEBHOOK_AUTH_INVALID"):
        self.message = message
        self.code = code
        super().__init__(message)


def get_inbound_secret() -> Optional[str]:
    return os.getenv("INBOUND_WEBHOOK_SECRET") or None


def is_webhook_auth_configured() -> bool:
    return get_inbound_secret() is not None


def verify_webhook_secret(provided: Optional[str], expected: Optional[str] = None) -> None:
    """
    Verify the shared secret from an inbound webhook call.

    Args:
        provided: Value of the X-Webhook-Secret header
        expected: Secret to compare against (defaults to INBOUND_WEBHOOK_SECRET)

    Raises:
        WebhookAuthError: Header missing or secret mismatch
    """
    expected = expected if expected is not None else get_inbound_secret()

    if expected is None:
        logger.debug("Inbound webhook secret not configured, accepting call")
        return

    if not provided:
        logger.warning(f"Inbound webhook rejected: missing {WEBHOOK_SECRET_HEADER} header")
        raise WebhookAuthError("Missing webhook secret", code="WEBHOOK_SECRET_MISSING")

    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Inbound webhook rejected: secret mismatch")
        raise WebhookAuthError("Invalid webhook secret", code="WEBHOOK_SECRET_INVALID")

"""Export destinations: Linear issues, Airtable records, generic webhooks.

Each destination maps an insight onto its own field names and creates one
remote record per call. Provider failures are classified into a small set
of kinds, each with a fixed message that can be shown to the user as-is.
"""
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from models.db_models import ExportProvider, InsightModel
from models.export_models import (
    AirtableTarget,
    ExportConfig,
    FieldMapping,
    LinearTarget,
    WebhookTarget,
)
from utils.severity import derive_severity

logger = logging.getLogger(__name__)

LINEAR_API_URL = "https://api.linear.app/graphql"
AIRTABLE_API_URL = "https://api.airtable.com/v0"
DEFAULT_TIMEOUT_SECONDS = 30.0

LINEAR_ISSUE_CREATE = """
mutation IssueCreate($input: IssueCreateInput!) {
  issueCreate(input: $input) {
    success
    issue { id identifier url }
  }
}
"""


class DestinationError(Exception):
    """A classified destination failure.

    Attributes:
        kind: not_found | auth | field_shape | generic
        message: Technical detail for logs and the activity trail
        user_message: Actionable text for the user
    """

    def __init__(self, kind: str, message: str, user_message: Optional[str] = None):
        self.kind = kind
        self.message = message
        self.user_message = user_message or message
        super().__init__(message)


_USER_MESSAGES = {
    ExportProvider.airtable: {
        "not_found": "Airtable table or base not found. Please check your Base ID and Table Name in settings.",
        "forbidden": "Airtable API key does not have permission to write to this base/table.",
        "unauthorized": "Airtable API key is invalid or expired. Please update your settings.",
        "unknown_field": "Field names in your Airtable table may not match your field mapping settings.",
    },
    ExportProvider.linear: {
        "not_found": "Linear team not found. Please check your Team ID in settings.",
        "forbidden": "Linear API key does not have access to this team.",
        "unauthorized": "Linear API key is invalid or expired. Please update your settings.",
        "unknown_field": "Linear rejected the issue fields. Please check your field mapping settings.",
    },
    ExportProvider.webhook: {
        "not_found": "Webhook endpoint not found. Please check the URL in settings.",
        "forbidden": "Webhook endpoint refused the request.",
        "unauthorized": "Webhook endpoint rejected the credentials. Please update your settings.",
        "unknown_field": "Webhook endpoint rejected the payload format.",
    },
}


def classify_error(
    provider: ExportProvider,
    status_code: Optional[int],
    error_type: Optional[str],
    message: Optional[str],
) -> DestinationError:
    """Map a provider error onto a DestinationError kind and user message."""
    messages = _USER_MESSAGES[provider]
    error_type = (error_type or "").upper()
    detail = message or (f"HTTP {status_code}" if status_code else "Unknown error")

    if error_type == "NOT_FOUND" or status_code == 404:
        return DestinationError("not_found", detail, messages["not_found"])
    if error_type in ("INVALID_PERMISSIONS", "AUTHENTICATION_REQUIRED", "FORBIDDEN") or status_code == 403:
        return DestinationError("auth", detail, messages["forbidden"])
    if error_type in ("INVALID_REQUEST_UNKNOWN", "UNKNOWN_FIELD_NAME"):
        return DestinationError("field_shape", detail, messages["unknown_field"])
    if status_code == 401 or error_type == "AUTHENTICATION_ERROR":
        return DestinationError("auth", detail, messages["unauthorized"])
    if status_code == 422 or error_type in ("INVALID_REQUEST", "INVALID_VALUE_FOR_COLUMN", "INVALID_INPUT"):
        label = provider.value.capitalize()
        return DestinationError(
            "field_shape",
            detail,
            f"{label} rejected the data format: {message or 'check your field types match'}",
        )
    return DestinationError("generic", detail, message or "Export failed")


def primary_evidence(insight: InsightModel) -> Optional[str]:
    if insight.evidence_text:
        return insight.evidence_text
    for quote_ in insight.evidence_quotes or []:
        if quote_.get("quote"):
            return quote_["quote"]
    return None


def build_mapped_fields(insight: InsightModel, source_title: str, mapping: FieldMapping) -> Dict[str, Any]:
    """Insight -> {destination field: value} for every mapped field."""
    fields: Dict[str, Any] = {
        mapping.title: insight.title,
        mapping.description: insight.description,
    }
    if mapping.author and insight.speaker:
        fields[mapping.author] = insight.speaker
    evidence = primary_evidence(insight)
    if mapping.evidence and evidence:
        fields[mapping.evidence] = evidence
    if mapping.type:
        fields[mapping.type] = insight.type.value
    if mapping.confidence:
        fields[mapping.confidence] = insight.confidence
    if mapping.source:
        fields[mapping.source] = source_title
    if mapping.status:
        fields[mapping.status] = "New"
    if mapping.severity:
        fields[mapping.severity] = derive_severity(insight.type, insight.confidence).value
    if mapping.area and insight.area:
        fields[mapping.area] = insight.area
    return fields


class Destination:
    """Base class: subclasses implement map_fields and create_record."""

    provider: ExportProvider

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self._transport = transport
        self._timeout = timeout

    def map_fields(self, insight: InsightModel, source_title: str, mapping: FieldMapping) -> Dict[str, Any]:
        return build_mapped_fields(insight, source_title, mapping)

    async def create_record(self, fields: Dict[str, Any]) -> str:
        raise NotImplementedError

    async def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> httpx.Response:
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                return await client.post(url, json=payload, headers=headers)
        except httpx.TransportError as e:
            label = self.provider.value.capitalize()
            raise DestinationError("generic", f"{type(e).__name__}: {e}", f"Could not reach {label}. Please try again.") from e


class LinearDestination(Destination):
    provider = ExportProvider.linear

    def __init__(self, api_key: str, target: LinearTarget, **kwargs):
        super().__init__(**kwargs)
        self._api_key = api_key
        self.target = target

    def map_fields(self, insight: InsightModel, source_title: str, mapping: FieldMapping) -> Dict[str, Any]:
        description = insight.description
        if insight.speaker:
            description += f"\n\n**Author:** {insight.speaker}"
        evidence = primary_evidence(insight)
        if evidence:
            description += f"\n\n**Evidence:**\n> {evidence}"
        description += f"\n\n**Confidence:** {round(insight.confidence * 100)}%\n**Source:** {source_title}"

        return {
            "teamId": self.target.team_id,
            mapping.title: insight.title,
            mapping.description: description,
            "priority": 1 if insight.confidence > 0.8 else 2,
        }

    async def create_record(self, fields: Dict[str, Any]) -> str:
        response = await self._post(
            LINEAR_API_URL,
            {"query": LINEAR_ISSUE_CREATE, "variables": {"input": fields}},
            {"Authorization": self._api_key, "Content-Type": "application/json"},
        )

        body = _json_or_empty(response)
        errors = body.get("errors") or []
        if not response.is_success or errors:
            first = errors[0] if errors else {}
            extensions = first.get("extensions") or {}
            error_type = extensions.get("code") or extensions.get("type")
            if error_type:
                error_type = str(error_type).upper().replace(" ", "_")
            raise classify_error(self.provider, response.status_code if not response.is_success else None,
                                 error_type, first.get("message") or response.text[:200])

        issue = ((body.get("data") or {}).get("issueCreate") or {}).get("issue") or {}
        if not issue.get("id"):
            raise DestinationError("generic", "Linear issueCreate returned no issue", "Linear did not create the issue.")
        return issue["id"]


class AirtableDestination(Destination):
    provider = ExportProvider.airtable

    def __init__(self, api_key: str, target: AirtableTarget, **kwargs):
        super().__init__(**kwargs)
        self._api_key = api_key
        self.target = target

    async def create_record(self, fields: Dict[str, Any]) -> str:
        url = f"{AIRTABLE_API_URL}/{self.target.base_id}/{quote(self.target.table_name, safe='')}"
        response = await self._post(
            url,
            {"records": [{"fields": fields}]},
            {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"},
        )

        body = _json_or_empty(response)
        if not response.is_success:
            error = body.get("error")
            if isinstance(error, dict):
                error_type, message = error.get("type"), error.get("message")
            else:
                error_type, message = error, None
            raise classify_error(self.provider, response.status_code, error_type, message)

        records = body.get("records") or []
        if not records or not records[0].get("id"):
            raise DestinationError("generic", "Airtable returned no record id", "Airtable did not create the record.")
        return records[0]["id"]


class WebhookDestination(Destination):
    provider = ExportProvider.webhook

    def __init__(self, target: WebhookTarget, secret: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.target = target
        self._secret = secret

    def map_fields(self, insight: InsightModel, source_title: str, mapping: FieldMapping) -> Dict[str, Any]:
        fields = build_mapped_fields(insight, source_title, mapping)
        fields["insightId"] = str(insight.id)
        return fields

    async def create_record(self, fields: Dict[str, Any]) -> str:
        headers = {"Content-Type": "application/json", **self.target.headers}
        if self._secret:
            headers["Authorization"] = f"Bearer {self._secret}"

        response = await self._post(self.target.url, fields, headers)
        if not response.is_success:
            raise classify_error(self.provider, response.status_code, None, response.text[:200] or None)

        body = _json_or_empty(response)
        return str(body.get("id") or fields.get("insightId"))


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def build_destination(config: ExportConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> Destination:
    """Instantiate the destination for a decrypted config.

    Raises:
        DestinationError: Required credentials are missing.
    """
    target = config.target
    label = config.provider.value.capitalize()

    if isinstance(target, WebhookTarget):
        return WebhookDestination(target, secret=config.credentials.get("secret"), transport=transport)

    api_key = config.credentials.get("api_key")
    if not api_key:
        raise DestinationError(
            "auth",
            f"{label} api_key missing from stored credentials",
            f"{label} API key is not configured. Please update your settings.",
        )

    if isinstance(target, LinearTarget):
        return LinearDestination(api_key, target, transport=transport)
    return AirtableDestination(api_key, target, transport=transport)

"""
Unit Tests for Export Destinations

Remote APIs are replaced by httpx.MockTransport handlers.
"""

import json
import uuid

import httpx
import pytest

from models.db_models import ExportProvider, InsightModel, InsightType
from models.export_models import (
    AirtableTarget,
    ExportConfig,
    FieldMapping,
    LinearTarget,
    WebhookTarget,
)
from services.destinations import (
    AIRTABLE_API_URL,
    LINEAR_API_URL,
    AirtableDestination,
    DestinationError,
    LinearDestination,
    WebhookDestination,
    build_destination,
    build_mapped_fields,
    classify_error,
)


def make_insight(**overrides):
    values = dict(
        transcript_id=uuid.uuid4(),
        type=InsightType.pain,
        title="Onboarding is confusing",
        description="New users cannot find the setup wizard.",
        confidence=0.85,
        speaker="Dana",
        evidence_text="I never found the wizard",
        area="onboarding",
    )
    values.update(overrides)
    return InsightModel(**values)


def responder(status, body, captured):
    def handler(request):
        captured.append(request)
        return httpx.Response(status, json=body)
    return handler


class TestClassifyError:

    @pytest.mark.parametrize("status,error_type,kind,key", [
        (404, None, "not_found", "not_found"),
        (422, "NOT_FOUND", "not_found", "not_found"),
        (403, None, "auth", "forbidden"),
        (400, "INVALID_PERMISSIONS", "auth", "forbidden"),
        (401, None, "auth", "unauthorized"),
        (422, "UNKNOWN_FIELD_NAME", "field_shape", "unknown_field"),
    ])
    def test_airtable_kinds(self, status, error_type, kind, key):
        error = classify_error(ExportProvider.airtable, status, error_type, "raw detail")

        assert error.kind == kind
        assert error.message == "raw detail"
        expected = {
            "not_found": "Airtable table or base not found. Please check your Base ID and Table Name in settings.",
            "forbidden": "Airtable API key does not have permission to write to this base/table.",
            "unauthorized": "Airtable API key is invalid or expired. Please update your settings.",
            "unknown_field": "Field names in your Airtable table may not match your field mapping settings.",
        }[key]
        assert error.user_message == expected

    def test_invalid_value_mentions_provider(self):
        error = classify_error(ExportProvider.airtable, 422, "INVALID_VALUE_FOR_COLUMN", "Field Confidence cannot accept a string")

        assert error.kind == "field_shape"
        assert error.user_message == "Airtable rejected the data format: Field Confidence cannot accept a string"

    def test_unrecognized_error_is_generic(self):
        error = classify_error(ExportProvider.linear, 500, None, None)

        assert error.kind == "generic"
        assert error.message == "HTTP 500"


class TestFieldMapping:

    def test_airtable_defaults(self):
        mapping = FieldMapping().with_defaults(ExportProvider.airtable)

        fields = build_mapped_fields(make_insight(), "Customer call", mapping)

        assert fields == {
            "Title": "Onboarding is confusing",
            "Description": "New users cannot find the setup wizard.",
            "Author": "Dana",
            "Evidence": "I never found the wizard",
        }

    def test_optional_fields_only_when_mapped(self):
        mapping = FieldMapping(
            type="Kind", confidence="Score", source="Call", status="State", severity="Severity", area="Area",
        ).with_defaults(ExportProvider.webhook)

        fields = build_mapped_fields(make_insight(), "Customer call", mapping)

        assert fields["title"] == "Onboarding is confusing"
        assert fields["Kind"] == "pain"
        assert fields["Score"] == 0.85
        assert fields["Call"] == "Customer call"
        assert fields["State"] == "New"
        assert fields["Severity"] == "high"
        assert fields["Area"] == "onboarding"
        assert "Author" not in fields

    def test_evidence_falls_back_to_quotes(self):
        mapping = FieldMapping(evidence="Quote").with_defaults(ExportProvider.webhook)
        insight = make_insight(evidence_text=None, evidence_quotes=[{"quote": "It took an hour"}])

        fields = build_mapped_fields(insight, "Call", mapping)

        assert fields["Quote"] == "It took an hour"


class TestLinearDestination:

    @pytest.mark.asyncio
    async def test_creates_issue(self):
        captured = []
        handler = responder(200, {"data": {"issueCreate": {"success": True, "issue": {"id": "lin_1"}}}}, captured)
        destination = LinearDestination("lin_api_key", LinearTarget(team_id="team-9"),
                                        transport=httpx.MockTransport(handler))
        mapping = FieldMapping().with_defaults(ExportProvider.linear)

        fields = destination.map_fields(make_insight(), "Customer call", mapping)
        remote_id = await destination.create_record(fields)

        assert remote_id == "lin_1"
        request = captured[0]
        assert str(request.url) == LINEAR_API_URL
        assert request.headers["Authorization"] == "lin_api_key"
        variables = json.loads(request.content)["variables"]["input"]
        assert variables["teamId"] == "team-9"
        assert variables["title"] == "Onboarding is confusing"
        assert variables["priority"] == 1
        assert "**Author:** Dana" in variables["description"]
        assert "> I never found the wizard" in variables["description"]
        assert "**Confidence:** 85%" in variables["description"]
        assert "**Source:** Customer call" in variables["description"]

    def test_low_confidence_gets_normal_priority(self):
        destination = LinearDestination("key", LinearTarget(team_id="team-9"))

        fields = destination.map_fields(make_insight(confidence=0.8), "Call", FieldMapping().with_defaults(ExportProvider.linear))

        assert fields["priority"] == 2

    @pytest.mark.asyncio
    async def test_graphql_error_is_classified(self):
        body = {"errors": [{"message": "Team not found", "extensions": {"code": "NOT_FOUND"}}]}
        destination = LinearDestination("key", LinearTarget(team_id="nope"),
                                        transport=httpx.MockTransport(responder(200, body, [])))

        with pytest.raises(DestinationError) as exc_info:
            await destination.create_record({"title": "x"})

        assert exc_info.value.kind == "not_found"
        assert exc_info.value.user_message == "Linear team not found. Please check your Team ID in settings."


class TestAirtableDestination:

    @pytest.mark.asyncio
    async def test_creates_record(self):
        captured = []
        handler = responder(200, {"records": [{"id": "rec123", "fields": {}}]}, captured)
        destination = AirtableDestination("pat_key", AirtableTarget(base_id="appXYZ", table_name="Customer Insights"),
                                          transport=httpx.MockTransport(handler))

        remote_id = await destination.create_record({"Title": "x"})

        assert remote_id == "rec123"
        request = captured[0]
        assert str(request.url) == f"{AIRTABLE_API_URL}/appXYZ/Customer%20Insights"
        assert request.headers["Authorization"] == "Bearer pat_key"
        assert json.loads(request.content) == {"records": [{"fields": {"Title": "x"}}]}

    @pytest.mark.asyncio
    async def test_object_error_body(self):
        body = {"error": {"type": "UNKNOWN_FIELD_NAME", "message": 'Unknown field name: "Author"'}}
        destination = AirtableDestination("key", AirtableTarget(base_id="appXYZ"),
                                          transport=httpx.MockTransport(responder(422, body, [])))

        with pytest.raises(DestinationError) as exc_info:
            await destination.create_record({"Author": "Dana"})

        assert exc_info.value.kind == "field_shape"
        assert exc_info.value.message == 'Unknown field name: "Author"'

    @pytest.mark.asyncio
    async def test_string_error_body(self):
        destination = AirtableDestination("key", AirtableTarget(base_id="appXYZ"),
                                          transport=httpx.MockTransport(responder(404, {"error": "NOT_FOUND"}, [])))

        with pytest.raises(DestinationError) as exc_info:
            await destination.create_record({"Title": "x"})

        assert exc_info.value.kind == "not_found"

    @pytest.mark.asyncio
    async def test_unreachable_is_generic(self):
        def handler(request):
            raise httpx.ConnectError("dns failure", request=request)

        destination = AirtableDestination("key", AirtableTarget(base_id="appXYZ"),
                                          transport=httpx.MockTransport(handler))

        with pytest.raises(DestinationError) as exc_info:
            await destination.create_record({"Title": "x"})

        assert exc_info.value.kind == "generic"
        assert exc_info.value.user_message == "Could not reach Airtable. Please try again."


class TestWebhookDestination:

    @pytest.mark.asyncio
    async def test_posts_fields_with_insight_id(self):
        captured = []
        target = WebhookTarget(url="https://example.com/insights", headers={"X-Source": "insights"})
        destination = WebhookDestination(target, secret="s3cret",
                                         transport=httpx.MockTransport(responder(201, {"id": "remote-7"}, captured)))
        insight = make_insight()

        fields = destination.map_fields(insight, "Call", FieldMapping().with_defaults(ExportProvider.webhook))
        remote_id = await destination.create_record(fields)

        assert remote_id == "remote-7"
        body = json.loads(captured[0].content)
        assert body["insightId"] == str(insight.id)
        assert captured[0].headers["Authorization"] == "Bearer s3cret"
        assert captured[0].headers["X-Source"] == "insights"

    @pytest.mark.asyncio
    async def test_falls_back_to_insight_id(self):
        destination = WebhookDestination(WebhookTarget(url="https://example.com/insights"),
                                         transport=httpx.MockTransport(lambda r: httpx.Response(204)))

        remote_id = await destination.create_record({"insightId": "abc"})

        assert remote_id == "abc"


class TestBuildDestination:

    def test_missing_api_key(self):
        config = ExportConfig(owner_user_id="U1", target=LinearTarget(team_id="t"))

        with pytest.raises(DestinationError) as exc_info:
            build_destination(config)

        assert exc_info.value.kind == "auth"
        assert exc_info.value.user_message == "Linear API key is not configured. Please update your settings."

    def test_selects_by_target(self):
        airtable = ExportConfig(owner_user_id="U1", target={"provider": "airtable", "base_id": "app1"},
                                credentials={"api_key": "k"})
        webhook = ExportConfig(owner_user_id="U1", target={"provider": "webhook", "url": "https://x.test"})

        assert isinstance(build_destination(airtable), AirtableDestination)
        assert isinstance(build_destination(webhook), WebhookDestination)

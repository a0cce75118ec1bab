"""
Unit Tests for the Extraction Service

The instructor client is replaced by a fake whose create() answers by
response model, so no API calls are made. One test drives a real instructor
client over a transport that refuses every connection.
"""

from unittest.mock import MagicMock, patch

import httpx
import instructor
import openai
import pytest
from instructor.core import InstructorRetryException
from pydantic import ValidationError

from models.extraction_models import (
    CallContext,
    ContextClassification,
    ExtractionPass,
    RawInsightCandidate,
)
from services.extraction_service import (
    EXTRACTION_PASSES,
    MAX_TRANSCRIPT_CHARS,
    TRANSPORT_ERRORS,
    ExtractionService,
    ExtractionTransportError,
)


def validation_error() -> ValidationError:
    try:
        ExtractionPass.model_validate({"insights": "not a list"})
    except ValidationError as e:
        return e
    raise AssertionError("expected a validation error")


def retry_exhausted(cause: Exception) -> InstructorRetryException:
    """Wrap an error the way instructor does once it gives up on a call."""
    wrapped = InstructorRetryException(str(cause), n_attempts=1, total_usage=0)
    wrapped.__cause__ = cause
    return wrapped


def unreachable_provider_client():
    """A real instructor client whose HTTP transport refuses every connection."""
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    openai_client = openai.AsyncOpenAI(
        api_key="test-key",
        base_url="http://llm.test/v1",
        max_retries=0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)),
    )
    return instructor.from_openai(openai_client, model="gpt-4o")


class FakeClient:
    """Scripted stand-in for an instructor AsyncInstructor."""

    def __init__(self, classification=None, passes=None):
        self.classification = classification
        self.passes = list(passes or [])
        self.calls = []

    async def create(self, response_model, messages, max_retries):
        self.calls.append((response_model, messages))
        if response_model is ContextClassification:
            result = self.classification
        else:
            result = self.passes.pop(0) if self.passes else ExtractionPass()
        if isinstance(result, Exception):
            raise result
        return result


def insight(title, type_="pain"):
    return RawInsightCandidate(type=type_, title=title, description=f"{title} description", confidence=0.8)


class TestExtract:

    @pytest.mark.asyncio
    async def test_collects_candidates_from_every_pass(self):
        client = FakeClient(
            classification=ContextClassification(
                context=CallContext.support_call, confidence=0.9, summary="Support call about SSO."
            ),
            passes=[
                ExtractionPass(insights=[insight("SSO broken", "blocker")]),
                ExtractionPass(insights=[insight("Dark mode", "idea")]),
                ExtractionPass(),
                ExtractionPass(insights=[insight("Loves the API", "feedback")]),
            ],
        )
        service = ExtractionService(client=client, model="test-model")

        output = await service.extract("Agent: hello. Customer: SSO is broken.")

        assert output.context == CallContext.support_call
        assert output.context_confidence == 0.9
        assert output.summary == "Support call about SSO."
        assert [c.title for c in output.candidates] == ["SSO broken", "Dark mode", "Loves the API"]
        assert output.passes_completed == 4
        assert output.passes_skipped == 0
        assert len(client.calls) == 1 + len(EXTRACTION_PASSES)

    @pytest.mark.asyncio
    async def test_pass_prompt_mentions_context(self):
        client = FakeClient(classification=ContextClassification(context=CallContext.sales_demo))
        service = ExtractionService(client=client)

        await service.extract("text")

        system_prompt = client.calls[1][1][0]["content"]
        assert "sales demo transcript" in system_prompt

    @pytest.mark.asyncio
    async def test_malformed_pass_is_skipped(self):
        client = FakeClient(
            classification=ContextClassification(context=CallContext.research_call),
            passes=[
                validation_error(),
                ExtractionPass(insights=[insight("Wants CSV export", "feature_request")]),
            ],
        )
        service = ExtractionService(client=client)

        output = await service.extract("text")

        assert output.passes_skipped == 1
        assert output.passes_completed == 3
        assert [c.title for c in output.candidates] == ["Wants CSV export"]

    @pytest.mark.asyncio
    async def test_malformed_classification_defaults_context(self):
        client = FakeClient(classification=validation_error())
        service = ExtractionService(client=client)

        output = await service.extract("text")

        assert output.context == CallContext.general_interview
        assert output.summary is None
        assert output.passes_completed == 4

    @pytest.mark.asyncio
    async def test_transport_error_is_raised(self):
        client = FakeClient(
            classification=ContextClassification(context=CallContext.research_call),
            passes=[httpx.ConnectError("connection refused")],
        )
        service = ExtractionService(client=client)

        with pytest.raises(ExtractionTransportError):
            await service.extract("text")

    @pytest.mark.asyncio
    async def test_classification_transport_error_is_raised(self):
        client = FakeClient(classification=httpx.ReadTimeout("timed out"))
        service = ExtractionService(client=client)

        with pytest.raises(ExtractionTransportError):
            await service.extract("text")

    @pytest.mark.asyncio
    async def test_wrapped_connection_error_is_raised(self):
        request = httpx.Request("POST", "http://llm.test/v1/chat/completions")
        client = FakeClient(
            classification=ContextClassification(context=CallContext.research_call),
            passes=[retry_exhausted(openai.APIConnectionError(request=request))],
        )
        service = ExtractionService(client=client)

        with pytest.raises(ExtractionTransportError):
            await service.extract("text")

    @pytest.mark.asyncio
    async def test_wrapped_validation_error_skips_pass(self):
        client = FakeClient(
            classification=ContextClassification(context=CallContext.research_call),
            passes=[retry_exhausted(validation_error())],
        )
        service = ExtractionService(client=client)

        output = await service.extract("text")

        assert output.passes_skipped == 1
        assert output.passes_completed == 3

    @pytest.mark.asyncio
    async def test_unreachable_provider_fails_extraction(self):
        service = ExtractionService(client=unreachable_provider_client(), model="gpt-4o")

        with pytest.raises(ExtractionTransportError) as exc_info:
            await service.extract("Customer: the export keeps timing out.")

        assert isinstance(exc_info.value.__cause__, TRANSPORT_ERRORS)

    @pytest.mark.asyncio
    async def test_long_transcripts_are_truncated(self):
        client = FakeClient(classification=ContextClassification(context=CallContext.research_call))
        service = ExtractionService(client=client)

        await service.extract("x" * (MAX_TRANSCRIPT_CHARS + 500))

        user_message = client.calls[0][1][1]["content"]
        assert user_message.count("x") == MAX_TRANSCRIPT_CHARS


class TestClientConstruction:

    def test_builds_instructor_client_from_model_name(self, monkeypatch):
        monkeypatch.setenv("OPENAI_MODEL", "gpt-4o-mini")

        with patch("services.extraction_service.instructor") as mock_instructor:
            mock_instructor.from_provider.return_value = MagicMock()
            service = ExtractionService()

        mock_instructor.from_provider.assert_called_once_with("openai/gpt-4o-mini", async_client=True)
        assert service.model == "gpt-4o-mini"

"""Extraction step: turns transcript text into raw insight candidates.

One classification call identifies the kind of conversation, then four
focused extraction passes each look for a slice of the insight taxonomy.
The passes are independent: one that returns malformed output is skipped
and the rest still count. Transport failures are not handled here; they
surface as ExtractionTransportError so the orchestrator can retry the
whole step.
"""
import os
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
import instructor
import openai
from instructor.core import InstructorRetryException
from pydantic import ValidationError

from models.extraction_models import (
    CallContext,
    ContextClassification,
    ExtractionOutput,
    ExtractionPass,
)

logger = logging.getLogger(__name__)

# Long transcripts are truncated before being sent to the model
MAX_TRANSCRIPT_CHARS = 120_000

TRANSPORT_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
    httpx.TransportError,
    asyncio.TimeoutError,
)


class ExtractionTransportError(Exception):
    """Transient failure reaching the LLM provider (retried by the orchestrator)."""
    pass


def find_transport_error(error: BaseException) -> Optional[BaseException]:
    """Return the transport failure behind an instructor error, if there is one.

    instructor re-raises provider errors wrapped in InstructorRetryException,
    so the cause chain and the recorded failed attempts are both searched.
    """
    seen = set()
    pending = [error]
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        if isinstance(current, TRANSPORT_ERRORS):
            return current
        pending.append(current.__cause__)
        pending.append(current.__context__)
        for attempt in getattr(current, "failed_attempts", None) or []:
            pending.append(getattr(attempt, "exception", None))
    return None


@dataclass(frozen=True)
class PassDefinition:
    name: str
    focus: str


EXTRACTION_PASSES = (
    PassDefinition(
        name="pains",
        focus="pain points (type 'pain'), blockers that stop progress (type 'blocker'), "
              "moments of confusion (type 'confusion') and open questions (type 'question')",
    ),
    PassDefinition(
        name="requests",
        focus="explicit feature requests (type 'feature_request') and product ideas (type 'idea')",
    ),
    PassDefinition(
        name="value",
        focus="gains the participant already gets (type 'gain'), achieved outcomes (type 'outcome') "
              "and opportunities to create more value (type 'opportunity')",
    ),
    PassDefinition(
        name="signals",
        focus="objections (type 'objection'), buying signals (type 'buying_signal') and general "
              "product feedback (type 'feedback')",
    ),
)


class ExtractionService:
    """Runs classification plus the extraction passes through instructor."""

    def __init__(self, client=None, model: Optional[str] = None):
        """Initialize instructor client with async OpenAI."""
        self.model = model or os.getenv("OPENAI_MODEL", "gpt-4o")

        self.client = client or instructor.from_provider(
            f"openai/{self.model}",
            async_client=True,
        )

        logger.info(f"ExtractionService initialized with model: {self.model}")

    async def extract(self, text: str) -> ExtractionOutput:
        """Classify the conversation and collect candidates from every pass.

        Raises:
            ExtractionTransportError: The provider could not be reached.
        """
        transcript = text[:MAX_TRANSCRIPT_CHARS]
        output = ExtractionOutput()

        classification = await self._classify(transcript)
        if classification is not None:
            output.context = classification.context
            output.context_confidence = classification.confidence
            output.summary = classification.summary
        else:
            output.context = CallContext.general_interview

        for definition in EXTRACTION_PASSES:
            result = await self._run_pass(definition, transcript, output.context)
            if result is None:
                output.passes_skipped += 1
                continue
            output.passes_completed += 1
            output.candidates.extend(result.insights)

        logger.info(
            f"Extraction complete: context={output.context.value}, "
            f"candidates={len(output.candidates)}, passes_completed={output.passes_completed}, "
            f"passes_skipped={output.passes_skipped}"
        )
        return output

    async def _classify(self, transcript: str) -> Optional[ContextClassification]:
        """Classification failure is tolerated; the caller falls back to general_interview."""
        try:
            return await self.client.create(
                response_model=ContextClassification,
                messages=[
                    {"role": "system", "content": self._get_classification_prompt()},
                    {"role": "user", "content": f"Classify this transcript:\n\n{transcript}"}
                ],
                max_retries=2
            )
        except TRANSPORT_ERRORS as e:
            raise ExtractionTransportError(f"Context classification transport error: {e}") from e
        except (InstructorRetryException, ValidationError) as e:
            transport_error = find_transport_error(e)
            if transport_error is not None:
                raise ExtractionTransportError(
                    f"Context classification transport error: {transport_error}"
                ) from transport_error
            logger.warning(f"Context classification returned malformed output: {e}")
            return None

    async def _run_pass(
        self,
        definition: PassDefinition,
        transcript: str,
        context: CallContext,
    ) -> Optional[ExtractionPass]:
        try:
            return await self.client.create(
                response_model=ExtractionPass,
                messages=[
                    {"role": "system", "content": self._get_pass_prompt(definition, context)},
                    {"role": "user", "content": f"Analyze this transcript:\n\n{transcript}"}
                ],
                max_retries=2
            )
        except TRANSPORT_ERRORS as e:
            raise ExtractionTransportError(f"Extraction pass '{definition.name}' transport error: {e}") from e
        except (InstructorRetryException, ValidationError) as e:
            transport_error = find_transport_error(e)
            if transport_error is not None:
                raise ExtractionTransportError(
                    f"Extraction pass '{definition.name}' transport error: {transport_error}"
                ) from transport_error
            logger.warning(f"Extraction pass skipped: pass={definition.name}, error={e}")
            return None

    def _get_classification_prompt(self) -> str:
        return """You are an expert product researcher reviewing a conversation transcript.

Decide which kind of conversation this is: research_call, feedback_session, usability_testing,
sales_demo, support_call, onboarding, brainstorm, retrospective or general_interview.

Also write a two sentence summary of what the conversation covered.
Only use information explicitly present in the transcript."""

    def _get_pass_prompt(self, definition: PassDefinition, context: CallContext) -> str:
        return f"""You are an expert product researcher reviewing a {context.value.replace('_', ' ')} transcript.

Extract only {definition.focus}.

**Extraction Guidelines:**

1. title: at most 70 characters, specific and scannable
2. description: at most 200 characters, what was said and why it matters
3. confidence: 0-1, how clearly the transcript supports the insight
4. evidence: verbatim quotes with speaker and timestamp when available

Be thorough but precise. Do not invent or assume information not stated.
Return an empty list if nothing in the transcript matches."""

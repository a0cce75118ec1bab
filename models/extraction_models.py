"""Pydantic models for LLM extraction using instructor.

These models define the structure the extraction step returns. They are
used as instructor response models, so field descriptions double as
guidance to the LLM.
"""
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from enum import Enum


class CallContext(str, Enum):
    """What kind of conversation the transcript records."""
    research_call = "research_call"
    feedback_session = "feedback_session"
    usability_testing = "usability_testing"
    sales_demo = "sales_demo"
    support_call = "support_call"
    onboarding = "onboarding"
    brainstorm = "brainstorm"
    retrospective = "retrospective"
    general_interview = "general_interview"


class ContextClassification(BaseModel):
    """Classification of the overall conversation."""
    context: CallContext = Field(
        description="The single best-fitting conversation type"
    )
    confidence: float = Field(
        default=0.5,
        description="Confidence in the classification between 0 and 1"
    )
    summary: Optional[str] = Field(
        default=None,
        description="Two sentence summary of what the conversation covered"
    )


class EvidenceQuote(BaseModel):
    """A verbatim quote supporting an insight."""
    quote: str = Field(description="Exact words from the transcript")
    speaker: Optional[str] = Field(default=None, description="Who said it, if identifiable")
    timestamp: Optional[str] = Field(default=None, description="Timestamp of the quote, if present")


class RawInsightCandidate(BaseModel):
    """One insight as returned by the extraction step, before normalization.

    `type` is deliberately a free string: providers emit values outside the
    stored taxonomy (pain_point, insight, risk) that are mapped later.
    """
    type: str = Field(
        description="Insight category, e.g. pain, blocker, confusion, question, "
        "feature_request, idea, gain, outcome, opportunity, objection, buying_signal, feedback"
    )
    title: str = Field(description="Short title, at most 70 characters")
    description: str = Field(description="One or two sentence description, at most 200 characters")
    confidence: Optional[float] = Field(
        default=None,
        description="How strongly the transcript supports this insight, between 0 and 1"
    )
    evidence: List[EvidenceQuote] = Field(
        default_factory=list,
        description="Verbatim quotes that support the insight"
    )
    speaker: Optional[str] = Field(default=None, description="Primary speaker, if identifiable")
    timestamp: Optional[str] = Field(default=None, description="Where in the call this came up")

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        if v is None:
            return "feedback"
        return str(v).strip().lower().replace("-", "_").replace(" ", "_")


class ExtractionPass(BaseModel):
    """Output of one focused extraction pass."""
    insights: List[RawInsightCandidate] = Field(
        default_factory=list,
        description="Insights found for the categories this pass focuses on"
    )


class ExtractionOutput(BaseModel):
    """Combined result of the classification call and all extraction passes."""
    context: Optional[CallContext] = None
    context_confidence: Optional[float] = None
    summary: Optional[str] = None
    candidates: List[RawInsightCandidate] = Field(default_factory=list)
    passes_completed: int = 0
    passes_skipped: int = 0

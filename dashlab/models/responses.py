# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API.
# They serve as the contract between backend and frontend:
# 1. Ensure consistent response structure across all endpoints
# 2. Automatically serialized to JSON by FastAPI
# 3. Generate OpenAPI response schemas (visible at /docs)
#
# AskResponse mirrors the orchestrator's AnswerEnvelope; `context` is what
# the frontend sends back (as last_topic / last_answer / last_question)
# with the next question.
# =============================================================================

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str
    vector_store: str = Field(description="'ok' or 'unreachable'")


class SourceItem(BaseModel):
    """A cited source. `score` is the similarity as a percentage."""

    title: str
    author: str
    date: str
    score: int

    model_config = ConfigDict(from_attributes=True)


class ConversationStateModel(BaseModel):
    last_topic: str | None = None
    last_answer: str | None = None
    last_question: str | None = None

    model_config = ConfigDict(from_attributes=True)


class AskResponse(BaseModel):
    """Response for POST /ask."""

    answer: str = Field(description="Answer text, ending with an open-ended offer line")
    sources: list[SourceItem] = Field(default_factory=list)
    found: bool = Field(description="True when the answer is grounded in retrieved content")
    followups: list[str] = Field(
        default_factory=list,
        description="Up to 3 suggested next steps, phrased as offers",
    )
    metadata: dict[str, Any] | None = Field(
        default=None,
        description="chunks_used, total_tokens, context_reduced, threshold, model",
    )
    context: ConversationStateModel = Field(default_factory=ConversationStateModel)

    model_config = ConfigDict(from_attributes=True)


class RawAskResponse(BaseModel):
    """Response for POST /ask?raw=true — unparsed model output for debugging."""

    raw: str
    sources: list[SourceItem] = Field(default_factory=list)

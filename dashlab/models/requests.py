# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
# FastAPI uses them for:
# 1. Request body validation (automatic 422 errors for invalid data)
# 2. OpenAPI documentation generation (visible at /docs)
#
# DESIGN DECISION: Reject the question, truncate the context.
# A missing, blank or over-long question is a client error (422). The
# conversation fields are echoes of our own previous response, so values
# over their caps are cut down instead of failing the request.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

MAX_QUESTION_LENGTH = 1000

CONTEXT_FIELD_LIMITS = {
    "conversation_id": 100,
    "last_topic": 200,
    "last_answer": 2000,
    "last_question": 500,
}


class AskRequest(BaseModel):
    """
    Request body for POST /ask.

    Example:
        {
            "question": "Quels sont les indicateurs clés du rapport ?",
            "conversation_id": "abc-123",
            "last_topic": "Rapport annuel 2023"
        }
    """

    question: str = Field(
        ...,
        min_length=1,
        max_length=MAX_QUESTION_LENGTH,
        description="The user's question",
        examples=["Quels sont les indicateurs clés du rapport ?"],
    )

    # Conversation memory: the `context` object of the previous response
    conversation_id: str | None = Field(default=None, description="Client-side conversation id")
    last_topic: str | None = Field(default=None, description="Topic of the previous answer")
    last_answer: str | None = Field(default=None, description="Previous answer text")
    last_question: str | None = Field(default=None, description="Previous question")

    model_config = ConfigDict(
        str_strip_whitespace=True,
        json_schema_extra={
            "examples": [
                {"question": "Quels sont les indicateurs clés du rapport ?"},
                {
                    "question": "oui",
                    "conversation_id": "abc-123",
                    "last_topic": "Rapport annuel 2023",
                    "last_question": "Que contient le rapport annuel ?",
                },
            ]
        },
    )

    @field_validator("conversation_id", "last_topic", "last_answer", "last_question")
    @classmethod
    def _truncate_context(cls, value: str | None, info: ValidationInfo) -> str | None:
        if value is None:
            return None
        value = value[:CONTEXT_FIELD_LIMITS[info.field_name]]
        return value or None

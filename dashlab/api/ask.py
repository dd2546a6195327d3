# =============================================================================
# Ask API — Question Answering Endpoint
# =============================================================================
#
# Provides the POST /ask endpoint that runs the question pipeline.
#
# FLOW:
#   1. Validate the body (AskRequest: 422 on a blank or over-long question)
#   2. Check the shared API key (when configured)
#   3. Run QuestionOrchestrator.process_question()
#   4. Return the envelope (AskResponse), or {raw, sources} with ?raw=true
#
# ERROR MAPPING:
#   context-length error from the model → 400, friendly French message
#   ValueError (missing key / config)    → 503
#   anything else                        → 500 "Erreur serveur"
#
# This endpoint is thin by design — just request validation, error
# handling, and response mapping.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from dashlab.agents.guidance import CONTEXT_TOO_LONG_MESSAGE
from dashlab.agents.orchestrator import ConversationContext, QuestionOrchestrator
from dashlab.api.deps import get_orchestrator, require_api_key
from dashlab.models.requests import AskRequest
from dashlab.models.responses import AskResponse, RawAskResponse, SourceItem
from dashlab.services.llm import is_context_length_error

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Question Answering"])


# ---------------------------------------------------------------------------
# POST /ask — Ask a question
# ---------------------------------------------------------------------------


@router.post(
    "/ask",
    response_model=AskResponse | RawAskResponse,
    dependencies=[Depends(require_api_key)],
    summary="Ask a question about the indexed corpus",
    description=(
        "Runs intent triage, retrieval with an adaptive threshold, "
        "token-budgeted context assembly and grounded answer generation. "
        "With raw=true, returns the unparsed model output and the sources."
    ),
)
async def ask_endpoint(
    request: AskRequest,
    raw: bool = Query(default=False, description="Return the raw model output"),
    orchestrator: QuestionOrchestrator = Depends(get_orchestrator),
) -> AskResponse | RawAskResponse:
    logger.info(
        "Ask request: question='%s', conversation_id=%s, raw=%s",
        request.question[:80], request.conversation_id, raw,
    )

    context = ConversationContext(
        conversation_id=request.conversation_id,
        last_topic=request.last_topic,
        last_answer=request.last_answer,
        last_question=request.last_question,
    )

    try:
        envelope = await orchestrator.process_question(
            request.question, context=context, raw=raw,
        )
    except Exception as e:
        if is_context_length_error(e):
            logger.exception("Context too long for the model")
            raise HTTPException(status_code=400, detail=CONTEXT_TOO_LONG_MESSAGE) from e
        if isinstance(e, ValueError):
            logger.exception("Configuration error")
            raise HTTPException(
                status_code=503,
                detail=f"Service configuration error: {e}",
            ) from e
        logger.exception("Question pipeline failed")
        raise HTTPException(status_code=500, detail="Erreur serveur") from e

    if raw:
        return RawAskResponse(
            raw=envelope.raw if envelope.raw is not None else envelope.answer,
            sources=[SourceItem.model_validate(s) for s in envelope.sources],
        )
    return AskResponse.model_validate(envelope)

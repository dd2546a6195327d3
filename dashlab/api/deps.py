# =============================================================================
# API Dependencies — Orchestrator Wiring and Shared-Key Authentication
# =============================================================================
#
# 1. get_orchestrator() — builds the QuestionOrchestrator once, from the
#    configured embedder, vector store and LLM provider singletons
# 2. require_api_key()  — checks X-API-Key / Authorization: Bearer when
#    an API key is configured
#
# DESIGN DECISION: FastAPI dependencies (not middleware).
# Each endpoint opts in via Depends(); tests swap both through
# app.dependency_overrides without touching the network.
#
# DESIGN DECISION: Missing provider keys surface as 503.
# Client construction raises ValueError when a key is not configured;
# that is a deployment problem, not a server bug.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import Depends, Header, HTTPException

from dashlab.agents.orchestrator import QuestionOrchestrator
from dashlab.config import Settings, get_settings
from dashlab.services.auth import extract_api_key, verify_api_key
from dashlab.services.embedder import get_embedder
from dashlab.services.llm import get_llm_provider
from dashlab.services.vectorstore import get_vector_store

logger = logging.getLogger(__name__)

_orchestrator: QuestionOrchestrator | None = None
_auth_disabled_logged = False


def get_orchestrator() -> QuestionOrchestrator:
    """Lazily build the process-wide orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        try:
            _orchestrator = QuestionOrchestrator(
                embedder=get_embedder(),
                vector_store=get_vector_store(),
                llm=get_llm_provider(),
                settings=get_settings(),
            )
        except ValueError as e:
            logger.exception("Question pipeline misconfigured")
            raise HTTPException(
                status_code=503,
                detail=f"Service configuration error: {e}",
            ) from e
    return _orchestrator


async def require_api_key(
    x_api_key: str | None = Header(default=None),
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Reject the request unless it carries the configured API key.

    No-op when `api_key` is not configured.

    Raises:
        HTTPException 401: Missing or wrong key.
    """
    global _auth_disabled_logged
    if not settings.api_key:
        if not _auth_disabled_logged:
            logger.warning("API_KEY not set: POST /ask is unauthenticated")
            _auth_disabled_logged = True
        return

    provided = extract_api_key(x_api_key, authorization)
    if not verify_api_key(provided, settings.api_key):
        raise HTTPException(
            status_code=401,
            detail="Clé API manquante ou invalide.",
            headers={"WWW-Authenticate": "Bearer"},
        )

# =============================================================================
# FastAPI Application — Entry Point
# =============================================================================
#
# Run locally:
#   uvicorn dashlab.main:app --reload
#
# Routes:
#   POST /ask     — question pipeline (api/ask.py)
#   GET  /health  — liveness + vector store reachability
# =============================================================================

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dashlab.api.ask import router as ask_router
from dashlab.config import Settings, get_settings
from dashlab.models.responses import HealthResponse
from dashlab.services.vectorstore import get_vector_store

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application: logging, CORS, routers."""
    settings = settings or get_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins or ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(ask_router)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health() -> HealthResponse:
        try:
            reachable = await get_vector_store().check_connection()
        except ValueError as e:
            logger.error("Vector store misconfigured: %s", e)
            reachable = False
        return HealthResponse(
            status="ok",
            version=settings.app_version,
            service=settings.app_name,
            vector_store="ok" if reachable else "unreachable",
        )

    logger.info(
        "%s %s ready (vector store: %s, chat model: %s)",
        settings.app_name, settings.app_version,
        settings.vectorstore_type, settings.chat_model,
    )
    return app


app = create_app()

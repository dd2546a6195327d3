# =============================================================================
# Application Configuration — Pydantic Settings
# =============================================================================
#
# All runtime tuning for the question pipeline lives here: model names,
# retrieval thresholds, token budgets, theming and the off-topic allow-list.
#
# HOW IT WORKS:
# Pydantic Settings loads values in this priority order (highest first):
#   1. Environment variables (e.g., `MIN_SCORE=0.65`)
#   2. Values from the .env file
#   3. Default values defined below
#
# List settings (SUGGESTED_TOPICS, OTHER_TOPIC_ALLOWED, ALLOWED_ORIGINS)
# are read from the environment as comma-separated strings.
#
# USAGE:
#   from dashlab.config import settings
#   print(settings.chat_model)
# =============================================================================

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# Smallest per-chunk cap that still leaves room for text after the
# continuation marker.
MIN_CHUNK_TOKENS = 16


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Loaded once at process start and treated as read-only while requests
    are being handled.
    """

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    app_name: str = "DashLab RAG Assistant"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # API Keys — External Services
    # -------------------------------------------------------------------------
    # OPENAI_API_KEY: embeddings, and chat when llm_provider=openai_compatible
    # ANTHROPIC_API_KEY: chat when llm_provider=anthropic
    # LLM_API_KEY: overrides the provider-specific key for chat
    # -------------------------------------------------------------------------
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    # -------------------------------------------------------------------------
    # Embedding Configuration
    # -------------------------------------------------------------------------
    embedding_model: str = "text-embedding-3-small"
    embedding_base_url: str | None = None
    embedding_dimensions: int | None = None  # None = model default
    embedding_batch_size: int = 100  # Texts per API call when indexing

    # -------------------------------------------------------------------------
    # Chat Completion — Primary + Fallback
    # -------------------------------------------------------------------------
    # The fallback model is only used when the primary call fails with a
    # context-length error. It receives a plain prompt and a shorter budget.
    #
    # Example configs:
    #   OpenAI:      provider=openai_compatible, model=gpt-3.5-turbo-16k
    #   DeepSeek V3: provider=openai_compatible, base_url=https://api.deepseek.com/v1
    #   Claude:      provider=anthropic, model=claude-sonnet-4-6
    # -------------------------------------------------------------------------
    llm_provider: str = "openai_compatible"  # "openai_compatible" or "anthropic"
    llm_base_url: str | None = None
    llm_api_key: str | None = None
    chat_model: str = "gpt-3.5-turbo-16k"
    chat_model_fallback: str = "gpt-3.5-turbo"
    chat_temperature: float = 0.3
    chat_max_tokens: int = 800
    fallback_temperature: float = 0.3
    fallback_max_tokens: int = 500

    # -------------------------------------------------------------------------
    # Vector Store Configuration — Pluggable Backend
    # -------------------------------------------------------------------------
    # Options:
    #   - "qdrant": Qdrant server (default)
    #   - "chroma": ChromaDB (in-process or client/server)
    # -------------------------------------------------------------------------
    vectorstore_type: str = "qdrant"
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: str | None = None
    collection_name: str = "corpus"
    vector_size: int = 1536
    chroma_url: str | None = None

    # -------------------------------------------------------------------------
    # Retrieval Thresholds
    # -------------------------------------------------------------------------
    # min_score is the base of the adaptive threshold. Short questions loosen
    # it towards threshold_floor, long ones tighten it up to threshold_cap.
    # When nothing matches, one retry is made at fallback_score.
    # -------------------------------------------------------------------------
    min_score: float = 0.6
    threshold_floor: float = 0.5
    threshold_cap: float = 0.85
    fallback_score: float = 0.45
    max_chunks_to_retrieve: int = 4

    # -------------------------------------------------------------------------
    # Token Budgets
    # -------------------------------------------------------------------------
    # token_estimator: "heuristic" (word/char approximation) or "tiktoken"
    # (exact cl100k_base counts). Budgets are expressed in the chosen unit.
    # -------------------------------------------------------------------------
    max_chunk_tokens: int = Field(default=1500, ge=MIN_CHUNK_TOKENS)
    max_context_tokens: int = 12000
    context_token_ceiling: int = 14000
    token_estimator: str = "heuristic"

    # -------------------------------------------------------------------------
    # Chunking Configuration (indexing)
    # -------------------------------------------------------------------------
    chunk_size: int = 500
    chunk_overlap: int = 50

    # -------------------------------------------------------------------------
    # Theming & Conversation Behaviour
    # -------------------------------------------------------------------------
    # welcome_message may contain a {theme} placeholder.
    # other_topic_allowed lists the off-topic categories the assistant may
    # engage with: "small_talk", "distance", "math".
    # answer_without_context: when retrieval finds nothing, answer generally
    # with an empty context instead of returning the "no results" guidance.
    # -------------------------------------------------------------------------
    app_theme: str = ""
    welcome_message: str = ""
    suggested_topics: Annotated[list[str], NoDecode] = []
    other_topic_allowed: Annotated[list[str], NoDecode] = []
    off_topic_redirect_line: str = ""
    answer_without_context: bool = False

    # -------------------------------------------------------------------------
    # HTTP Boundary
    # -------------------------------------------------------------------------
    # api_key empty = authentication disabled.
    # allowed_origins empty = any origin accepted by CORS.
    # -------------------------------------------------------------------------
    api_key: str = ""
    allowed_origins: Annotated[list[str], NoDecode] = []

    # -------------------------------------------------------------------------
    # Pydantic Settings Configuration
    # -------------------------------------------------------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator(
        "suggested_topics", "other_topic_allowed", "allowed_origins",
        mode="before",
    )
    @classmethod
    def _split_comma_list(cls, value):
        """Accept "a, b, c" from the environment; drop blanks and duplicates."""
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        items: list[str] = []
        for item in value:
            cleaned = str(item).strip()
            if cleaned and cleaned not in items:
                items.append(cleaned)
        return items


@lru_cache
def get_settings() -> Settings:
    """
    Create and cache a Settings instance.

    In tests, override with FastAPI's dependency_overrides:
        app.dependency_overrides[get_settings] = lambda: Settings(app_theme="x")
    """
    return Settings()


# ---------------------------------------------------------------------------
# Module-level convenience instance
# ---------------------------------------------------------------------------
settings = get_settings()

# =============================================================================
# DashLab RAG Assistant
# =============================================================================
# A retrieval-augmented chat backend: a question goes through intent
# triage, vector retrieval with an adaptive threshold, token-budgeted
# context assembly and grounded answer generation, and comes back with
# cited sources and follow-up offers.
#
# Package structure:
#   dashlab/
#   ├── api/          → FastAPI route handlers and dependencies (/ask)
#   ├── agents/       → LangGraph question pipeline (triage, search,
#   │                    analyst, follow-up styling, guidance texts)
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── services/     → Clients and utilities (embedding, vector store,
#   │                    LLM providers, chunking, tokens, prompt safety, auth)
#   ├── config.py     → pydantic-settings configuration
#   └── main.py       → FastAPI application
# =============================================================================

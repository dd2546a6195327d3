# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Request/response schemas for the HTTP API. They are SEPARATE from the
# pipeline's dataclasses (agents/orchestrator.py): the API contract and
# the internal envelope can evolve independently.
# =============================================================================

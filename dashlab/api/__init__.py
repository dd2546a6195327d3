# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - ask.py: POST /ask, the question pipeline endpoint
#   - deps.py: orchestrator wiring and shared API key check
# =============================================================================

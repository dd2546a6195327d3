# =============================================================================
# Agents Package — LangGraph Question Pipeline
# =============================================================================
#   - orchestrator.py: LangGraph graph — rewrite, classify, search, budget,
#     generate, finalize; terminal shortcuts route straight to END
#   - triage.py: ordered rule table (greeting, small talk, distance, math,
#     vague) and the acknowledgement rewrite
#   - arithmetic.py: safe arithmetic extraction and evaluation
#   - search.py: adaptive-threshold retrieval and the token budget
#   - analyst.py: prompt building, generation with model fallback, parsing
#   - followups.py: follow-up normalisation and offer styling
#   - guidance.py: fixed answers returned without calling the model
# =============================================================================

# =============================================================================
# Services Package — Clients and Utilities
# =============================================================================
# Contains the external clients and pure helpers the pipeline builds on:
#   - embedder.py: OpenAI embedding generation (query + batch)
#   - vectorstore.py: Pluggable vector store protocol (Qdrant, Chroma) and
#     the adaptive similarity threshold
#   - llm.py: Multi-provider LLM abstraction (OpenAI-compatible, Anthropic)
#   - chunker.py: Token/character/paragraph chunking for indexing
#   - tokens.py: Token estimation (heuristic or tiktoken)
#   - security.py: Prompt sanitising and fencing
#   - auth.py: Shared API key verification
# =============================================================================

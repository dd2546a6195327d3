# =============================================================================
# Auth Service — Shared API Key Verification
# =============================================================================
#
# Pure functions for the single shared API key protecting POST /ask.
# No FastAPI dependency — used by the auth dependency and tests.
#
# Both sides are hashed with SHA-256 before a constant-time comparison, so
# the comparison time depends neither on the key contents nor its length.
# =============================================================================

from __future__ import annotations

import hashlib
import hmac


def hash_api_key(raw_key: str) -> str:
    """Hash an API key using SHA-256. Returns 64-char hex digest."""
    return hashlib.sha256(raw_key.encode()).hexdigest()


def verify_api_key(provided: str | None, expected: str) -> bool:
    """Constant-time check of a provided key against the configured one."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(hash_api_key(provided), hash_api_key(expected))


def extract_api_key(x_api_key: str | None, authorization: str | None) -> str:
    """
    Pick the caller's key from `X-API-Key`, else from `Authorization: Bearer`.

    Returns an empty string when neither header carries a key.
    """
    if x_api_key and x_api_key.strip():
        return x_api_key.strip()
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return ""

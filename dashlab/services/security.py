# =============================================================================
# Prompt Safety — Sanitising and Fencing User Text
# =============================================================================
#
# Pure functions applied to every piece of caller-controlled text before it
# is placed into a prompt:
#   - control characters are replaced by spaces
#   - & < > are escaped so user text cannot close the prompt's XML-like tags
#   - question and context are wrapped in <user_question> / <context> tags
#
# detect_prompt_injection() is advisory: the pipeline logs a warning and
# carries on, the fencing above being the actual protection.
# =============================================================================

from __future__ import annotations

import re

_CONTROL_CHARS_RE = re.compile(r"[\u0000-\u001F\u007F]")
_CONTEXT_CONTROL_CHARS_RE = re.compile(r"[\u0000-\u0009\u000B-\u001F\u007F]")
_WHITESPACE_RE = re.compile(r"\s+")

_INJECTION_MARKERS = (
    "ignore previous",
    "ignore all previous",
    "ignore les instructions",
    "oublie les instructions",
    "system prompt",
    "prompt système",
    "you are now",
    "developer message",
    "instructions above",
    "jailbreak",
    "</context>",
    "</user_question>",
)


def escape_prompt_text(text: str) -> str:
    """Escape the characters that could open or close a prompt tag."""
    return (
        str(text or "")
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
    )


def sanitize_user_input(text: str, max_len: int = 2000) -> str:
    """Single-line, length-capped, escaped version of a user question."""
    cleaned = _CONTROL_CHARS_RE.sub(" ", str(text or ""))
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    return escape_prompt_text(cleaned[:max_len])


def sanitize_context(text: str, max_len: int | None = None) -> str:
    """Escaped context with control characters removed; newlines are kept."""
    cleaned = _CONTEXT_CONTROL_CHARS_RE.sub(" ", str(text or "")).strip()
    if max_len is not None:
        cleaned = cleaned[:max_len]
    return escape_prompt_text(cleaned)


def wrap_user_question(text: str) -> str:
    return f"<user_question>\n{text}\n</user_question>"


def wrap_context(text: str) -> str:
    return f"<context>\n{text}\n</context>"


def detect_prompt_injection(text: str) -> bool:
    """True when the text contains a known instruction-override phrase."""
    lower = str(text or "").lower()
    return any(marker in lower for marker in _INJECTION_MARKERS)

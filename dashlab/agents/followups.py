# =============================================================================
# Follow-up Styling — Normalise, Rephrase as Offers, Close the Answer
# =============================================================================
#
# Post-processing applied to every generated answer:
#
# 1. normalize_followups() — trim, strip trailing "?", drop items that talk
#    about documents/sources/corpus, dedupe case-insensitively, keep 3
# 2. coerce_to_offer() — rephrase each follow-up as an offer of help
#    ("Si tu veux, je peux …") instead of a question back to the user
# 3. strip_trailing_question() — drop a closing question from the answer
# 4. append_open_ended_line() — close the answer with one offer line
#
# DESIGN DECISION: Follow-ups are offers, never questions.
# The assistant proposes the next step; the user picks it or ignores it.
# Empty or fully filtered follow-up lists fall back to the (themed)
# defaults so the client always has something to show.
# =============================================================================

from __future__ import annotations

import re

MAX_FOLLOWUPS = 3

BANNED_FOLLOWUP_WORDS = ("document", "documents", "sources", "corpus", "dossier")

OFFER_PREFIX = "Si tu veux, je peux"

_TRAILING_QUESTION_MARKS_RE = re.compile(r"[?？\s]+$")

_POLITE_OPENERS_RE = re.compile(
    r"^(?:peux[- ]tu|pouvez[- ]vous|pourrais[- ]tu|pourriez[- ]vous"
    r"|est-ce que tu peux|est-ce que vous pouvez|tu peux|vous pouvez)\b",
    re.IGNORECASE,
)

_OFFER_OPENER_RE = re.compile(r"^si tu veux\b\s*,?\s*", re.IGNORECASE)

_QUESTION_STARTERS_RE = re.compile(
    r"^(?:qui|quoi|quel|quelle|quels|quelles|comment|pourquoi|où|quand|combien|est-ce)\b",
    re.IGNORECASE,
)

# First-person object pronouns become second-person once the sentence
# is spoken by the assistant: "me dire" → "te dire", "m'expliquer" → "t'expliquer"
_PRONOUN_SWAPS = (
    (re.compile(r"^m['’]", re.IGNORECASE), "t’"),
    (re.compile(r"^me\b", re.IGNORECASE), "te"),
    (re.compile(r"^moi\b", re.IGNORECASE), "toi"),
)

# (body ending on a sentence boundary)(last sentence, ending with "?")
# A "." inside a number ("3.5") is not a boundary.
_TRAILING_QUESTION_SENTENCE_RE = re.compile(
    r"^(.*(?:[.!…?？](?=\s)|\n))\s*(?:[^.!?？…\n]|\.(?=\S))*[?？]\s*$",
    re.DOTALL,
)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def default_followups(theme: str = "") -> list[str]:
    """Fallback follow-ups, worded around the theme when one is configured."""
    if theme:
        return [
            f"Si tu veux, je peux te donner un résumé rapide sur {theme}.",
            f"Si tu veux, je peux détailler un aspect précis de {theme}.",
            f"Dis-moi ce que tu veux obtenir sur {theme}.",
        ]
    return [
        "Si tu veux, je peux te donner un résumé rapide.",
        "Si tu veux, je peux détailler un aspect précis.",
        "Dis-moi ce que tu veux obtenir.",
    ]


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


def normalize_followups(followups: object) -> list[str]:
    """
    Clean a follow-up list coming from the model.

    Non-list input yields []. Applying the function twice gives the same
    result as applying it once.
    """
    if not isinstance(followups, (list, tuple)):
        return []

    cleaned: list[str] = []
    for item in followups:
        text = _TRAILING_QUESTION_MARKS_RE.sub("", str(item or "").strip())
        if not text:
            continue
        lower = text.lower()
        if any(word in lower for word in BANNED_FOLLOWUP_WORDS):
            continue
        cleaned.append(text)

    return _dedupe(cleaned)[:MAX_FOLLOWUPS]


def _dedupe(items: list[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for item in items:
        key = item.lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


# ---------------------------------------------------------------------------
# Offer Styling
# ---------------------------------------------------------------------------


def coerce_to_offer(text: str, theme: str = "") -> str:
    """
    Rephrase a follow-up as an offer of help.

        "Peux-tu me donner un exemple"  → "Si tu veux, je peux te donner un exemple"
        "Comment ça marche"             → "Si tu veux, je peux approfondir ce point."
        "Dis-moi ce qui t'intéresse"    → unchanged
        "Je peux comparer les deux"     → "Si tu veux, je peux comparer les deux"
        "Si tu veux dis-moi la suite"   → "Si tu veux, dis-moi la suite"
        "Un exemple chiffré"            → "Si tu veux, je peux un exemple chiffré"
    """
    trimmed = str(text or "").strip()
    if not trimmed:
        return trimmed

    if trimmed.lower().startswith("dis-moi"):
        return trimmed

    polite = _POLITE_OPENERS_RE.match(trimmed)
    if polite:
        remainder = trimmed[polite.end():].strip()
        if remainder:
            for pattern, replacement in _PRONOUN_SWAPS:
                remainder = pattern.sub(replacement, remainder, count=1)
            return f"{OFFER_PREFIX} {remainder}"
        return _deepen_offer(theme)

    body = trimmed
    opener = _OFFER_OPENER_RE.match(body)
    if opener:
        body = body[opener.end():].strip()
        if not body:
            return _deepen_offer(theme)

    if _QUESTION_STARTERS_RE.match(body):
        return _deepen_offer(theme)

    if body.lower().startswith(("je peux", "dis-moi")):
        return f"Si tu veux, {_lower_first(body)}"

    return f"{OFFER_PREFIX} {_lower_first(body)}"


def apply_followup_style(followups: object, theme: str = "") -> list[str]:
    """Normalise, then rephrase as offers; defaults when nothing survives."""
    normalized = normalize_followups(followups)
    if not normalized:
        return default_followups(theme)
    styled = [coerce_to_offer(item, theme) for item in normalized]
    return _dedupe([item for item in styled if item])


def _deepen_offer(theme: str) -> str:
    if theme:
        return f"Si tu veux, je peux approfondir ce point sur {theme}."
    return "Si tu veux, je peux approfondir ce point."


def _lower_first(text: str) -> str:
    return text[:1].lower() + text[1:]


# ---------------------------------------------------------------------------
# Answer Closing
# ---------------------------------------------------------------------------


def strip_trailing_question(answer: str) -> str:
    """
    Remove the closing interrogative sentence of an answer.

    An answer made of a single question is returned as is.
    """
    text = str(answer or "").rstrip()
    if not text.endswith(("?", "？")):
        return text
    match = _TRAILING_QUESTION_SENTENCE_RE.match(text)
    if match and match.group(1).strip():
        return match.group(1).rstrip()
    return text


def pick_open_ended_line(followups: list[str], theme: str = "") -> str:
    normalized = normalize_followups(followups)
    if normalized:
        return normalized[0]
    defaults = default_followups(theme)
    return defaults[0] if defaults else ""


def append_open_ended_line(answer: str, followups: list[str], theme: str = "") -> str:
    """Close the answer with one offer line unless it already contains it."""
    trimmed = str(answer or "").strip()
    if not trimmed:
        return trimmed
    line = pick_open_ended_line(followups, theme)
    if not line or line.lower() in trimmed.lower():
        return trimmed
    return f"{trimmed}\n\n{line}"


def finalize_answer(answer: str, followups: object, theme: str = "") -> tuple[str, list[str]]:
    """
    Full post-processing of a parsed model answer.

    Returns:
        (answer ending with an open-ended line, styled follow-ups)
    """
    styled = apply_followup_style(followups, theme)
    closed = append_open_ended_line(strip_trailing_question(answer), styled, theme)
    return closed, styled

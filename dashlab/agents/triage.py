# =============================================================================
# Intent Triage — Ordered Rule Table for Question Classification
# =============================================================================
#
# Decides, before any embedding or search, whether a question needs
# retrieval at all.
#
# RULE ORDER (first match wins, mutually exclusive):
#   greeting → small_talk → distance → math → vague → retrieval
#
# Before triage, short acknowledgements ("oui", "continue", "développe")
# are rewritten into an explicit deepening request about the current
# conversation topic. The rewritten question is what every later step sees.
#
# DESIGN DECISION: Data-driven rule table over nested conditionals.
# Each rule is a (intent, predicate) pair. Adding a category means adding
# one predicate and one row; each predicate is testable on its own.
#
# DESIGN DECISION: Exact-match lexicons on a normalised form.
# Matching runs on the lowercased, whitespace-collapsed question with the
# typographic apostrophe folded and trailing punctuation stripped, so
# "Bonjour !" and "bonjour" are the same greeting.
# =============================================================================

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass

from dashlab.agents.arithmetic import evaluate_math_question

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Intents
# ---------------------------------------------------------------------------

GREETING = "greeting"
SMALL_TALK = "small_talk"
DISTANCE = "distance"
MATH = "math"
VAGUE = "vague"
RETRIEVAL = "retrieval"

# Categories that can be switched on through `other_topic_allowed`
OFF_TOPIC_INTENTS = (SMALL_TALK, DISTANCE, MATH)


# ---------------------------------------------------------------------------
# Lexicons
# ---------------------------------------------------------------------------

# No entry is three characters or shorter: those are classified vague.
GREETINGS = frozenset({"salut", "bonjour", "bonsoir", "hello", "coucou"})

SMALL_TALK_PHRASES = frozenset({
    "ça va",
    "ca va",
    "comment ça va",
    "comment ca va",
    "comment vas-tu",
    "comment allez-vous",
    "tu vas bien",
    "vous allez bien",
    "merci",
    "merci beaucoup",
    "merci bien",
    "qui es-tu",
    "qui êtes-vous",
    "tu es qui",
    "t'es qui",
    "comment tu t'appelles",
    "quel est ton nom",
    "bonne journée",
    "bonne soirée",
    "au revoir",
    "à plus",
    "bonne nuit",
})

DISTANCE_PATTERNS = (
    "quelle distance",
    "combien de km",
    "combien de kilomètres",
    "combien de kilometres",
    "distance entre",
    "à quelle distance",
    "loin d'ici",
    "how far",
    "distance from",
)

VAGUE_PHRASES = frozenset({
    "tu sais quoi",
    "c'est quoi",
    "quoi",
    "explique",
    "explique-moi",
    "dis-moi",
    "raconte",
    "raconte-moi",
    "aide-moi",
    "aide",
    "une question",
    "j'ai une question",
    "je ne sais pas",
    "je sais pas",
    "n'importe quoi",
    "peu importe",
    "autre chose",
    "et alors",
    "et donc",
    "info",
    "infos",
    "test",
})

ACKNOWLEDGEMENTS = frozenset({
    "oui",
    "ouais",
    "ok",
    "okay",
    "d'accord",
    "daccord",
    "vas-y",
    "vas y",
    "go",
    "continue",
    "continuer",
    "développe",
    "developpe",
    "détaille",
    "detaille",
    "approfondis",
    "encore",
    "la suite",
    "et ensuite",
    "oui stp",
    "oui svp",
    "oui merci",
    "volontiers",
    "avec plaisir",
})

MAX_ACKNOWLEDGEMENT_LENGTH = 20
MAX_VAGUE_LENGTH = 3

_WHITESPACE_RE = re.compile(r"\s+")
_TRAILING_PUNCT_RE = re.compile(r"[\s?!.]+$")


# ---------------------------------------------------------------------------
# Normalisation & Rewrite
# ---------------------------------------------------------------------------


def normalize_question(question: str) -> str:
    """Lowercase, collapse whitespace, fold ’ to ', strip trailing ?!."""
    text = (question or "").replace("’", "'").lower()
    text = _WHITESPACE_RE.sub(" ", text).strip()
    return _TRAILING_PUNCT_RE.sub("", text)


def is_acknowledgement(question: str) -> bool:
    trimmed = (question or "").strip()
    if not trimmed or len(trimmed) > MAX_ACKNOWLEDGEMENT_LENGTH:
        return False
    return normalize_question(trimmed) in ACKNOWLEDGEMENTS


def rewrite_acknowledgement(
    question: str,
    last_topic: str | None = None,
    last_question: str | None = None,
    theme: str = "",
) -> str:
    """
    Turn "oui" / "continue" into an explicit request about the current topic.

    The topic comes from `last_topic`, else `last_question`, else `theme`.
    Returns the question unchanged when it is not an acknowledgement or
    when no topic is known.
    """
    if not is_acknowledgement(question):
        return question

    topic = next(
        (
            candidate.strip()
            for candidate in (last_topic, last_question, theme)
            if candidate and candidate.strip()
        ),
        "",
    )
    if not topic:
        return question

    rewritten = (
        f"Développe davantage ce point précis : {topic}. "
        "Concentre-toi uniquement sur cet aspect, avec des détails concrets, "
        "et évite de refaire un résumé général."
    )
    logger.info("Acknowledgement '%s' rewritten around topic '%s'", question.strip(), topic[:80])
    return rewritten


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def is_greeting(question: str) -> bool:
    return normalize_question(question) in GREETINGS


def is_small_talk(question: str) -> bool:
    return normalize_question(question) in SMALL_TALK_PHRASES


def is_distance_question(question: str) -> bool:
    normalized = normalize_question(question)
    return any(pattern in normalized for pattern in DISTANCE_PATTERNS)


def is_math_expression(question: str) -> bool:
    return evaluate_math_question(question) is not None


def is_vague(question: str) -> bool:
    trimmed = (question or "").strip()
    if len(trimmed) <= MAX_VAGUE_LENGTH:
        return True
    return normalize_question(trimmed) in VAGUE_PHRASES


# ---------------------------------------------------------------------------
# Rule Table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TriageRule:
    intent: str
    predicate: Callable[[str], bool]


TRIAGE_RULES: tuple[TriageRule, ...] = (
    TriageRule(GREETING, is_greeting),
    TriageRule(SMALL_TALK, is_small_talk),
    TriageRule(DISTANCE, is_distance_question),
    TriageRule(MATH, is_math_expression),
    TriageRule(VAGUE, is_vague),
)


def classify(question: str, rules: tuple[TriageRule, ...] = TRIAGE_RULES) -> str:
    """
    Return the intent of the first matching rule, else RETRIEVAL.

    Args:
        question: The (possibly rewritten) question.
        rules: Rule table, in priority order.
    """
    for rule in rules:
        if rule.predicate(question):
            return rule.intent
    return RETRIEVAL

# =============================================================================
# Guidance Texts — Answers Returned Without Calling the Model
# =============================================================================
#
# Greeting, vague question, disallowed off-topic request, no search hits,
# context too long: each gets a fixed French answer plus follow-ups built
# from configuration (theme, suggested topics, redirect line).
#
# All functions are pure: they read the Settings they are given and return
# a Guidance value. The orchestrator turns it into an envelope.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field

from dashlab.agents.followups import default_followups
from dashlab.agents.triage import DISTANCE, MATH, SMALL_TALK
from dashlab.config import Settings

DEFAULT_WELCOME_MESSAGE = (
    "Bonjour ! Comment puis-je vous aider aujourd'hui ? "
    "Je suis là comme votre spécialiste, posez-moi une question."
)

THEMED_WELCOME_MESSAGE = (
    "Bonjour ! Je suis ton assistant spécialisé sur {theme}. "
    "Pose-moi une question et je te réponds à partir de ma base de connaissances."
)

NO_RESULTS_MESSAGE = (
    "Désolé, je n'ai pas d'informations sur ce sujet dans ma base de connaissances."
)

TOO_LONG_MESSAGE = (
    "Les extraits trouvés sont trop longs pour être traités. "
    "Essaie une question plus spécifique."
)

CONTEXT_TOO_LONG_MESSAGE = (
    "Contexte trop long : la demande dépasse la limite de tokens du modèle. "
    "Essaie une question plus courte ou plus spécifique."
)

_DECLINE_OPENERS = {
    SMALL_TALK: "Merci pour ton message !",
    DISTANCE: "Je ne peux pas t'aider pour les distances ou les trajets.",
    MATH: "Je ne fais pas de calculs ici.",
}


@dataclass
class Guidance:
    answer: str
    followups: list[str] = field(default_factory=list)


def _theme_label(settings: Settings) -> str:
    return settings.app_theme.strip() or "ma base de connaissances"


def _topic_followups(settings: Settings) -> list[str]:
    topics = settings.suggested_topics[:3]
    if not topics:
        return default_followups(settings.app_theme)
    return [f"Si tu veux, je peux te parler de {topic}." for topic in topics]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def welcome_text(settings: Settings) -> str:
    """Configured welcome message with {theme} filled in."""
    theme = settings.app_theme.strip()
    template = settings.welcome_message.strip()
    if not template:
        template = THEMED_WELCOME_MESSAGE if theme else DEFAULT_WELCOME_MESSAGE
    return template.replace("{theme}", theme or "ma base de connaissances")


def vague_guidance(settings: Settings) -> Guidance:
    """Ask the user to narrow down, pointing at the suggested topics."""
    topics = settings.suggested_topics[:3]
    if topics:
        answer = (
            "Ta question est un peu large. Précise ce que tu cherches, "
            f"par exemple : {', '.join(topics)}."
        )
    else:
        answer = (
            f"Ta question est un peu large. Précise ce que tu cherches sur "
            f"{_theme_label(settings)} et je te réponds."
        )
    return Guidance(answer=answer, followups=_topic_followups(settings))


def declined_guidance(intent: str, settings: Settings) -> Guidance:
    """Polite refusal for an off-topic category that is not allowed."""
    opener = _DECLINE_OPENERS.get(intent, "Cette demande sort de mon périmètre.")
    answer = (
        f"{opener} Je suis spécialisé sur {_theme_label(settings)} : "
        "pose-moi plutôt une question sur ce sujet."
    )
    return Guidance(answer=answer, followups=_topic_followups(settings))


def no_results_guidance() -> Guidance:
    return Guidance(
        answer=NO_RESULTS_MESSAGE,
        followups=[
            "Dis-moi le sujet ou le contexte précis qui t'intéresse.",
            "Si tu veux, je peux chercher à partir d'un titre ou d'un auteur précis.",
        ],
    )


def too_long_guidance() -> Guidance:
    return Guidance(
        answer=TOO_LONG_MESSAGE,
        followups=[
            "Si tu veux, je peux répondre à une version plus précise de ta question.",
            "Dis-moi sur quelle partie tu veux te concentrer.",
        ],
    )


def redirect_line(settings: Settings) -> str:
    """Sentence appended to off-topic answers to steer back to the theme."""
    if settings.off_topic_redirect_line.strip():
        return settings.off_topic_redirect_line.strip()
    theme = settings.app_theme.strip()
    if theme:
        return f"Si tu veux, revenons à {theme} : je suis là pour tes questions sur ce sujet."
    return "Si tu veux, je reste disponible pour tes questions sur ma base de connaissances."

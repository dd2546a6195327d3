# =============================================================================
# Unit Tests — Follow-up Styling and Answer Closing
# =============================================================================
#
# Pure string post-processing: no API keys or network calls needed.
# =============================================================================

import pytest

from dashlab.agents.followups import (
    append_open_ended_line,
    apply_followup_style,
    coerce_to_offer,
    default_followups,
    finalize_answer,
    normalize_followups,
    strip_trailing_question,
)


class TestNormalizeFollowups:
    """Tests for normalize_followups()."""

    def test_non_list_input(self):
        assert normalize_followups("Si tu veux, je peux résumer.") == []
        assert normalize_followups(None) == []

    def test_cleans_filters_dedupes_and_caps(self):
        items = [" A ? ", "a", "Voir les documents", "", None, "B", "C", "D"]
        assert normalize_followups(items) == ["A", "B", "C"]

    def test_banned_words_case_insensitive(self):
        assert normalize_followups(["Consulter le CORPUS", "Lire les Sources"]) == []

    def test_fullwidth_question_mark(self):
        assert normalize_followups(["Un exemple？"]) == ["Un exemple"]

    def test_idempotent(self):
        items = ["Un exemple ?", "un exemple", "Les coûts ??", "Le calendrier", "Autre"]
        once = normalize_followups(items)
        assert normalize_followups(once) == once


class TestCoerceToOffer:
    """Tests for rephrasing follow-ups as offers of help."""

    @pytest.mark.parametrize("text, expected", [
        ("Dis-moi ce qui t'intéresse", "Dis-moi ce qui t'intéresse"),
        ("Peux-tu me donner un exemple", "Si tu veux, je peux te donner un exemple"),
        ("Pourriez-vous m'expliquer le calendrier", "Si tu veux, je peux t’expliquer le calendrier"),
        ("Je peux comparer les deux", "Si tu veux, je peux comparer les deux"),
        ("Si tu veux, je peux résumer", "Si tu veux, je peux résumer"),
        ("Si tu veux je peux détailler le budget", "Si tu veux, je peux détailler le budget"),
        ("Si tu veux, dis-moi ce qui t'intéresse", "Si tu veux, dis-moi ce qui t'intéresse"),
        ("si tu veux Je peux résumer", "Si tu veux, je peux résumer"),
        ("Un exemple chiffré", "Si tu veux, je peux un exemple chiffré"),
    ])
    def test_rephrasing(self, text, expected):
        assert coerce_to_offer(text) == expected

    def test_question_becomes_deepen_offer(self):
        assert coerce_to_offer("Comment ça marche") == "Si tu veux, je peux approfondir ce point."

    def test_question_after_prefix_becomes_deepen_offer(self):
        assert coerce_to_offer("Si tu veux, comment ça marche") == (
            "Si tu veux, je peux approfondir ce point."
        )

    def test_deepen_offer_mentions_theme(self):
        assert coerce_to_offer("Pourquoi", theme="Vélo") == (
            "Si tu veux, je peux approfondir ce point sur Vélo."
        )

    def test_polite_opener_alone(self):
        assert coerce_to_offer("Peux-tu") == "Si tu veux, je peux approfondir ce point."

    def test_question_word_needs_word_boundary(self):
        assert coerce_to_offer("Quelques chiffres clés") == (
            "Si tu veux, je peux quelques chiffres clés"
        )

    def test_empty(self):
        assert coerce_to_offer("  ") == ""


class TestApplyFollowupStyle:
    def test_empty_list_gives_defaults(self):
        assert apply_followup_style([]) == default_followups()

    def test_themed_defaults(self):
        styled = apply_followup_style("not a list", theme="Vélo")
        assert len(styled) == 3
        assert all("Vélo" in item for item in styled)

    def test_duplicates_after_styling_removed(self):
        styled = apply_followup_style(["Comment ça marche", "Pourquoi"])
        assert styled == ["Si tu veux, je peux approfondir ce point."]

    def test_existing_offers_not_prefixed_twice(self):
        styled = apply_followup_style([
            "Si tu veux je peux détailler le budget",
            "Si tu veux, dis-moi ce qui t'intéresse",
        ])
        assert styled == [
            "Si tu veux, je peux détailler le budget",
            "Si tu veux, dis-moi ce qui t'intéresse",
        ]

    def test_bare_opener_becomes_deepen_offer(self):
        assert apply_followup_style(["Si tu veux"]) == ["Si tu veux, je peux approfondir ce point."]


class TestStripTrailingQuestion:
    """Tests for strip_trailing_question()."""

    def test_drops_closing_question(self):
        answer = "Le coût est de 3.5 M€. Tu veux le détail ?"
        assert strip_trailing_question(answer) == "Le coût est de 3.5 M€."

    def test_single_question_kept(self):
        assert strip_trailing_question("Pourquoi ?") == "Pourquoi ?"

    def test_decimal_point_is_not_a_boundary(self):
        assert strip_trailing_question("Le total est 3.5 ?") == "Le total est 3.5 ?"

    def test_newline_is_a_boundary(self):
        assert strip_trailing_question("Premier paragraphe\nEt ensuite ?") == "Premier paragraphe"

    def test_statement_unchanged(self):
        assert strip_trailing_question("Réponse sans question.  ") == "Réponse sans question."


class TestAnswerClosing:
    def test_appends_first_followup(self):
        answer = append_open_ended_line("Réponse.", ["Si tu veux, je peux résumer."])
        assert answer == "Réponse.\n\nSi tu veux, je peux résumer."

    def test_line_not_repeated(self):
        answer = "Réponse.\n\nsi tu veux, je peux résumer."
        assert append_open_ended_line(answer, ["Si tu veux, je peux résumer."]) == answer

    def test_empty_answer_stays_empty(self):
        assert append_open_ended_line("   ", ["Si tu veux, je peux résumer."]) == ""

    def test_finalize_answer(self):
        answer, followups = finalize_answer("Texte. Une question ?", ["Comment faire ?"], theme="Vélo")
        assert followups == ["Si tu veux, je peux approfondir ce point sur Vélo."]
        assert answer == "Texte.\n\nSi tu veux, je peux approfondir ce point sur Vélo."

# =============================================================================
# Unit Tests — Analyst Agent
# =============================================================================
#
# Tests prompt building, model output parsing and the primary/fallback
# generation flow without requiring API keys.
# Uses AsyncMock LLM providers.
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from dashlab.agents.analyst import (
    SYSTEM_PROMPT,
    ParsedAnswer,
    build_fallback_prompt,
    build_prompt,
    extract_answer_from_lines,
    extract_json_object,
    generate_answer,
    generate_off_topic_answer,
    parse_answer_json,
    parse_model_output,
)
from dashlab.agents.triage import MATH
from dashlab.config import Settings
from dashlab.services.llm import LLMResponse, is_context_length_error


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _settings(**overrides) -> Settings:
    values = {
        "app_theme": "",
        "chat_model": "primary-model",
        "chat_model_fallback": "fallback-model",
        "chat_temperature": 0.3,
        "chat_max_tokens": 800,
        "fallback_temperature": 0.1,
        "fallback_max_tokens": 500,
    }
    values.update(overrides)
    return Settings(**values)


def _response(content: str, model: str = "test-model") -> LLMResponse:
    return LLMResponse(content=content, model=model, input_tokens=100, output_tokens=20)


# ---------------------------------------------------------------------------
# Test: JSON Extraction
# ---------------------------------------------------------------------------


class TestExtractJsonObject:
    """Tests for the balanced-brace scanner."""

    def test_object_inside_prose(self):
        text = 'Voici : {"answer": "ok", "followups": []} Fin.'
        assert extract_json_object(text) == '{"answer": "ok", "followups": []}'

    def test_braces_inside_strings_ignored(self):
        text = 'x {"answer": "a {b} c", "followups": []} y'
        assert extract_json_object(text) == '{"answer": "a {b} c", "followups": []}'

    def test_escaped_quotes_inside_strings(self):
        text = r'{"answer": "il a dit \"}\"", "followups": []}'
        assert extract_json_object(text) == text

    def test_nested_objects(self):
        text = '{"answer": "ok", "meta": {"k": 1}} trailing'
        assert extract_json_object(text) == '{"answer": "ok", "meta": {"k": 1}}'

    def test_unbalanced_prefix_skipped(self):
        assert extract_json_object('x { y {"answer": "ok"}') == '{"answer": "ok"}'

    def test_no_object(self):
        assert extract_json_object("pas de json ici") is None


class TestParseAnswerJson:
    def test_code_fenced_json(self):
        text = '```json\n{"answer": "Réponse.", "followups": ["A", "B"]}\n```'
        assert parse_answer_json(text) == ParsedAnswer(answer="Réponse.", followups=["A", "B"])

    def test_empty_answer_rejected(self):
        assert parse_answer_json('{"answer": "  ", "followups": ["A"]}') is None

    @pytest.mark.parametrize("value", ['["a"]', "42", '{"text": "a"}', "null"])
    def test_non_string_answer_rejected(self, value):
        assert parse_answer_json(f'{{"answer": {value}, "followups": []}}') is None

    def test_invalid_json_rejected(self):
        assert parse_answer_json("{answer: sans guillemets}") is None

    def test_non_list_followups_become_empty(self):
        parsed = parse_answer_json('{"answer": "x", "followups": "nope"}')
        assert parsed.followups == []

    def test_empty_text(self):
        assert parse_answer_json("") is None


# ---------------------------------------------------------------------------
# Test: Heuristic Line Extraction
# ---------------------------------------------------------------------------


class TestExtractAnswerFromLines:
    """Tests for the fallback parser used when the model ignores JSON."""

    def test_splits_answer_and_followups(self):
        text = (
            "Le budget est de 3 M€.\n"
            "Il finance les pistes.\n"
            "Si tu veux, je peux détailler les lots.\n"
            "Dis-moi ce qui t'intéresse."
        )
        parsed = extract_answer_from_lines(text)
        assert parsed.answer == "Le budget est de 3 M€.\nIl finance les pistes."
        assert parsed.followups == [
            "Si tu veux, je peux détailler les lots.",
            "Dis-moi ce qui t'intéresse.",
        ]

    def test_labels_are_dropped(self):
        text = "Réponse :\nLe texte.\nSuggestions :\nSi tu veux, je peux comparer."
        parsed = extract_answer_from_lines(text)
        assert parsed.answer == "Le texte."
        assert parsed.followups == ["Si tu veux, je peux comparer."]

    def test_list_items_stay_in_answer(self):
        text = "Points clés :\n- Si tu veux un exemple, regarde 2023.\nJe peux aussi résumer."
        parsed = extract_answer_from_lines(text)
        assert "- Si tu veux un exemple, regarde 2023." in parsed.answer
        assert parsed.followups == ["Je peux aussi résumer."]

    def test_no_followup_lines(self):
        assert extract_answer_from_lines("Juste une réponse.\nSur deux lignes.") is None

    def test_only_followup_lines(self):
        assert extract_answer_from_lines("Si tu veux, je peux résumer.") is None


class TestParseModelOutput:
    """Tests for the full parse + post-process chain."""

    def test_json_output_is_styled(self):
        raw = (
            '{"answer": "Le plan vise 2030. Veux-tu plus de détails ?", '
            '"followups": ["Peux-tu me donner un exemple ?", "Quels sont les coûts ?"]}'
        )
        answer, followups = parse_model_output(raw)
        assert followups == [
            "Si tu veux, je peux te donner un exemple",
            "Si tu veux, je peux approfondir ce point.",
        ]
        assert answer == "Le plan vise 2030.\n\nSi tu veux, je peux te donner un exemple"

    def test_unparseable_output_uses_raw_text_and_defaults(self):
        answer, followups = parse_model_output("Texte libre sans structure.")
        assert answer.startswith("Texte libre sans structure.\n\n")
        assert answer.endswith("Si tu veux, je peux te donner un résumé rapide.")
        assert len(followups) == 3

    def test_non_string_answer_not_stringified(self):
        answer, _ = parse_model_output('{"answer": ["a"], "followups": []}')
        assert "['a']" not in answer
        assert answer.startswith('{"answer": ["a"]')

    def test_defaults_follow_theme(self):
        _, followups = parse_model_output("Texte.", theme="Mobilité")
        assert all("Mobilité" in f for f in followups)


# ---------------------------------------------------------------------------
# Test: Prompts
# ---------------------------------------------------------------------------


class TestPrompts:
    def test_prompt_fences_and_escapes_question(self):
        prompt = build_prompt("<script>x</script>", "Extrait A", theme="Mobilité")
        assert "<user_question>\n&lt;script&gt;x&lt;/script&gt;\n</user_question>" in prompt
        assert "<context>\nExtrait A\n</context>" in prompt
        assert "THÉMATIQUE : Mobilité" in prompt

    def test_empty_context_uses_general_answer_note(self):
        prompt = build_prompt("Question ?", "")
        assert "<context>\n" not in prompt
        assert "Aucun extrait pertinent" in prompt

    def test_fallback_prompt_is_plain(self):
        prompt = build_fallback_prompt("Question ?", "Extrait")
        assert "JSON" not in prompt
        assert prompt.endswith("Réponse courte:")


# ---------------------------------------------------------------------------
# Test: Generation with Mock LLM
# ---------------------------------------------------------------------------


class TestGenerateAnswer:
    """Tests for generate_answer() primary and fallback calls."""

    def test_primary_call_uses_system_prompt(self):
        mock_llm = AsyncMock()
        mock_llm.complete.return_value = _response(
            '{"answer": "Le budget est de 3 M€.", "followups": ["Je peux détailler les lots."]}'
        )

        result = _run(generate_answer("Quel budget ?", "[Source 1]\nBudget 3 M€", mock_llm, _settings()))

        assert result.answer == "Le budget est de 3 M€.\n\nSi tu veux, je peux détailler les lots."
        assert result.followups == ["Si tu veux, je peux détailler les lots."]
        assert result.used_fallback is False
        mock_llm.complete.assert_called_once()

        call_kwargs = mock_llm.complete.call_args.kwargs
        assert call_kwargs["system"] == SYSTEM_PROMPT
        assert call_kwargs["model"] == "primary-model"
        assert call_kwargs["max_tokens"] == 800
        assert "<user_question>" in call_kwargs["messages"][0]["content"]

    def test_context_length_error_switches_to_fallback(self):
        mock_llm = AsyncMock()
        mock_llm.complete.side_effect = [
            Exception("This model's maximum context length is 16385 tokens"),
            _response("Réponse courte.", model="fallback-model"),
        ]

        result = _run(generate_answer("Quel budget ?", "Extrait", mock_llm, _settings()))

        assert result.used_fallback is True
        assert result.model == "fallback-model"
        assert result.raw == "Réponse courte."
        assert mock_llm.complete.call_count == 2

        fallback_kwargs = mock_llm.complete.call_args.kwargs
        assert fallback_kwargs["model"] == "fallback-model"
        assert fallback_kwargs["max_tokens"] == 500
        assert fallback_kwargs["temperature"] == 0.1
        assert "system" not in fallback_kwargs

    def test_other_errors_propagate(self):
        mock_llm = AsyncMock()
        mock_llm.complete.side_effect = RuntimeError("rate limited")

        with pytest.raises(RuntimeError):
            _run(generate_answer("Quel budget ?", "Extrait", mock_llm, _settings()))
        mock_llm.complete.assert_called_once()

    def test_fallback_failure_propagates(self):
        mock_llm = AsyncMock()
        mock_llm.complete.side_effect = [
            Exception("context_length_exceeded"),
            Exception("prompt is too long"),
        ]

        with pytest.raises(Exception, match="prompt is too long"):
            _run(generate_answer("Quel budget ?", "Extrait", mock_llm, _settings()))


class TestGenerateOffTopicAnswer:
    def test_math_value_given_as_fact(self):
        mock_llm = AsyncMock()
        mock_llm.complete.return_value = _response("2 + 2 font 4. Autre chose ?")

        result = _run(generate_off_topic_answer(
            "2+2", MATH, mock_llm, _settings(), math_result=("2+2", 4.0),
        ))

        assert result.answer == "2 + 2 font 4."
        assert result.followups == []
        content = mock_llm.complete.call_args.kwargs["messages"][0]["content"]
        assert "Fait établi : 2+2 = 4." in content
        assert mock_llm.complete.call_args.kwargs["max_tokens"] == 200


# ---------------------------------------------------------------------------
# Test: LLM Provider Helpers
# ---------------------------------------------------------------------------


class TestContextLengthError:
    @pytest.mark.parametrize("message", [
        "This model's maximum context length is 16385 tokens",
        "Error code: 400 - context_length_exceeded",
        "prompt is too long: 210000 tokens > 200000 maximum",
    ])
    def test_detected(self, message):
        assert is_context_length_error(Exception(message))

    def test_other_errors(self):
        assert not is_context_length_error(Exception("rate limit exceeded"))


class TestLLMProviderFactory:
    """Tests for the LLM provider factory function."""

    def test_factory_raises_without_api_key(self):
        """Factory should raise ValueError when no API key is set."""
        from dashlab.services import llm

        # Reset the singleton
        original = llm._provider
        llm._provider = None

        try:
            with patch.object(
                llm.settings, "llm_provider", "anthropic"
            ), patch.object(
                llm.settings, "llm_api_key", None
            ), patch.object(
                llm.settings, "anthropic_api_key", ""
            ):
                with pytest.raises(ValueError, match="API key"):
                    llm.get_llm_provider()
        finally:
            # Restore singleton
            llm._provider = original

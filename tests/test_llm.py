"""
Tests for src.llm (client helpers, summarizer, structured generator)

No network: Anthropic and page fetches are mocked.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.content.schemas import QuizContent
from src.jobs.errors import GenerationTransportError, SchemaValidationError
from src.llm.client import call_model, get_anthropic_client, parse_llm_json_response
from src.llm.generator import generate, validate_generated
from src.llm.summarizer import html_to_text, summarize

VALID_CONTENT = {
    "title": "Tides",
    "description": "What moves the oceans",
    "topic": "astronomy",
    "questions": [
        {
            "title": "What mainly causes tides?",
            "question_type": "single",
            "options": [
                {"text": "The Moon's gravity", "correct": True, "explanation": "Dominant tidal force"},
                {"text": "Wind", "correct": False, "explanation": "Causes waves, not tides"},
            ],
        }
    ],
}


def _response(text: str):
    return SimpleNamespace(
        content=[SimpleNamespace(text=text)],
        usage=SimpleNamespace(input_tokens=120, output_tokens=80),
    )


class TestParseJson:
    def test_plain_json(self):
        assert parse_llm_json_response('{"a": 1}') == {"a": 1}

    def test_strips_code_fences(self):
        assert parse_llm_json_response('```json\n{"a": 1}\n```') == {"a": 1}

    def test_invalid_json_raises(self):
        with pytest.raises(json.JSONDecodeError):
            parse_llm_json_response("Here is your quiz!")


class TestValidateGenerated:
    def test_valid_content(self):
        content = validate_generated(QuizContent, json.dumps(VALID_CONTENT))
        assert content.title == "Tides"
        assert len(content.questions) == 1

    def test_not_json(self):
        with pytest.raises(SchemaValidationError, match="not valid JSON"):
            validate_generated(QuizContent, "Sorry, I can't do that.")

    def test_schema_mismatch_lists_fields(self):
        broken = dict(VALID_CONTENT, questions=[{"title": "No options"}])
        with pytest.raises(SchemaValidationError) as exc_info:
            validate_generated(QuizContent, json.dumps(broken))
        assert exc_info.value.schema_name == "QuizContent"
        assert "questions.0.options" in exc_info.value.detail


class TestCallModel:
    @pytest.mark.asyncio
    async def test_no_api_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        assert get_anthropic_client() is None
        with pytest.raises(GenerationTransportError, match="ANTHROPIC_API_KEY"):
            await call_model("hello")

    @pytest.mark.asyncio
    async def test_falls_back_to_second_model(self):
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=[RuntimeError("overloaded"), _response("ok")])

        with patch("src.llm.client.get_anthropic_client", return_value=client):
            text, model_used, tokens = await call_model("hello", model="primary", fallback_model="backup")

        assert text == "ok"
        assert model_used == "backup"
        assert tokens == 200

    @pytest.mark.asyncio
    async def test_all_models_fail(self):
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=RuntimeError("overloaded"))

        with patch("src.llm.client.get_anthropic_client", return_value=client):
            with pytest.raises(GenerationTransportError, match="overloaded"):
                await call_model("hello", model="primary", fallback_model="backup")


class TestGenerate:
    @pytest.mark.asyncio
    async def test_returns_validated_model(self):
        raw = f"```json\n{json.dumps(VALID_CONTENT)}\n```"
        with patch("src.llm.generator.call_model", new_callable=AsyncMock) as mock_call:
            mock_call.return_value = (raw, "primary", 500)
            content = await generate(QuizContent, "Tides are caused by the Moon.")

        assert isinstance(content, QuizContent)
        prompt = mock_call.await_args.args[0]
        assert "Tides are caused by the Moon." in prompt
        assert '"questions"' in prompt

    @pytest.mark.asyncio
    async def test_malformed_output_is_schema_error(self):
        with patch("src.llm.generator.call_model", new_callable=AsyncMock) as mock_call:
            mock_call.return_value = ('{"title": "Tides"}', "primary", 500)
            with pytest.raises(SchemaValidationError):
                await generate(QuizContent, "context")

    @pytest.mark.asyncio
    async def test_transport_error_is_distinct(self):
        with patch("src.llm.generator.call_model", new_callable=AsyncMock) as mock_call:
            mock_call.side_effect = GenerationTransportError("network down")
            with pytest.raises(GenerationTransportError):
                await generate(QuizContent, "context")


class TestSummarizer:
    def test_html_to_text(self):
        markup = """
        <html><head><style>body { color: red; }</style>
        <script>var tracking = true;</script></head>
        <body><h1>Tides</h1><p>The Moon&#39;s gravity   pulls the oceans.</p></body></html>
        """
        text = html_to_text(markup)
        assert "Tides" in text
        assert "The Moon's gravity pulls the oceans." in text
        assert "tracking" not in text
        assert "color" not in text

    @pytest.mark.asyncio
    async def test_summarize(self):
        with patch("src.llm.summarizer.fetch_page_text", new_callable=AsyncMock) as mock_fetch, \
             patch("src.llm.summarizer.call_model", new_callable=AsyncMock) as mock_call:
            mock_fetch.return_value = "The Moon's gravity pulls the oceans."
            mock_call.return_value = ("  Tides come from lunar gravity.  ", "haiku", 90)

            summary = await summarize("https://example.com/tides")

        assert summary == "Tides come from lunar gravity."
        mock_fetch.assert_awaited_once_with("https://example.com/tides")

    @pytest.mark.asyncio
    async def test_empty_page_raises(self):
        with patch("src.llm.summarizer.fetch_page_text", new_callable=AsyncMock) as mock_fetch:
            mock_fetch.return_value = ""
            with pytest.raises(ValueError, match="No readable content"):
                await summarize("https://example.com/empty")

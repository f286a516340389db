"""
Unit Tests for Answer Generator

Tests prompt construction, provider selection, streaming and the fallback reply.
"""
import openai
import pytest
from unittest.mock import Mock

from app.errors import GenerationError, InputValidationError
from app.services.answer_generator import AnswerGenerator
from conftest import FakeChatStream


async def collect(generator) -> list:
    return [piece async for piece in generator]


class TestAnswerGenerator:

    # ═══════════════════════════════════════════════════════════════
    # PROVIDERS AND PROMPT
    # ═══════════════════════════════════════════════════════════════

    def test_openai_provider(self, mock_openai):
        generator = AnswerGenerator("sk-test", "openai")

        assert generator.model == "gpt-4o-mini"
        assert mock_openai["chat"].call_args.kwargs["base_url"] is None

    def test_groq_provider(self, mock_openai):
        generator = AnswerGenerator("gsk-test", "Groq")

        assert generator.provider == "groq"
        assert mock_openai["chat"].call_args.kwargs["base_url"] == "https://api.groq.com/openai/v1"

    def test_unknown_provider(self, mock_openai):
        with pytest.raises(InputValidationError, match="Unsupported AI provider"):
            AnswerGenerator("sk-test", "watson")

    def test_prompt_contains_context_and_question(self, mock_openai, retrieval_context):
        generator = AnswerGenerator("sk-test")

        messages = generator.build_messages("What grew?", retrieval_context)

        assert messages[0]["role"] == "system"
        assert "Source: report.pdf\nContent: Revenue grew 12% in 2023." in messages[0]["content"]
        assert "1. Q3 revenue was flat." in messages[0]["content"]
        assert 'Now answer the user\'s question: "What grew?"' in messages[0]["content"]
        assert messages[1] == {"role": "user", "content": "What grew?"}

    def test_fallback_message(self, mock_openai, retrieval_context):
        """
        Expected: source count and per-type breakdown, API key hint
        """
        message = AnswerGenerator("sk-test").fallback_message(retrieval_context)

        assert message == (
            "Error: I encountered an issue while processing your request with 3 sources "
            "(2 file, 1 text). Please check your API key and try again."
        )

    # ═══════════════════════════════════════════════════════════════
    # COMPLETE ANSWERS
    # ═══════════════════════════════════════════════════════════════

    @pytest.mark.asyncio
    async def test_answer(self, mock_openai, retrieval_context):
        answer = await AnswerGenerator("sk-test").answer("What grew?", retrieval_context)

        assert answer == "Test answer from the sources"
        kwargs = mock_openai["chat"].return_value.chat.completions.create.await_args.kwargs
        assert kwargs["temperature"] == 0.0
        assert kwargs["max_tokens"] == 1000

    @pytest.mark.asyncio
    async def test_answer_provider_failure_returns_fallback(self, mock_openai, retrieval_context):
        """
        SCENARIO: invalid API key

        Expected: fallback reply instead of an exception
        """
        mock_openai["chat"].return_value.chat.completions.create.side_effect = openai.OpenAIError("invalid key")

        answer = await AnswerGenerator("sk-bad").answer("What grew?", retrieval_context)

        assert answer.startswith("Error: I encountered an issue")

    @pytest.mark.asyncio
    async def test_answer_without_choices(self, mock_openai, retrieval_context):
        """
        Expected: placeholder reply when the provider returns no choices
        """
        mock_openai["chat"].return_value.chat.completions.create.return_value = Mock(choices=[])

        answer = await AnswerGenerator("sk-test").answer("What grew?", retrieval_context)

        assert answer == "No response from AI"

    # ═══════════════════════════════════════════════════════════════
    # STREAMING
    # ═══════════════════════════════════════════════════════════════

    @pytest.mark.asyncio
    async def test_stream_yields_deltas(self, mock_openai, retrieval_context):
        """
        Expected: non-empty deltas in order, stream closed afterwards
        """
        stream = FakeChatStream(["Revenue ", None, "grew ", "", "12%."])
        mock_openai["chat"].return_value.chat.completions.create.return_value = stream

        pieces = await collect(AnswerGenerator("sk-test").stream_answer("What grew?", retrieval_context))

        assert pieces == ["Revenue ", "grew ", "12%."]
        assert stream.closed
        assert mock_openai["chat"].return_value.chat.completions.create.await_args.kwargs["stream"] is True

    @pytest.mark.asyncio
    async def test_stream_start_failure_yields_fallback(self, mock_openai, retrieval_context):
        mock_openai["chat"].return_value.chat.completions.create.side_effect = openai.OpenAIError("invalid key")

        pieces = await collect(AnswerGenerator("sk-bad").stream_answer("What grew?", retrieval_context))

        assert len(pieces) == 1
        assert "Please check your API key" in pieces[0]

    @pytest.mark.asyncio
    async def test_stream_broken_midway(self, mock_openai, retrieval_context):
        stream = FakeChatStream(["partial "], error=openai.OpenAIError("connection reset"))
        mock_openai["chat"].return_value.chat.completions.create.return_value = stream

        generator = AnswerGenerator("sk-test").stream_answer("What grew?", retrieval_context)
        assert await generator.__anext__() == "partial "
        with pytest.raises(GenerationError):
            await generator.__anext__()

        assert stream.closed

    @pytest.mark.asyncio
    async def test_consumer_stops_early_closes_stream(self, mock_openai, retrieval_context):
        stream = FakeChatStream(["one ", "two ", "three"])
        mock_openai["chat"].return_value.chat.completions.create.return_value = stream

        generator = AnswerGenerator("sk-test").stream_answer("What grew?", retrieval_context)
        assert await generator.__anext__() == "one "
        await generator.aclose()

        assert stream.closed

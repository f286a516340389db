"""
Answer Generator
Builds the grounded system prompt and calls a chat-completion model, whole or streamed.
"""
from typing import AsyncIterator, List, Optional
import openai
import structlog
from openai import AsyncOpenAI

from app.config import get_settings
from app.errors import GenerationError, InputValidationError
from app.models.schemas import RetrievalContext

logger = structlog.get_logger()

SYSTEM_PROMPT_TEMPLATE = """You are a helpful AI assistant that answers questions based on the provided context.

Your task is to answer the user's question using ONLY the information provided in the context below.

IMPORTANT:
- Answer the question directly and helpfully
- Use the context information to provide accurate answers
- Cite sources when possible
- If the context does not contain enough information to answer, say clearly that you cannot answer from the provided sources
- Be conversational and helpful
- Do NOT repeat the user's question back to them

CONTEXT INFORMATION:
{context}

Now answer the user's question: "{question}\""""


class AnswerGenerator:
    """Chat completion over OpenAI-compatible providers with a fixed RAG prompt."""

    SUPPORTED_PROVIDERS = ("openai", "groq")

    def __init__(self, api_key: str, provider: Optional[str] = "openai"):
        self.settings = get_settings()
        self.provider = (provider or "openai").lower()

        if self.provider == "openai":
            base_url, self.model = None, self.settings.chat_model
        elif self.provider == "groq":
            base_url, self.model = self.settings.groq_base_url, self.settings.groq_chat_model
        else:
            raise InputValidationError(
                f"Unsupported AI provider: {provider}. Supported: {', '.join(self.SUPPORTED_PROVIDERS)}"
            )

        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=self.settings.llm_timeout)

    def build_system_prompt(self, question: str, context: RetrievalContext) -> str:
        return SYSTEM_PROMPT_TEMPLATE.format(context=context.render(), question=question)

    def build_messages(self, question: str, context: RetrievalContext) -> List[dict]:
        return [
            {"role": "system", "content": self.build_system_prompt(question, context)},
            {"role": "user", "content": question},
        ]

    def fallback_message(self, context: RetrievalContext) -> str:
        """User-facing reply when the provider call fails."""
        total = len(context.explicit_sources)
        counts = context.source_type_counts()
        breakdown = ", ".join(f"{count} {kind}" for kind, count in sorted(counts.items()))
        noun = "source" if total == 1 else "sources"
        detail = f" ({breakdown})" if breakdown else ""
        return (
            f"Error: I encountered an issue while processing your request with {total} {noun}{detail}. "
            "Please check your API key and try again."
        )

    async def answer(self, question: str, context: RetrievalContext) -> str:
        """
        Generate a complete answer.

        Returns:
            The model's answer, or the fallback message if the call fails
        """
        logger.info("Generating answer", provider=self.provider, model=self.model)
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=self.build_messages(question, context),
                temperature=self.settings.chat_temperature,
                max_tokens=self.settings.chat_max_tokens,
            )
        except openai.OpenAIError as e:
            logger.error("Chat completion failed", provider=self.provider, error=str(e))
            return self.fallback_message(context)

        if not response.choices:
            return "No response from AI"
        return response.choices[0].message.content or "No response from AI"

    async def stream_answer(self, question: str, context: RetrievalContext) -> AsyncIterator[str]:
        """
        Yield answer text increments as the model produces them.

        A failure to start the call yields the fallback message instead.
        The provider stream is closed when the consumer stops early.

        Raises:
            GenerationError: If the stream breaks after it started
        """
        logger.info("Streaming answer", provider=self.provider, model=self.model)
        try:
            stream = await self.client.chat.completions.create(
                model=self.model,
                messages=self.build_messages(question, context),
                temperature=self.settings.chat_temperature,
                max_tokens=self.settings.chat_max_tokens,
                stream=True,
            )
        except openai.OpenAIError as e:
            logger.error("Chat completion failed", provider=self.provider, error=str(e))
            yield self.fallback_message(context)
            return

        emitted = 0
        try:
            async for event in stream:
                if not event.choices:
                    continue
                delta = event.choices[0].delta.content
                if delta:
                    emitted += len(delta)
                    yield delta
        except openai.OpenAIError as e:
            logger.error("Streaming error", provider=self.provider, error=str(e), emitted=emitted)
            raise GenerationError(f"Streaming failed: {e}") from e
        finally:
            await stream.close()

        logger.info("Answer streamed", chars=emitted)

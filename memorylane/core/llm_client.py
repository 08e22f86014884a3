"""
Generative-text client with built-in retry logic for Groq API rate limits.
Constructed once by the service container and passed to every component
that needs text generation (content-analysis fallback, chat replies).
"""
import logging
import asyncio
from typing import Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_groq import ChatGroq

from memorylane.core.exceptions import RateLimitError

logger = logging.getLogger(__name__)

RATE_LIMIT_MARKERS = ("429", "quota", "rate limit", "rate_limit", "too many requests")


def is_rate_limit_error(error: BaseException) -> bool:
    """Detect a rate-limit failure from the exception type or its text."""
    if isinstance(error, RateLimitError):
        return True
    text = str(error).lower()
    return any(marker in text for marker in RATE_LIMIT_MARKERS)


def build_llm(api_key: str, model_name: str, temperature: float = 0.3) -> ChatGroq:
    return ChatGroq(
        api_key=api_key,
        model_name=model_name,
        temperature=temperature,
    )


class TextGenerator:
    """Single-turn and multi-turn text generation over a LangChain chat model."""

    def __init__(self, llm, max_retries: int = 3, backoff_base: float = 2.0):
        self.llm = llm
        self.max_retries = max_retries
        self.backoff_base = backoff_base

    async def _invoke_with_retry(self, payload) -> str:
        """Invoke the LLM, retrying 429s with exponential backoff (2s, 4s, 8s).

        Raises RateLimitError once retries are exhausted; any other failure
        propagates unchanged.
        """
        for attempt in range(self.max_retries + 1):
            try:
                response = await self.llm.ainvoke(payload)
                return response.content
            except Exception as e:
                if not is_rate_limit_error(e):
                    logger.error(f"LLM invocation error: {e}")
                    raise

                if attempt < self.max_retries:
                    wait_time = self.backoff_base ** (attempt + 1)
                    logger.warning(f"Groq rate limit hit (attempt {attempt + 1}/{self.max_retries}). Retrying in {wait_time}s...")
                    await asyncio.sleep(wait_time)
                    continue

                logger.error(f"Groq rate limit exceeded after {self.max_retries} retries: {e}")
                raise RateLimitError(f"429 rate limit exceeded: {e}", provider="groq", status_code=429) from e

    async def generate(self, prompt: str) -> str:
        """Generate text from a single prompt."""
        return await self._invoke_with_retry(prompt)

    async def continue_chat(
        self,
        history: Sequence[dict],
        message: str,
        system: str | None = None,
    ) -> str:
        """Continue a conversation. `history` items carry `role` and `content`."""
        messages: list[BaseMessage] = []
        if system:
            messages.append(SystemMessage(content=system))
        for entry in history:
            if entry.get("role") == "assistant":
                messages.append(AIMessage(content=entry.get("content", "")))
            else:
                messages.append(HumanMessage(content=entry.get("content", "")))
        messages.append(HumanMessage(content=message))
        return await self._invoke_with_retry(messages)

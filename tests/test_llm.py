import pytest
from unittest.mock import AsyncMock, MagicMock

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from memorylane.core.exceptions import RateLimitError
from memorylane.core.llm_client import TextGenerator, is_rate_limit_error
from memorylane.services.prompts import truncate_to_tokens


def _response(text):
    response = MagicMock()
    response.content = text
    return response


@pytest.mark.asyncio
class TestTextGenerator:
    """Test generation and retry behaviour."""

    async def test_generate(self, mock_llm):
        generator = TextGenerator(mock_llm)

        result = await generator.generate("Describe my beach video")
        assert result == "Here is what I found in your memories."
        mock_llm.ainvoke.assert_awaited_once_with("Describe my beach video")

    async def test_retries_rate_limit_then_succeeds(self, mock_llm):
        mock_llm.ainvoke = AsyncMock(side_effect=[Exception("Error code: 429"), _response("ok")])
        generator = TextGenerator(mock_llm, max_retries=3, backoff_base=0)

        assert await generator.generate("hi") == "ok"
        assert mock_llm.ainvoke.await_count == 2

    async def test_rate_limit_exhausted_raises(self, mock_llm):
        mock_llm.ainvoke = AsyncMock(side_effect=Exception("rate limit reached"))
        generator = TextGenerator(mock_llm, max_retries=2, backoff_base=0)

        with pytest.raises(RateLimitError) as exc_info:
            await generator.generate("hi")
        assert exc_info.value.status_code == 429
        assert mock_llm.ainvoke.await_count == 3

    async def test_other_errors_not_retried(self, mock_llm):
        mock_llm.ainvoke = AsyncMock(side_effect=ValueError("bad request"))
        generator = TextGenerator(mock_llm, backoff_base=0)

        with pytest.raises(ValueError):
            await generator.generate("hi")
        mock_llm.ainvoke.assert_awaited_once()

    async def test_continue_chat_builds_messages(self, mock_llm):
        generator = TextGenerator(mock_llm)
        history = [
            {"role": "user", "content": "Show me the beach"},
            {"role": "assistant", "content": "Here it is."},
        ]

        await generator.continue_chat(history, "And the birthday?", system="Be warm.")
        messages = mock_llm.ainvoke.call_args[0][0]
        assert [type(m) for m in messages] == [SystemMessage, HumanMessage, AIMessage, HumanMessage]
        assert messages[-1].content == "And the birthday?"


class TestRateLimitDetection:
    def test_detects_by_type(self):
        assert is_rate_limit_error(RateLimitError("slow down"))

    def test_detects_by_text(self):
        assert is_rate_limit_error(Exception("You exceeded your current quota"))
        assert is_rate_limit_error(Exception("HTTP 429 Too Many Requests"))

    def test_other_errors(self):
        assert not is_rate_limit_error(Exception("connection reset"))


class TestTokenTruncation:
    def test_short_text_unchanged(self):
        text = "A short memory."
        assert truncate_to_tokens(text, 100) == text

    def test_long_text_truncated(self):
        text = "We went to the beach and built a castle. " * 200
        result = truncate_to_tokens(text, 50)
        assert 0 < len(result) < len(text)
        assert text.startswith(result)

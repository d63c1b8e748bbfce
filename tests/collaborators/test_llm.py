"""Tests for the LiteLLM generation service and summary parsing."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import litellm
import pytest
from tenacity import wait_none

from threadmux.collaborators.llm import (
    LiteLLMGenerationService,
    LLMError,
    LLMRateLimitError,
    parse_summary,
)
from threadmux.errors import SummarizationError
from threadmux.model_router import ModelConfig
from threadmux.types import ContextMessage, EntityType, ThinkingLevel


def completion(content):
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=content))]
    response.usage = MagicMock(prompt_tokens=12, completion_tokens=8, total_tokens=20)
    return response


@pytest.fixture
def service(settings):
    return LiteLLMGenerationService(settings)


@pytest.fixture
def no_retry_wait():
    with patch.object(LiteLLMGenerationService._complete.retry, "wait", wait_none()):
        yield


class TestGenerate:
    @pytest.mark.asyncio
    async def test_passes_model_config(self, service):
        """Model id, temperature, budget and reasoning effort reach LiteLLM."""
        config = ModelConfig(
            model_id="anthropic/claude-opus-4-5",
            thinking_level=ThinkingLevel.MEDIUM,
            temperature=0.3,
            max_tokens=4096,
            system_prompt="Be brief.",
        )
        prompt = [{"role": "user", "content": "hello"}]

        with patch(
            "threadmux.collaborators.llm.litellm.acompletion",
            new_callable=AsyncMock,
            return_value=completion("Hi there"),
        ) as mock_llm:
            reply = await service.generate(prompt, config)

        assert reply == "Hi there"
        kwargs = mock_llm.call_args.kwargs
        assert kwargs["model"] == "anthropic/claude-opus-4-5"
        assert kwargs["temperature"] == 0.3
        assert kwargs["max_tokens"] == 4096
        assert kwargs["reasoning_effort"] == "medium"
        assert kwargs["messages"][0] == {"role": "system", "content": "Be brief."}
        assert kwargs["messages"][1:] == prompt

    @pytest.mark.asyncio
    async def test_thinking_off_sends_no_reasoning_effort(self, service):
        config = ModelConfig(
            model_id="openai/gpt-4o-mini",
            thinking_level=ThinkingLevel.OFF,
            temperature=0.7,
            max_tokens=1024,
        )

        with patch(
            "threadmux.collaborators.llm.litellm.acompletion",
            new_callable=AsyncMock,
            return_value=completion(None),
        ) as mock_llm:
            reply = await service.generate([{"role": "user", "content": "hi"}], config)

        assert reply == ""
        assert "reasoning_effort" not in mock_llm.call_args.kwargs

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self, service):
        """Non-transient failures surface as LLMError without retrying."""
        config = ModelConfig(
            model_id="openai/gpt-4o", thinking_level=ThinkingLevel.OFF, temperature=0.7, max_tokens=10
        )

        with patch(
            "threadmux.collaborators.llm.litellm.acompletion",
            new_callable=AsyncMock,
            side_effect=ValueError("bad request"),
        ) as mock_llm:
            with pytest.raises(LLMError, match="bad request"):
                await service.generate([{"role": "user", "content": "hi"}], config)

        assert mock_llm.await_count == 1

    @pytest.mark.asyncio
    async def test_rate_limit_retried_then_raised(self, service, no_retry_wait):
        """Rate limits are retried three times before giving up."""
        config = ModelConfig(
            model_id="openai/gpt-4o", thinking_level=ThinkingLevel.OFF, temperature=0.7, max_tokens=10
        )
        error = litellm.exceptions.RateLimitError(
            message="slow down", llm_provider="openai", model="gpt-4o"
        )

        with patch(
            "threadmux.collaborators.llm.litellm.acompletion",
            new_callable=AsyncMock,
            side_effect=error,
        ) as mock_llm:
            with pytest.raises(LLMRateLimitError):
                await service.generate([{"role": "user", "content": "hi"}], config)

        assert mock_llm.await_count == 3


class TestSummarize:
    @pytest.mark.asyncio
    async def test_summarize_parses_json(self, service, clock):
        messages = [
            ContextMessage(role="user", content="Let's use React for the board", timestamp=clock()),
            ContextMessage(role="assistant", content="Agreed.", timestamp=clock()),
        ]
        payload = {
            "summary": "Chose React for the sprint board.",
            "keyPoints": ["React chosen"],
            "entities": [{"type": "technology", "value": "React"}],
        }

        with patch(
            "threadmux.collaborators.llm.litellm.acompletion",
            new_callable=AsyncMock,
            return_value=completion(json.dumps(payload)),
        ) as mock_llm:
            result = await service.summarize(messages)

        assert result.summary == "Chose React for the sprint board."
        assert result.key_points == ["React chosen"]
        assert result.entities[0].type == EntityType.TECHNOLOGY

        kwargs = mock_llm.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "user: Let's use React for the board" in kwargs["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_nothing_to_summarize(self, service):
        with pytest.raises(SummarizationError):
            await service.summarize([])


class TestParseSummary:
    def test_fenced_json(self):
        raw = '```json\n{"summary": "Short recap", "key_points": ["one"]}\n```'

        result = parse_summary(raw)

        assert result.summary == "Short recap"
        assert result.key_points == ["one"]

    def test_invalid_json(self):
        with pytest.raises(SummarizationError, match="not valid JSON"):
            parse_summary("Here is your summary: it went well")

    def test_non_object(self):
        with pytest.raises(SummarizationError, match="JSON object"):
            parse_summary('["a", "b"]')

    def test_empty_summary(self):
        with pytest.raises(SummarizationError, match="empty"):
            parse_summary('{"summary": " ", "keyPoints": []}')

    def test_entities_normalized(self):
        raw = json.dumps(
            {
                "summary": "Recap",
                "entities": [
                    {"type": "TECHNOLOGY", "value": "Docker"},
                    {"type": "spaceship", "value": "Enterprise"},
                    {"type": "person"},
                    "Kubernetes",
                ],
            }
        )

        result = parse_summary(raw)

        assert [(e.type, e.value) for e in result.entities] == [
            (EntityType.TECHNOLOGY, "Docker"),
            (EntityType.TECHNOLOGY, "Kubernetes"),
        ]

"""LiteLLM-backed generation service for replies and compaction summaries.

All calls go through a LiteLLM proxy so API keys stay out of the
application and models can be swapped by config. This module:
- Wraps litellm.acompletion() for replies and summaries
- Retries transient failures (rate limit, unavailable) with tenacity
- Normalizes errors to LLMError and its subclasses
- Parses summaries from strict JSON; anything else is a SummarizationError
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import litellm
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from threadmux.collaborators.base import SummarizationResult
from threadmux.config import Settings, get_settings
from threadmux.context.summarizer import extract_entities
from threadmux.errors import SummarizationError
from threadmux.types import EntityType, ExtractedEntity, ThinkingLevel

if TYPE_CHECKING:
    from threadmux.model_router.selector import ModelConfig
    from threadmux.types import ContextMessage

log = structlog.get_logger(__name__)

SUMMARY_MAX_TOKENS = 1024

SUMMARY_SYSTEM_PROMPT = """\
You compress conversation history into durable memory.
Respond with a single JSON object and nothing else:
{"summary": "<2-4 sentence summary>",
 "keyPoints": ["<decision, fact or open question>", ...],
 "entities": [{"type": "<person|organization|project|technology|date|file|url|task>",
               "value": "<name>"}, ...]}
Keep names, numbers, decisions and unresolved questions. Omit small talk."""


class LLMError(Exception):
    """Base exception for all LLM call failures."""


class LLMRateLimitError(LLMError):
    """Upstream LLM rate limit exceeded."""


class LLMUnavailableError(LLMError):
    """LLM service is unavailable or timed out."""


_RETRYABLE = (LLMRateLimitError, LLMUnavailableError)


class LiteLLMGenerationService:
    """GenerationService implementation over LiteLLM with retries and structured logging."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        litellm.api_base = self._settings.litellm_base_url
        litellm.api_key = self._settings.litellm_api_key.get_secret_value()

    async def generate(self, prompt: list[dict[str, str]], config: ModelConfig) -> str:
        """Generate a reply for ``prompt`` using the selected model config.

        Args:
            prompt: Role/content messages (OpenAI format)
            config: Model id, temperature, output budget and thinking level

        Returns:
            Assistant text (empty string if the model returned no content)

        Raises:
            LLMRateLimitError: Upstream rate limit after retries
            LLMUnavailableError: Service unavailable after retries
            LLMError: Any other LLM failure
        """
        kwargs: dict[str, Any] = {}
        if config.thinking_level != ThinkingLevel.OFF:
            kwargs["reasoning_effort"] = config.thinking_level.value

        messages = prompt
        if config.system_prompt:
            messages = [{"role": "system", "content": config.system_prompt}, *prompt]

        response = await self._complete(
            messages=messages,
            model=config.model_id,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            **kwargs,
        )
        return self._extract_text(response)

    async def summarize(self, messages: Sequence[ContextMessage]) -> SummarizationResult:
        """Summarize a range of messages into summary, key points and entities.

        Raises:
            SummarizationError: Empty or unparseable model output
            LLMError: Transport failure after retries
        """
        if not messages:
            raise SummarizationError("Nothing to summarize")

        transcript = "\n".join(
            f"[{message.timestamp.isoformat()}] {message.role}: {message.content}"
            for message in messages
        )
        response = await self._complete(
            messages=[
                {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                {"role": "user", "content": transcript},
            ],
            model=self._settings.summarizer_model,
            temperature=0.2,
            max_tokens=SUMMARY_MAX_TOKENS,
            response_format={"type": "json_object"},
        )
        result = parse_summary(self._extract_text(response))
        log.info(
            "llm.summary_done",
            model=self._settings.summarizer_model,
            message_count=len(messages),
            key_points=len(result.key_points),
            entities=len(result.entities),
        )
        return result

    @retry(
        retry=retry_if_exception_type(_RETRYABLE),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _complete(
        self,
        *,
        messages: list[dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int,
        **kwargs: Any,
    ) -> litellm.ModelResponse:
        log.debug(
            "llm.completion_request",
            model=model,
            message_count=len(messages),
            max_tokens=max_tokens,
        )

        try:
            response: litellm.ModelResponse = await litellm.acompletion(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=self._settings.generation_timeout_seconds,
                **kwargs,
            )
        except litellm.exceptions.RateLimitError as exc:
            raise LLMRateLimitError(f"Rate limit from upstream LLM: {exc}") from exc
        except (litellm.exceptions.ServiceUnavailableError, litellm.exceptions.Timeout) as exc:
            raise LLMUnavailableError(f"LLM service unavailable: {exc}") from exc
        except Exception as exc:
            raise LLMError(f"LLM completion failed: {exc}") from exc

        usage = getattr(response, "usage", None)
        if usage:
            log.info(
                "llm.completion_done",
                model=model,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total_tokens,
            )
        return response

    @staticmethod
    def _extract_text(response: litellm.ModelResponse) -> str:
        try:
            return response.choices[0].message.content or ""
        except (AttributeError, IndexError, KeyError):
            return ""


def parse_summary(raw: str) -> SummarizationResult:
    """Parse the summarizer's JSON reply.

    Tolerates a fenced ```json block around the object. Entities given as
    plain strings are typed with the regex extractor; entries with an
    unknown type are dropped.

    Raises:
        SummarizationError: If the reply is not a JSON object or is empty
    """
    text = raw.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SummarizationError(f"Summary is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise SummarizationError("Summary must be a JSON object")

    summary = str(payload.get("summary") or "").strip()
    key_points = [
        str(point).strip()
        for point in payload.get("keyPoints") or payload.get("key_points") or []
        if str(point).strip()
    ]

    entities: list[ExtractedEntity] = []
    loose: list[str] = []
    for item in payload.get("entities") or []:
        if isinstance(item, str):
            loose.append(item)
            continue
        if not isinstance(item, dict) or not item.get("value"):
            continue
        try:
            entity_type = EntityType(str(item.get("type", "")).lower())
        except ValueError:
            log.debug("llm.summary_entity_dropped", entity=item)
            continue
        entities.append(ExtractedEntity(type=entity_type, value=str(item["value"])))
    if loose:
        entities.extend(extract_entities("\n".join(loose)))

    result = SummarizationResult(summary=summary, key_points=key_points, entities=entities)
    if result.is_empty:
        raise SummarizationError("Summary is empty")
    return result

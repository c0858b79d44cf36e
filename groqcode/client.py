"""Model client contract and the LiteLLM-backed Groq implementation."""

import logging
import time
from dataclasses import dataclass, field
from typing import Protocol

from .conversation import ToolCall
from .errors import ModelCallError
from .events import UsageStats

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "moonshotai/kimi-k2-instruct"

AVAILABLE_MODELS = [
    "moonshotai/kimi-k2-instruct",
    "llama-3.3-70b-versatile",
    "llama-3.1-8b-instant",
    "openai/gpt-oss-120b",
    "openai/gpt-oss-20b",
    "qwen/qwen3-32b",
]


@dataclass(frozen=True)
class ModelReply:
    content: str | None = None
    reasoning: str | None = None
    tool_calls: tuple[ToolCall, ...] = field(default_factory=tuple)
    usage: UsageStats = field(default_factory=UsageStats)
    finish_reason: str | None = None


class ModelClient(Protocol):
    api_key: str

    def complete(
        self,
        messages: list[dict],
        *,
        model: str,
        temperature: float | None,
        tools: list[dict] | None,
    ) -> ModelReply: ...

    def close(self) -> None: ...


def litellm_model_name(model: str) -> str:
    """Route a bare Groq model id through LiteLLM's groq provider."""
    return model if model.startswith("groq/") else f"groq/{model}"


def _text_or_none(value) -> str | None:
    return value if isinstance(value, str) and value else None


def _usage_from(response) -> UsageStats:
    usage = getattr(response, "usage", None)
    if usage is None:
        return UsageStats()
    return UsageStats(
        prompt_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
        completion_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
        total_tokens=int(getattr(usage, "total_tokens", 0) or 0),
    )


class LiteLLMClient:
    """Calls a hosted Groq model through LiteLLM.

    Every provider failure surfaces as ``ModelCallError``. The API key can be
    swapped at runtime (``/login`` in the REPL).
    """

    def __init__(
        self,
        api_key: str,
        *,
        proxy: str | None = None,
        base_url: str | None = None,
        max_output_tokens: int | None = None,
    ):
        self.api_key = api_key
        self.proxy = proxy
        self.base_url = base_url
        self.max_output_tokens = max_output_tokens
        self._http_client = None
        if proxy:
            import httpx

            self._http_client = httpx.Client(proxy=proxy)

    def complete(
        self,
        messages: list[dict],
        *,
        model: str,
        temperature: float | None,
        tools: list[dict] | None,
    ) -> ModelReply:
        import litellm

        litellm.suppress_debug_info = True
        litellm.client_session = self._http_client

        completion_kwargs = dict(
            model=litellm_model_name(model),
            messages=messages,
            api_key=self.api_key,
        )
        if tools:
            completion_kwargs["tools"] = tools
            completion_kwargs["tool_choice"] = "auto"
        if temperature is not None:
            completion_kwargs["temperature"] = temperature
        if self.base_url:
            completion_kwargs["api_base"] = self.base_url
        if self.max_output_tokens:
            completion_kwargs["max_tokens"] = self.max_output_tokens

        logger.debug(
            "calling %s with %d messages", completion_kwargs["model"], len(messages)
        )
        t0 = time.monotonic()
        try:
            response = litellm.completion(**completion_kwargs)
        except Exception as e:
            logger.debug("model call failed", exc_info=True)
            raise ModelCallError(f"LLM call failed: {e}") from e
        elapsed = time.monotonic() - t0

        try:
            choice = response.choices[0]
        except (AttributeError, IndexError) as e:
            raise ModelCallError(f"LLM returned no choices: {e}") from e
        msg = choice.message

        tool_calls = tuple(
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=tc.function.arguments or "",
            )
            for tc in (getattr(msg, "tool_calls", None) or [])
        )
        reasoning = _text_or_none(getattr(msg, "reasoning_content", None))
        reply = ModelReply(
            content=_text_or_none(getattr(msg, "content", None)),
            reasoning=reasoning,
            tool_calls=tool_calls,
            usage=_usage_from(response),
            finish_reason=getattr(choice, "finish_reason", None),
        )
        logger.debug(
            "model replied in %.1fs: finish_reason=%s tool_calls=%d",
            elapsed,
            reply.finish_reason,
            len(tool_calls),
        )
        return reply

    def close(self) -> None:
        """Close the proxy HTTP client and release LiteLLM's shared session."""
        if self._http_client is None:
            return
        import litellm

        if getattr(litellm, "client_session", None) is self._http_client:
            litellm.client_session = None
        self._http_client.close()
        self._http_client = None

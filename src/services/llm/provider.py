"""LLM Provider using LiteLLM for multi-provider abstraction."""

import time
from dataclasses import dataclass, field
from typing import Any

import litellm
import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from src.core.config import settings
from src.core.exceptions import LLMError

logger = structlog.get_logger()

# Configure LiteLLM
litellm.set_verbose = settings.app_debug

# Set API keys from settings
if settings.openai_api_key:
    litellm.openai_key = settings.openai_api_key
if settings.anthropic_api_key:
    litellm.anthropic_key = settings.anthropic_api_key
if settings.google_api_key:
    litellm.google_key = settings.google_api_key


@dataclass
class ToolCall:
    """A tool invocation requested by the model. Arguments are raw JSON text."""

    id: str | None
    name: str
    arguments: str


@dataclass
class LLMResponse:
    """Response from LLM completion."""

    content: str
    model: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    tokens_input: int = 0
    tokens_output: int = 0
    finish_reason: str = "stop"
    latency_ms: float = 0.0
    cost_usd: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)


def _extract_tool_calls(message: Any) -> list[ToolCall]:
    calls = []
    for raw in getattr(message, "tool_calls", None) or []:
        function = raw.function
        calls.append(
            ToolCall(
                id=getattr(raw, "id", None),
                name=function.name or "",
                arguments=function.arguments or "",
            )
        )
    return calls


class LLMProvider:
    """LLM provider with multi-model support and fallbacks.

    Uses LiteLLM for unified API across OpenAI, Anthropic, Google, and more.
    """

    def __init__(
        self,
        primary_model: str | None = None,
        fallback_models: list[str] | None = None,
        default_temperature: float | None = None,
        default_max_tokens: int | None = None,
    ) -> None:
        self.primary_model = primary_model or settings.litellm_primary_model
        self.fallback_models = fallback_models if fallback_models is not None else [
            settings.litellm_fallback_model
        ]
        self.default_temperature = (
            default_temperature if default_temperature is not None else settings.planner_temperature
        )
        self.default_max_tokens = default_max_tokens or settings.planner_max_tokens

        logger.info(
            "LLM Provider initialized",
            primary=self.primary_model,
            fallbacks=self.fallback_models,
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def complete(
        self,
        messages: list[dict[str, Any]],
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        model: str | None = None,
        tools: list[dict[str, Any]] | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a completion using the LLM.

        Args:
            messages: List of message dicts with 'role' and 'content'
            system_prompt: Optional system prompt to prepend
            temperature: Sampling temperature (0-2)
            max_tokens: Maximum tokens to generate
            model: Override model selection
            tools: OpenAI-style tool definitions the model may call
            **kwargs: Additional parameters passed to LiteLLM

        Returns:
            LLMResponse with generated content, requested tool calls and metadata
        """
        model_to_use = model or self.primary_model
        temp = temperature if temperature is not None else self.default_temperature
        max_tok = max_tokens or self.default_max_tokens

        # Prepare messages with system prompt
        full_messages = []
        if system_prompt:
            full_messages.append({"role": "system", "content": system_prompt})
        full_messages.extend(messages)

        if tools:
            kwargs.setdefault("tools", tools)
            kwargs.setdefault("tool_choice", "auto")

        start_time = time.perf_counter()

        try:
            response = await litellm.acompletion(
                model=model_to_use,
                messages=full_messages,
                temperature=temp,
                max_tokens=max_tok,
                **kwargs,
            )

            latency_ms = (time.perf_counter() - start_time) * 1000

            # Extract usage info
            usage = getattr(response, "usage", None)
            tokens_input = getattr(usage, "prompt_tokens", 0) or 0
            tokens_output = getattr(usage, "completion_tokens", 0) or 0

            # Calculate cost using LiteLLM's cost tracking
            try:
                cost = litellm.completion_cost(completion_response=response)
            except Exception:
                cost = 0.0

            choice = response.choices[0]
            content = choice.message.content or ""
            tool_calls = _extract_tool_calls(choice.message)
            finish_reason = choice.finish_reason or "stop"

            logger.info(
                "LLM completion successful",
                model=model_to_use,
                tokens_in=tokens_input,
                tokens_out=tokens_output,
                tool_calls=len(tool_calls),
                latency_ms=round(latency_ms, 2),
                cost_usd=round(cost, 6),
            )

            return LLMResponse(
                content=content,
                model=model_to_use,
                tool_calls=tool_calls,
                tokens_input=tokens_input,
                tokens_output=tokens_output,
                finish_reason=finish_reason,
                latency_ms=latency_ms,
                cost_usd=cost,
                metadata={"raw_response_id": getattr(response, "id", None)},
            )

        except Exception as e:
            logger.warning(
                "LLM completion failed, trying fallback",
                model=model_to_use,
                error=str(e),
            )

            # Try fallback models
            for fallback_model in self.fallback_models:
                if not fallback_model or fallback_model == model_to_use:
                    continue

                try:
                    return await self.complete(
                        messages=messages,
                        system_prompt=system_prompt,
                        temperature=temperature,
                        max_tokens=max_tokens,
                        model=fallback_model,
                        **kwargs,
                    )
                except Exception as fallback_error:
                    logger.warning(
                        "Fallback model also failed",
                        model=fallback_model,
                        error=str(fallback_error),
                    )
                    continue

            raise LLMError(f"All LLM providers failed: {e}", provider=model_to_use)


# Singleton instance
_llm_provider: LLMProvider | None = None


def get_llm_provider() -> LLMProvider:
    """Get or create the LLM provider singleton."""
    global _llm_provider
    if _llm_provider is None:
        _llm_provider = LLMProvider()
    return _llm_provider

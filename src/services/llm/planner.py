"""Planner - turns a planning input into a draft reply plus function calls."""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import structlog

from src.core.config import settings
from src.core.exceptions import PlannerError
from src.core.timeutils import utc_now
from src.models import FunctionCall, Plan, TenantConfig
from src.services.llm.provider import LLMProvider, ToolCall, get_llm_provider

if TYPE_CHECKING:
    from src.services.conversation.context import PlanningInput

logger = structlog.get_logger()


class Planner(ABC):
    """Abstract planner. Implementations must be safe to call concurrently."""

    @abstractmethod
    async def plan(
        self,
        planning_input: "PlanningInput",
        tools: list[dict[str, Any]],
        tenant_config: TenantConfig,
    ) -> Plan:
        """Produce a plan for one turn.

        Raises:
            PlannerError: No usable plan could be produced
        """
        ...


def parse_tool_call(call: ToolCall) -> FunctionCall:
    """Convert a raw tool call; malformed arguments are kept as a parse error."""
    if not call.arguments.strip():
        return FunctionCall(name=call.name, arguments={}, call_id=call.id)
    try:
        arguments = json.loads(call.arguments)
    except json.JSONDecodeError as e:
        return FunctionCall(name=call.name, call_id=call.id, parse_error=f"Invalid JSON arguments: {e.msg}")
    if not isinstance(arguments, dict):
        return FunctionCall(name=call.name, call_id=call.id, parse_error="Arguments must be a JSON object")
    return FunctionCall(name=call.name, arguments=arguments, call_id=call.id)


def build_system_prompt(planning_input: "PlanningInput", tenant_config: TenantConfig) -> str:
    """Tenant instructions followed by the structured conversation state."""
    context = json.dumps(planning_input.context, ensure_ascii=False, default=str, indent=2)
    return (
        f"{tenant_config.build_system_prompt()}\n\n"
        f"Today is {utc_now().date().isoformat()}.\n\n"
        "## Conversation state\n"
        "Use these values instead of asking the customer again:\n"
        f"{context}"
    )


class LLMPlanner(Planner):
    """Planner backed by a tool-calling LLM through LiteLLM."""

    def __init__(self, provider: LLMProvider | None = None, timeout_seconds: float | None = None) -> None:
        self.provider = provider or get_llm_provider()
        self.timeout_seconds = timeout_seconds or settings.planner_timeout_seconds

    async def plan(
        self,
        planning_input: "PlanningInput",
        tools: list[dict[str, Any]],
        tenant_config: TenantConfig,
    ) -> Plan:
        messages = list(planning_input.transcript)
        messages.append({"role": "user", "content": planning_input.message})

        try:
            response = await asyncio.wait_for(
                self.provider.complete(
                    messages=messages,
                    system_prompt=build_system_prompt(planning_input, tenant_config),
                    temperature=tenant_config.temperature,
                    tools=tools or None,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise PlannerError(f"Planner timed out after {self.timeout_seconds}s") from e
        except PlannerError:
            raise
        except Exception as e:
            raise PlannerError(f"Planner failed: {e}") from e

        calls = [parse_tool_call(call) for call in response.tool_calls]
        reply = response.content.strip()
        if not reply and not calls:
            raise PlannerError("Planner returned neither a reply nor function calls", provider=response.model)

        logger.debug(
            "Plan produced",
            conversation_id=planning_input.conversation_id,
            model=response.model,
            calls=[c.name for c in calls],
        )
        return Plan(reply=reply, function_calls=calls, model=response.model)


# Singleton instance
_planner: Planner | None = None


def get_planner() -> Planner:
    """Get or create the planner singleton."""
    global _planner
    if _planner is None:
        _planner = LLMPlanner()
    return _planner

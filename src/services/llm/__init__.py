"""LLM service - multi-provider abstraction using LiteLLM, and the turn planner."""

from src.services.llm.planner import LLMPlanner, Planner, get_planner
from src.services.llm.provider import LLMProvider, LLMResponse, ToolCall

__all__ = ["LLMPlanner", "LLMProvider", "LLMResponse", "Planner", "ToolCall", "get_planner"]

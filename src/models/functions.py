"""Function-call models exchanged between planner, guard and registry."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class FunctionErrorCode(str, Enum):
    """Machine-readable failure classes carried by FunctionResult.error."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    TENANT_ISOLATION = "tenant_isolation"
    CONFLICT = "conflict"
    CAPACITY = "capacity"
    TIMEOUT = "timeout"
    INTERNAL = "internal"
    UNKNOWN_FUNCTION = "unknown_function"
    PROVIDER_ERROR = "provider_error"
    RATE_LIMITED = "rate_limited"


class FunctionCall(BaseModel):
    """A planner-requested action. Arguments are untrusted until validated."""

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    call_id: str | None = None

    # Set when the planner produced arguments that are not a JSON object
    parse_error: str | None = None


class FunctionResult(BaseModel):
    """Typed outcome of one function call."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    function_name: str
    success: bool
    data: Any = None
    message: str | None = None
    error: str | None = None

    # Guard and idempotency markers
    suppressed: bool = False
    replayed: bool = False

    @classmethod
    def ok(cls, function_name: str, data: Any = None, message: str | None = None) -> "FunctionResult":
        return cls(function_name=function_name, success=True, data=data, message=message)

    @classmethod
    def fail(
        cls,
        function_name: str,
        error: FunctionErrorCode | str,
        message: str | None = None,
    ) -> "FunctionResult":
        code = error.value if isinstance(error, FunctionErrorCode) else error
        return cls(function_name=function_name, success=False, error=code, message=message)

    @classmethod
    def already_handled(cls, function_name: str) -> "FunctionResult":
        """Synthetic result for a call the duplicate guard suppressed."""
        return cls(
            function_name=function_name,
            success=True,
            suppressed=True,
            data={"alreadyHandled": True},
        )


class Plan(BaseModel):
    """Planner output: a draft reply plus zero or more function calls."""

    reply: str = ""
    function_calls: list[FunctionCall] = Field(default_factory=list)
    model: str | None = None

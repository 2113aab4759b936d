"""Function dispatch registry - validation, isolation and idempotency."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import Any

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from src.core.config import settings
from src.core.exceptions import (
    DuplicateDocumentError,
    FunctionError,
    PaymentProviderError,
    StorageError,
    TenantIsolationError,
)
from src.core.timeutils import utc_now
from src.models import FunctionCall, FunctionErrorCode, FunctionResult, PendingReservation, TenantConfig
from src.services.functions.signature import idempotency_key
from src.services.ratelimit.limiter import RateLimiter, RateLimitPolicy
from src.storage.base import StorageBackend

logger = structlog.get_logger()

REGISTRY_VERSION = "1"

IDEMPOTENCY_KEYS = "idempotency_keys"

# Argument names through which a planner might address another tenant
TENANT_ARGUMENT_KEYS = ("tenantId", "tenant_id")


@dataclass
class FunctionContext:
    """Explicit per-call scope. Nothing about the caller is implicit."""

    tenant_id: str
    client_id: str
    conversation_id: str
    channel_address: str
    tenant_config: TenantConfig = field(default_factory=TenantConfig)
    pending_reservation: PendingReservation | None = None
    idempotency_key: str | None = None

    @property
    def locale(self) -> str:
        return self.tenant_config.locale

    @property
    def currency(self) -> str:
        return self.tenant_config.currency


Handler = Callable[[FunctionContext, Any], Awaitable[FunctionResult]]
KeyScope = Callable[[FunctionContext, dict[str, Any]], dict[str, Any]]


@dataclass
class FunctionSpec:
    """One registered function.

    ``key_scope`` adds the context a handler falls back on (e.g. the pending
    reservation) to the arguments that identify a call.
    """

    name: str
    description: str
    args_model: type[BaseModel]
    handler: Handler
    idempotent: bool = False
    rate_limit_policy: RateLimitPolicy | None = None
    key_scope: KeyScope | None = None

    def scoped_arguments(self, args: BaseModel, ctx: FunctionContext) -> dict[str, Any]:
        arguments = args.model_dump(mode="json", by_alias=True, exclude_none=True)
        if self.key_scope is not None:
            arguments = self.key_scope(ctx, arguments)
        return arguments

    def tool_definition(self) -> dict[str, Any]:
        """OpenAI-style tool schema generated from the argument model."""
        parameters = self.args_model.model_json_schema(by_alias=True)
        parameters.pop("title", None)
        for prop in parameters.get("properties", {}).values():
            prop.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


def _summarize_validation_error(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "arguments"
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)


class FunctionRegistry:
    """Maps function names to tenant-scoped handlers.

    Every requested call yields exactly one FunctionResult, in request order.
    Handler exceptions never escape: they are converted into failed results.
    """

    version = REGISTRY_VERSION

    def __init__(
        self,
        storage: StorageBackend,
        rate_limiter: RateLimiter | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.storage = storage
        self.rate_limiter = rate_limiter
        self.timeout_seconds = timeout_seconds or settings.function_timeout_seconds
        self._functions: dict[str, FunctionSpec] = {}

    def register(self, spec: FunctionSpec) -> None:
        if spec.name in self._functions:
            raise ValueError(f"Function already registered: {spec.name}")
        self._functions[spec.name] = spec

    def is_known(self, name: str) -> bool:
        return name in self._functions

    @property
    def names(self) -> list[str]:
        return list(self._functions)

    def get(self, name: str) -> FunctionSpec | None:
        return self._functions.get(name)

    def tool_definitions(self) -> list[dict[str, Any]]:
        return [spec.tool_definition() for spec in self._functions.values()]

    def canonical_arguments(self, call: FunctionCall, ctx: FunctionContext) -> dict[str, Any]:
        """Arguments identifying what a call would actually do.

        Valid arguments are taken after validation (aliases and coercion
        applied) and scoped to their context; anything else is returned raw.
        """
        spec = self._functions.get(call.name)
        if spec is None or call.parse_error:
            return call.arguments
        try:
            args = spec.args_model.model_validate(call.arguments)
        except PydanticValidationError:
            return call.arguments
        return spec.scoped_arguments(args, ctx)

    async def dispatch(self, calls: list[FunctionCall], ctx: FunctionContext) -> list[FunctionResult]:
        """Execute calls sequentially; one result per call, same order."""
        results = []
        for call in calls:
            results.append(await self.handle(call, ctx))
        return results

    async def handle(self, call: FunctionCall, ctx: FunctionContext) -> FunctionResult:
        """Validate and execute one call for ``ctx.tenant_id``.

        Args:
            call: Planner-requested call with untrusted arguments
            ctx: Tenant, client and conversation scope of the call

        Returns:
            FunctionResult, never raises
        """
        log = logger.bind(
            tenant_id=ctx.tenant_id,
            conversation_id=ctx.conversation_id,
            function=call.name,
        )

        spec = self._functions.get(call.name)
        if spec is None:
            log.warning("Unknown function requested", registry_version=self.version)
            return FunctionResult.fail(call.name, FunctionErrorCode.UNKNOWN_FUNCTION)

        if call.parse_error:
            log.info("Function arguments could not be parsed", error=call.parse_error)
            return FunctionResult.fail(call.name, FunctionErrorCode.VALIDATION, call.parse_error)

        for key in TENANT_ARGUMENT_KEYS:
            requested = call.arguments.get(key)
            if requested is not None and requested != ctx.tenant_id:
                log.warning("Cross-tenant argument rejected", requested_tenant=requested)
                return FunctionResult.fail(
                    call.name,
                    FunctionErrorCode.TENANT_ISOLATION,
                    "Arguments reference another tenant",
                )

        try:
            args = spec.args_model.model_validate(call.arguments)
        except PydanticValidationError as e:
            message = _summarize_validation_error(e)
            log.info("Function arguments failed validation", error=message)
            return FunctionResult.fail(call.name, FunctionErrorCode.VALIDATION, message)

        if spec.rate_limit_policy and self.rate_limiter:
            limit = await self.rate_limiter.check(ctx.tenant_id, ctx.client_id, spec.rate_limit_policy)
            if not limit.allowed:
                return FunctionResult.fail(call.name, FunctionErrorCode.RATE_LIMITED)

        if spec.idempotent:
            return await self._run_idempotent(spec, args, ctx, log)
        return await self._run(spec, args, ctx, log)

    async def _run(self, spec: FunctionSpec, args: BaseModel, ctx: FunctionContext, log) -> FunctionResult:
        try:
            result = await asyncio.wait_for(spec.handler(ctx, args), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            log.error("Function timed out", timeout_seconds=self.timeout_seconds)
            return FunctionResult.fail(spec.name, FunctionErrorCode.TIMEOUT)
        except TenantIsolationError as e:
            log.warning("Tenant isolation violation", error=e.message, details=e.details)
            return FunctionResult.fail(spec.name, FunctionErrorCode.TENANT_ISOLATION, e.message)
        except FunctionError as e:
            log.info("Function failed", error=e.error, message=e.message)
            return FunctionResult.fail(spec.name, e.error, e.message)
        except PaymentProviderError as e:
            log.error("Payment provider failed", error=e.message)
            return FunctionResult.fail(spec.name, FunctionErrorCode.PROVIDER_ERROR, e.message)
        except StorageError as e:
            log.error("Storage failed during function", error=e.message)
            return FunctionResult.fail(spec.name, FunctionErrorCode.INTERNAL)
        except Exception as e:
            log.exception("Function raised unexpectedly", error=str(e))
            return FunctionResult.fail(spec.name, FunctionErrorCode.INTERNAL)

        log.info("Function executed", success=result.success, error=result.error)
        return result

    async def _run_idempotent(
        self,
        spec: FunctionSpec,
        args: BaseModel,
        ctx: FunctionContext,
        log,
    ) -> FunctionResult:
        """Run a financially significant call at most once per correlation key.

        The key is derived from (conversation, function, scoped arguments).
        A claim document is created before the side effect; a completed claim
        replays its stored result, a failed run releases the claim.
        """
        key = idempotency_key(ctx.conversation_id, spec.name, spec.scoped_arguments(args, ctx))

        try:
            await asyncio.wait_for(
                self.storage.create(
                    ctx.tenant_id,
                    IDEMPOTENCY_KEYS,
                    {
                        "function": spec.name,
                        "conversation_id": ctx.conversation_id,
                        "status": "in_progress",
                        "created_at": utc_now(),
                    },
                    doc_id=key,
                ),
                timeout=self.timeout_seconds,
            )
        except DuplicateDocumentError:
            return await self._replay_claim(spec, ctx, key, log)
        except Exception as e:
            log.error("Could not claim idempotency key", error=str(e))
            return FunctionResult.fail(spec.name, FunctionErrorCode.INTERNAL)

        result = await self._run(spec, args, replace(ctx, idempotency_key=key), log)

        try:
            if result.success:
                await self.storage.update(
                    ctx.tenant_id,
                    IDEMPOTENCY_KEYS,
                    key,
                    {
                        "status": "completed",
                        "result": result.model_dump(mode="json"),
                        "completed_at": utc_now(),
                    },
                )
            else:
                await self.storage.delete(ctx.tenant_id, IDEMPOTENCY_KEYS, key)
        except Exception as e:
            # The side effect already happened; the result still goes back to the caller
            log.error("Could not record idempotency outcome", idempotency_key=key, error=str(e))

        return result

    async def _replay_claim(self, spec: FunctionSpec, ctx: FunctionContext, key: str, log) -> FunctionResult:
        try:
            prior = await asyncio.wait_for(
                self.storage.get(ctx.tenant_id, IDEMPOTENCY_KEYS, key),
                timeout=self.timeout_seconds,
            )
            replayed = None
            if prior and prior.get("status") == "completed":
                replayed = FunctionResult.model_validate(prior["result"])
        except Exception as e:
            log.error("Could not read idempotency claim", idempotency_key=key, error=str(e))
            return FunctionResult.fail(spec.name, FunctionErrorCode.INTERNAL)

        if replayed is None:
            log.warning("Identical call already in progress", idempotency_key=key)
            return FunctionResult.fail(spec.name, FunctionErrorCode.CONFLICT, "Identical request in progress")

        log.info("Replaying result of an identical earlier call", idempotency_key=key)
        replayed.replayed = True
        return replayed

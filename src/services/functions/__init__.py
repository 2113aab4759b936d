"""Function dispatch - typed, tenant-scoped commerce functions."""

from src.services.functions.handlers import CommerceFunctions, build_function_registry
from src.services.functions.registry import FunctionContext, FunctionRegistry, FunctionSpec
from src.services.functions.signature import call_signature, idempotency_key, normalize_arguments

__all__ = [
    "CommerceFunctions",
    "FunctionContext",
    "FunctionRegistry",
    "FunctionSpec",
    "build_function_registry",
    "call_signature",
    "idempotency_key",
    "normalize_arguments",
]

"""Canonical form of function arguments, shared by the guard and idempotency keys."""

import hashlib
import json
from typing import Any


def normalize_arguments(value: Any) -> Any:
    """Canonicalise planner arguments so equivalent calls compare equal.

    Drops None and empty values, trims and case-folds strings, collapses
    integral floats to ints and sorts dict keys.
    """
    if isinstance(value, dict):
        normalized = {}
        for key in sorted(value):
            item = normalize_arguments(value[key])
            if item is None or item == "" or item == [] or item == {}:
                continue
            normalized[str(key)] = item
        return normalized
    if isinstance(value, (list, tuple)):
        return [normalize_arguments(item) for item in value]
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        return " ".join(value.split()).casefold()
    return value


def call_signature(name: str, arguments: dict[str, Any]) -> str:
    """Stable digest of a function name plus its normalized arguments."""
    canonical = json.dumps(
        {"name": name, "arguments": normalize_arguments(arguments)},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def idempotency_key(conversation_id: str, name: str, arguments: dict[str, Any]) -> str:
    """Correlation key for a financially significant call within a conversation."""
    return hashlib.sha256(
        f"{conversation_id}:{call_signature(name, arguments)}".encode("utf-8")
    ).hexdigest()

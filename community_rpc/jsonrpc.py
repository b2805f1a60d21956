"""JSON-RPC 2.0 envelope helpers: validation, error objects, health patterns."""

from __future__ import annotations

import re
from typing import Any

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
INTERNAL_ERROR = -32603
RATE_LIMITED = -32429  # non-standard

# Error text that means "this node is unwell", not "the caller made a mistake"
HEALTH_ERROR_PATTERNS: tuple[str, ...] = (
    r"syncing",
    r"database",
    r"compact",
    r"out of memory",
    r"not ready",
    r"time(d)?\s?out",
    r"connection refused",
    r"abort",
    r"network error",
)
_HEALTH_ERROR_RE = re.compile("|".join(HEALTH_ERROR_PATTERNS), re.IGNORECASE)


def error_response(code: int, message: str, request_id: Any = None) -> dict[str, Any]:
    """Build a JSON-RPC error response object."""
    return {"jsonrpc": "2.0", "error": {"code": code, "message": message}, "id": request_id}


def request_id_of(obj: Any) -> Any:
    """Return the ``id`` of *obj* if it is usable in a response, else ``None``."""
    if isinstance(obj, dict):
        rid = obj.get("id")
        if rid is None or isinstance(rid, str) or _is_number(rid):
            return rid
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_request(obj: Any) -> str | None:
    """Return a description of what makes *obj* invalid, or ``None`` if valid."""
    if not isinstance(obj, dict):
        return "Request must be an object"
    if obj.get("jsonrpc") != "2.0":
        return 'jsonrpc must be exactly "2.0"'
    if not isinstance(obj.get("method"), str):
        return "method must be a string"
    if "params" in obj and not isinstance(obj["params"], (list, dict)):
        return "params must be an array or object"
    if "id" in obj:
        rid = obj["id"]
        if not (rid is None or isinstance(rid, str) or _is_number(rid)):
            return "id must be a string, number or null"
    return None


def is_health_error(message: str | None) -> bool:
    """True if *message* indicates node unavailability."""
    return bool(message) and _HEALTH_ERROR_RE.search(message) is not None


def error_message_of(payload: Any) -> str | None:
    """Extract the error message from a JSON-RPC response, if it carries one."""
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if error is None:
        return None
    if isinstance(error, dict):
        return str(error.get("message", ""))
    return str(error)

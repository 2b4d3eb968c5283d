"""Failure results shared by every solved-problems operation.

Operations return plain dicts. A failure is {"error": <kind>, "message": <text>};
callers branch on the kind and show the message verbatim.
"""

from typing import Any

UNAUTHENTICATED = "unauthenticated"
FORBIDDEN = "forbidden"
NOT_FOUND = "not_found"
CONFLICT = "conflict"
BAD_REQUEST = "bad_request"
INVALID_INPUT = "invalid_input"

ERROR_KINDS = frozenset(
    {UNAUTHENTICATED, FORBIDDEN, NOT_FOUND, CONFLICT, BAD_REQUEST, INVALID_INPUT}
)


def error_result(kind: str, message: str) -> dict[str, Any]:
    if kind not in ERROR_KINDS:
        raise ValueError(f"Unknown error kind {kind!r}")
    return {"error": kind, "message": message}


def is_error(result: Any) -> bool:
    return isinstance(result, dict) and "error" in result

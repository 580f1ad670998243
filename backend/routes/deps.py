"""Shared request plumbing: caller identity, orchestrator lookup, result → HTTP."""

from typing import Any

from fastapi import Header, Request
from fastapi.responses import JSONResponse

from daggergm.orchestrator import Orchestrator

STATUS_BY_CODE: dict[str, int] = {
    "authentication_required": 401,
    "validation_error": 400,
    "insufficient_credits": 402,
    "not_found": 404,
    "regeneration_limit_exceeded": 409,
    "movement_locked": 409,
    "invalid_state_transition": 409,
    "rate_limited": 429,
    "llm_error": 502,
    "llm_transient_error": 502,
    "llm_schema_validation_error": 502,
    "persistence_error": 500,
    "internal_error": 500,
}


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def current_user(x_user_id: str | None = Header(default=None)) -> str | None:
    """User id resolved by the upstream auth layer, or None for anonymous callers."""
    return x_user_id or None


def client_id(request: Request) -> str | None:
    return request.client.host if request.client else None


def respond(result: dict[str, Any]) -> Any:
    """Return successful results as-is; map failures to their HTTP status."""
    if result.get("success"):
        return result
    status = STATUS_BY_CODE.get(result.get("code", ""), 500)
    headers = None
    if status == 429 and "retry_after" in result:
        headers = {"Retry-After": str(result["retry_after"])}
    return JSONResponse(status_code=status, content=result, headers=headers)

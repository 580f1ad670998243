"""Pydantic request models for API endpoints.

Generation parameters are passed through as a plain dict so the orchestrator
does the validation and reports it in its own result shape.
"""

from typing import Any

from pydantic import BaseModel, Field


class GenerateBody(BaseModel):
    config: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = None


class RefineBody(BaseModel):
    instruction: str


class UpdateStateBody(BaseModel):
    state: str

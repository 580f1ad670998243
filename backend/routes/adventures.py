"""Adventure generation, reads, lifecycle and regeneration-budget endpoints."""

from fastapi import APIRouter, Depends, Request

from daggergm.orchestrator import Orchestrator

from .deps import client_id, current_user, get_orchestrator, respond
from .models import GenerateBody, UpdateStateBody

router = APIRouter()


@router.get("/adventures")
async def list_adventures(
    user_id: str | None = Depends(current_user),
    orch: Orchestrator = Depends(get_orchestrator),
):
    """List the caller's adventures, newest first."""
    return respond(await orch.list_adventures(user_id))


@router.post("/adventures")
async def generate_adventure(
    body: GenerateBody,
    request: Request,
    user_id: str | None = Depends(current_user),
    orch: Orchestrator = Depends(get_orchestrator),
):
    """Generate a new adventure scaffold. Costs one credit."""
    result = await orch.generate_adventure(
        user_id, body.config,
        idempotency_key=body.idempotency_key,
        client_id=client_id(request),
    )
    return respond(result)


@router.get("/adventures/{adventure_id}")
async def get_adventure(
    adventure_id: str,
    user_id: str | None = Depends(current_user),
    orch: Orchestrator = Depends(get_orchestrator),
):
    """Get a single adventure with its scenes and regeneration counts."""
    return respond(await orch.get_adventure(user_id, adventure_id))


@router.put("/adventures/{adventure_id}/state")
async def update_adventure_state(
    adventure_id: str,
    body: UpdateStateBody,
    user_id: str | None = Depends(current_user),
    orch: Orchestrator = Depends(get_orchestrator),
):
    """Advance the adventure lifecycle (draft → ready → archived)."""
    return respond(await orch.update_adventure_state(user_id, adventure_id, body.state))


@router.get("/adventures/{adventure_id}/regenerations")
async def get_regeneration_counts(
    adventure_id: str,
    user_id: str | None = Depends(current_user),
    orch: Orchestrator = Depends(get_orchestrator),
):
    """Used and remaining regenerations per phase."""
    return respond(await orch.get_regeneration_counts(user_id, adventure_id))

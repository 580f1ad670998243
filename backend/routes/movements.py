"""Scene endpoints, nested under /api/adventures/{adventure_id}/movements/{movement_id}."""

from typing import Any

from fastapi import APIRouter, Body, Depends, Request

from daggergm.orchestrator import Orchestrator

from .deps import client_id, current_user, get_orchestrator, respond
from .models import RefineBody

router = APIRouter()

PREFIX = "/adventures/{adventure_id}/movements/{movement_id}"


@router.patch(PREFIX)
async def update_movement(
    adventure_id: str,
    movement_id: str,
    fields: dict[str, Any] = Body(...),
    user_id: str | None = Depends(current_user),
    orch: Orchestrator = Depends(get_orchestrator),
):
    """Edit title, type, description or estimated time of an unconfirmed scene."""
    return respond(await orch.update_movement(user_id, adventure_id, movement_id, fields))


@router.post(f"{PREFIX}/regenerate")
async def regenerate_movement(
    adventure_id: str,
    movement_id: str,
    request: Request,
    user_id: str | None = Depends(current_user),
    orch: Orchestrator = Depends(get_orchestrator),
):
    """Regenerate an unconfirmed scene (scaffold budget)."""
    result = await orch.regenerate_scaffold_movement(
        user_id, adventure_id, movement_id, client_id=client_id(request),
    )
    return respond(result)


@router.post(f"{PREFIX}/expand")
async def expand_movement(
    adventure_id: str,
    movement_id: str,
    request: Request,
    user_id: str | None = Depends(current_user),
    orch: Orchestrator = Depends(get_orchestrator),
):
    """Expand a confirmed scene into NPCs, adversaries and descriptions (expansion budget)."""
    result = await orch.expand_movement(
        user_id, adventure_id, movement_id, client_id=client_id(request),
    )
    return respond(result)


@router.post(f"{PREFIX}/refine")
async def refine_movement(
    adventure_id: str,
    movement_id: str,
    body: RefineBody,
    request: Request,
    user_id: str | None = Depends(current_user),
    orch: Orchestrator = Depends(get_orchestrator),
):
    """Apply a free-text instruction to an unconfirmed scene (expansion budget)."""
    result = await orch.refine_movement_content(
        user_id, adventure_id, movement_id, body.instruction, client_id=client_id(request),
    )
    return respond(result)


@router.post(f"{PREFIX}/confirm")
async def confirm_movement(
    adventure_id: str,
    movement_id: str,
    user_id: str | None = Depends(current_user),
    orch: Orchestrator = Depends(get_orchestrator),
):
    """Lock a scene as final."""
    return respond(await orch.confirm_movement(user_id, adventure_id, movement_id))


@router.delete(f"{PREFIX}/confirm")
async def unconfirm_movement(
    adventure_id: str,
    movement_id: str,
    user_id: str | None = Depends(current_user),
    orch: Orchestrator = Depends(get_orchestrator),
):
    """Unlock a confirmed scene (draft adventures only)."""
    return respond(await orch.unconfirm_movement(user_id, adventure_id, movement_id))

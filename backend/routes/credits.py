"""Credit balance endpoint. Purchases are handled outside this service."""

from fastapi import APIRouter, Depends

from daggergm.orchestrator import Orchestrator

from .deps import current_user, get_orchestrator, respond

router = APIRouter()


@router.get("/credits")
async def get_balance(
    user_id: str | None = Depends(current_user),
    orch: Orchestrator = Depends(get_orchestrator),
):
    """Current credit balance of the caller."""
    return respond(await orch.get_balance(user_id))

"""Adventure lifecycle: draft → ready → archived.

    draft     scenes are generated, edited and confirmed
    ready     every scene confirmed; scaffold frozen, expansion still allowed
    archived  terminal, no further edits

Transitions only move one step forward. `draft → ready` is gated on every
movement being confirmed; the check and the state write happen in the same
conditional update, so a concurrent unconfirm cannot slip in between.
"""

from __future__ import annotations

import logging

from daggergm.confirmation import confirmation_status
from daggergm.errors import InvalidStateTransition, ValidationError
from daggergm.models import Adventure, AdventureState
from daggergm.storage import Storage

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, str] = {
    "draft": "ready",
    "ready": "archived",
}

STATES: tuple[str, ...] = ("draft", "ready", "archived")


def check_transition(adventure: Adventure, new_state: str) -> None:
    """Raise if `adventure` may not move to `new_state`."""
    if new_state not in STATES:
        raise ValidationError(f"Unknown adventure state: {new_state!r}")
    if ALLOWED_TRANSITIONS.get(adventure.state) != new_state:
        raise InvalidStateTransition(
            f"Cannot change adventure state from {adventure.state} to {new_state}"
        )
    if new_state == "ready":
        status = confirmation_status(adventure)
        if status.total_count == 0:
            raise InvalidStateTransition("No scenes to confirm. Generate an adventure first.")
        if not status.all_confirmed:
            raise InvalidStateTransition(
                f"Cannot mark as ready: Only {status.confirmed_count}/{status.total_count} "
                "scenes confirmed"
            )


class AdventureStateMachine:
    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def transition(self, adventure_id: str, new_state: AdventureState) -> Adventure:
        def _apply(adventure: Adventure) -> Adventure:
            check_transition(adventure, new_state)
            adventure.state = new_state
            return adventure

        adventure = self._storage.update_adventure(adventure_id, _apply)
        logger.info("adventure %s -> %s", adventure_id, new_state)
        return adventure

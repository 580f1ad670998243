"""Scene confirmation store.

A confirmed movement is locked: it is handed to the LLM as immutable context
when a sibling is regenerated, and nothing but an explicit unconfirm may
change it. Confirmation is only meaningful while the adventure is a draft;
once it has moved to `ready` the flags are frozen.
"""

from __future__ import annotations

import logging

from daggergm.errors import InvalidStateTransition, NotFound
from daggergm.models import Adventure, ConfirmationStatus, MovementSummary, utcnow
from daggergm.storage import Storage

logger = logging.getLogger(__name__)


def confirmation_status(adventure: Adventure) -> ConfirmationStatus:
    total = len(adventure.movements)
    confirmed = sum(1 for m in adventure.movements if m.confirmed)
    return ConfirmationStatus(
        confirmed_count=confirmed,
        total_count=total,
        all_confirmed=total > 0 and confirmed == total,
    )


def confirmed_context(adventure: Adventure, exclude_movement_id: str | None = None) -> list[MovementSummary]:
    """Confirmed movements other than `exclude_movement_id`, in scene order."""
    ordered = sorted(adventure.movements, key=lambda m: m.order_index)
    return [
        m.summary() for m in ordered
        if m.confirmed and m.id != exclude_movement_id
    ]


class ConfirmationStore:
    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def _set_confirmed(self, adventure_id: str, movement_id: str, confirmed: bool) -> ConfirmationStatus:
        def _apply(adventure: Adventure) -> ConfirmationStatus:
            if adventure.state == "archived":
                raise InvalidStateTransition("Archived adventures cannot be edited")
            if not confirmed and adventure.state != "draft":
                raise InvalidStateTransition(
                    f"Cannot unconfirm scenes once the adventure is {adventure.state}"
                )
            movement = adventure.find_movement(movement_id)
            if movement is None:
                raise NotFound("Movement not found")
            if movement.confirmed != confirmed:
                movement.confirmed = confirmed
                movement.confirmed_at = utcnow() if confirmed else None
            return confirmation_status(adventure)

        status = self._storage.update_adventure(adventure_id, _apply)
        logger.info(
            "movement %s adventure=%s movement=%s (%d/%d)",
            "confirmed" if confirmed else "unconfirmed",
            adventure_id, movement_id, status.confirmed_count, status.total_count,
        )
        return status

    def confirm_movement(self, adventure_id: str, movement_id: str) -> ConfirmationStatus:
        return self._set_confirmed(adventure_id, movement_id, True)

    def unconfirm_movement(self, adventure_id: str, movement_id: str) -> ConfirmationStatus:
        return self._set_confirmed(adventure_id, movement_id, False)

    def get_confirmed_context(self, adventure_id: str, exclude_movement_id: str | None = None) -> list[MovementSummary]:
        adventure = self._storage.get_adventure(adventure_id)
        if adventure is None:
            raise NotFound("Adventure not found")
        return confirmed_context(adventure, exclude_movement_id)

    def get_status(self, adventure_id: str) -> ConfirmationStatus:
        adventure = self._storage.get_adventure(adventure_id)
        if adventure is None:
            raise NotFound("Adventure not found")
        return confirmation_status(adventure)

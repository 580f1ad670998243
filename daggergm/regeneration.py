"""Regeneration budget tracker.

Each adventure carries two free-regeneration counters:

    scaffold   re-rolling a scene summary while the outline is being shaped (10 max)
    expansion  expanding a confirmed scene or refining a scene (20 max)

`can_regenerate()` is the cheap pre-check the orchestrator runs before it
spends an LLM call. `increment_regeneration()` is the authoritative
increment-with-cap, done as one conditional update, so the counters can never
pass their caps even when two requests race past the pre-check.
"""

from __future__ import annotations

import logging

from daggergm.errors import NotFound, RegenerationLimitExceeded, ValidationError
from daggergm.models import Adventure, Phase, RegenerationCounts
from daggergm.storage import Storage

logger = logging.getLogger(__name__)

SCAFFOLD_REGENERATION_LIMIT = 10
EXPANSION_REGENERATION_LIMIT = 20

REGENERATION_LIMITS: dict[str, int] = {
    "scaffold": SCAFFOLD_REGENERATION_LIMIT,
    "expansion": EXPANSION_REGENERATION_LIMIT,
}

_COUNTER_FIELDS: dict[str, str] = {
    "scaffold": "scaffold_regenerations_used",
    "expansion": "expansion_regenerations_used",
}


def _check_phase(phase: str) -> None:
    if phase not in REGENERATION_LIMITS:
        raise ValidationError(f"Unknown regeneration phase: {phase!r}")


def used_in_phase(adventure: Adventure, phase: Phase) -> int:
    _check_phase(phase)
    return getattr(adventure, _COUNTER_FIELDS[phase])


class RegenerationBudget:
    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def _load(self, adventure_id: str) -> Adventure:
        adventure = self._storage.get_adventure(adventure_id)
        if adventure is None:
            raise NotFound("Adventure not found")
        return adventure

    def can_regenerate(self, adventure_id: str, phase: Phase) -> bool:
        _check_phase(phase)
        return used_in_phase(self._load(adventure_id), phase) < REGENERATION_LIMITS[phase]

    def ensure_can_regenerate(self, adventure_id: str, phase: Phase) -> None:
        """Raise RegenerationLimitExceeded if the phase budget is spent."""
        _check_phase(phase)
        used = used_in_phase(self._load(adventure_id), phase)
        limit = REGENERATION_LIMITS[phase]
        if used >= limit:
            raise RegenerationLimitExceeded(phase, used, limit)

    def increment_regeneration(self, adventure_id: str, phase: Phase) -> int:
        """Increment the phase counter if it is below its cap. Returns the new count."""
        _check_phase(phase)
        field = _COUNTER_FIELDS[phase]
        limit = REGENERATION_LIMITS[phase]

        def _apply(adventure: Adventure) -> int:
            used = getattr(adventure, field)
            if used >= limit:
                raise RegenerationLimitExceeded(phase, used, limit)
            setattr(adventure, field, used + 1)
            return used + 1

        count = self._storage.update_adventure(adventure_id, _apply)
        logger.debug("regeneration counted adventure=%s phase=%s used=%d", adventure_id, phase, count)
        return count

    def get_counts(self, adventure_id: str) -> RegenerationCounts:
        adventure = self._load(adventure_id)
        return counts_for(adventure)


def counts_for(adventure: Adventure) -> RegenerationCounts:
    return RegenerationCounts(
        scaffold=adventure.scaffold_regenerations_used,
        expansion=adventure.expansion_regenerations_used,
        scaffold_remaining=max(0, SCAFFOLD_REGENERATION_LIMIT - adventure.scaffold_regenerations_used),
        expansion_remaining=max(0, EXPANSION_REGENERATION_LIMIT - adventure.expansion_regenerations_used),
    )

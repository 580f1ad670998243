"""Tests for daggergm.regeneration — per-phase budgets with atomic caps."""

import threading

import pytest

from daggergm.errors import NotFound, RegenerationLimitExceeded, ValidationError
from daggergm.models import Adventure, GenerationConfig, Movement
from daggergm.regeneration import (
    EXPANSION_REGENERATION_LIMIT,
    SCAFFOLD_REGENERATION_LIMIT,
    RegenerationBudget,
)
from daggergm.storage import Storage


def _create(storage: Storage, **kw) -> Adventure:
    cfg = GenerationConfig(length="oneshot", primary_motif="m")
    adv = Adventure(
        user_id="u1", title="T", frame=cfg.frame, focus=cfg.primary_motif, config=cfg,
        movements=[Movement(title="A", type="social", description="d", order_index=0)],
        **kw,
    )
    return storage.create_adventure(adv)


@pytest.fixture
def budget(storage: Storage) -> RegenerationBudget:
    return RegenerationBudget(storage)


def test_limits():
    assert SCAFFOLD_REGENERATION_LIMIT == 10
    assert EXPANSION_REGENERATION_LIMIT == 20


def test_can_regenerate_below_cap(storage, budget):
    adv = _create(storage, scaffold_regenerations_used=9)
    assert budget.can_regenerate(adv.id, "scaffold") is True
    assert budget.can_regenerate(adv.id, "expansion") is True


def test_cannot_regenerate_at_cap(storage, budget):
    adv = _create(storage, scaffold_regenerations_used=10, expansion_regenerations_used=20)
    assert budget.can_regenerate(adv.id, "scaffold") is False
    assert budget.can_regenerate(adv.id, "expansion") is False


def test_ensure_raises_with_counts(storage, budget):
    adv = _create(storage, scaffold_regenerations_used=10)
    with pytest.raises(RegenerationLimitExceeded) as exc:
        budget.ensure_can_regenerate(adv.id, "scaffold")
    result = exc.value.to_result()
    assert result["phase"] == "scaffold"
    assert result["used"] == 10
    assert result["limit"] == 10
    assert "limit reached" in result["error"]


def test_increment_returns_new_count(storage, budget):
    adv = _create(storage)
    assert budget.increment_regeneration(adv.id, "expansion") == 1
    assert budget.increment_regeneration(adv.id, "expansion") == 2
    assert storage.get_adventure(adv.id).expansion_regenerations_used == 2
    assert storage.get_adventure(adv.id).scaffold_regenerations_used == 0


def test_increment_stops_at_cap(storage, budget):
    adv = _create(storage, scaffold_regenerations_used=10)
    with pytest.raises(RegenerationLimitExceeded):
        budget.increment_regeneration(adv.id, "scaffold")
    assert storage.get_adventure(adv.id).scaffold_regenerations_used == 10


def test_concurrent_increments_never_pass_cap(storage, budget):
    adv = _create(storage, scaffold_regenerations_used=5)

    def _inc():
        try:
            budget.increment_regeneration(adv.id, "scaffold")
        except RegenerationLimitExceeded:
            pass

    threads = [threading.Thread(target=_inc) for _ in range(12)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert storage.get_adventure(adv.id).scaffold_regenerations_used == 10


def test_get_counts(storage, budget):
    adv = _create(storage, scaffold_regenerations_used=3, expansion_regenerations_used=20)
    counts = budget.get_counts(adv.id)
    assert counts.scaffold == 3
    assert counts.scaffold_remaining == 7
    assert counts.expansion_remaining == 0


def test_unknown_phase(storage, budget):
    adv = _create(storage)
    with pytest.raises(ValidationError):
        budget.can_regenerate(adv.id, "polish")


def test_missing_adventure(budget):
    with pytest.raises(NotFound):
        budget.can_regenerate("missing", "scaffold")

"""Tests for daggergm.lifecycle — draft → ready → archived."""

import pytest

from daggergm.errors import InvalidStateTransition, ValidationError
from daggergm.lifecycle import AdventureStateMachine
from daggergm.models import Adventure, GenerationConfig, Movement
from daggergm.storage import Storage


def _create(storage: Storage, confirmed: list[bool], state: str = "draft") -> Adventure:
    cfg = GenerationConfig(length="oneshot", primary_motif="m")
    movements = [
        Movement(title=f"S{i}", type="combat", description="d", order_index=i, confirmed=c)
        for i, c in enumerate(confirmed)
    ]
    adv = Adventure(
        user_id="u1", title="T", frame=cfg.frame, focus=cfg.primary_motif, config=cfg,
        movements=movements, state=state,
    )
    return storage.create_adventure(adv)


@pytest.fixture
def machine(storage: Storage) -> AdventureStateMachine:
    return AdventureStateMachine(storage)


def test_ready_requires_all_confirmed(storage, machine):
    adv = _create(storage, [True, True, False])
    with pytest.raises(InvalidStateTransition) as exc:
        machine.transition(adv.id, "ready")
    assert "2/3" in str(exc.value)
    assert storage.get_adventure(adv.id).state == "draft"


def test_ready_when_all_confirmed(storage, machine):
    adv = _create(storage, [True, True, True])
    assert machine.transition(adv.id, "ready").state == "ready"
    assert storage.get_adventure(adv.id).state == "ready"


def test_ready_with_no_scenes(storage, machine):
    adv = _create(storage, [])
    with pytest.raises(InvalidStateTransition, match="No scenes to confirm"):
        machine.transition(adv.id, "ready")


def test_ready_to_archived(storage, machine):
    adv = _create(storage, [True], state="ready")
    assert machine.transition(adv.id, "archived").state == "archived"


@pytest.mark.parametrize("start,target", [
    ("draft", "archived"),
    ("ready", "draft"),
    ("archived", "ready"),
    ("draft", "draft"),
])
def test_invalid_transitions(storage, machine, start, target):
    adv = _create(storage, [True], state=start)
    with pytest.raises(InvalidStateTransition):
        machine.transition(adv.id, target)


def test_unknown_state(storage, machine):
    adv = _create(storage, [True])
    with pytest.raises(ValidationError):
        machine.transition(adv.id, "published")

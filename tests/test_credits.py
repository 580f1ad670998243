"""Tests for daggergm.credits — the credit ledger."""

import pytest

from daggergm.credits import CreditLedger
from daggergm.errors import InsufficientCredits, ValidationError
from daggergm.storage import Storage


@pytest.fixture
def ledger(storage: Storage) -> CreditLedger:
    return CreditLedger(storage)


def test_consume_returns_remaining(ledger: CreditLedger):
    ledger.add_credits("u1", 2)
    assert ledger.consume_credit("u1") == 1
    assert ledger.get_balance("u1") == 1


def test_consume_with_zero_balance(ledger: CreditLedger):
    with pytest.raises(InsufficientCredits) as exc:
        ledger.consume_credit("u1")
    assert exc.value.to_result()["code"] == "insufficient_credits"
    assert ledger.get_balance("u1") == 0


def test_refund_restores_exactly_one(ledger: CreditLedger):
    ledger.add_credits("u1", 1)
    ledger.consume_credit("u1")
    assert ledger.refund_credit("u1") == 1


def test_add_credits_tracks_purchases(ledger: CreditLedger, storage: Storage):
    ledger.add_credits("u1", 3)
    ledger.refund_credit("u1")
    profile = storage.get_profile("u1")
    assert profile.credits == 4
    assert profile.total_purchased == 3


@pytest.mark.parametrize("amount", [0, -1])
def test_add_credits_rejects_non_positive(ledger: CreditLedger, amount):
    with pytest.raises(ValidationError):
        ledger.add_credits("u1", amount)

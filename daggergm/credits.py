"""Credit ledger.

One integer balance per user. One credit pays for one initial adventure
generation; regeneration, expansion and refinement are free but budgeted
(see regeneration.py). Balance changes are single conditional updates in
storage, so concurrent requests from one user cannot double-spend.
"""

from __future__ import annotations

import logging

from daggergm.errors import ValidationError
from daggergm.storage import Storage

logger = logging.getLogger(__name__)

ADVENTURE_CREDIT_COST = 1


class CreditLedger:
    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def get_balance(self, user_id: str) -> int:
        return self._storage.get_profile(user_id).credits

    def consume_credit(self, user_id: str) -> int:
        """Debit one credit. Raises InsufficientCredits when the balance is 0.

        Returns the remaining balance.
        """
        remaining = self._storage.decrement_credits(user_id, ADVENTURE_CREDIT_COST)
        logger.info("credit consumed user=%s remaining=%d", user_id, remaining)
        return remaining

    def refund_credit(self, user_id: str) -> int:
        """Give back one credit. The caller guarantees at most one refund per debit."""
        balance = self._storage.increment_credits(user_id, ADVENTURE_CREDIT_COST)
        logger.info("credit refunded user=%s balance=%d", user_id, balance)
        return balance

    def add_credits(self, user_id: str, amount: int) -> int:
        """Grant purchased credits."""
        if amount <= 0:
            raise ValidationError("Invalid credit amount")
        balance = self._storage.increment_credits(user_id, amount, purchased=True)
        logger.info("credits added user=%s amount=%d balance=%d", user_id, amount, balance)
        return balance

"""JSON file storage.

All state is stored in flat JSON files under a configurable base directory.
There is no database or ORM. Reads go through plain helper methods that load
and validate JSON; every mutation of shared state goes through
`update_adventure()` or `_update_profile()`, which run the whole
read-check-write sequence under one lock and replace the file atomically.
That gives the conditional single-statement semantics the credit ledger and
the regeneration counters depend on ("decrement if > 0", "increment if < cap").

Directory layout:

    {base}/
      users/
        {user_id}.json        ← UserProfile (credit balance)
      adventures/
        {adventure_id}.json   ← Adventure document, movements embedded
      cache/
        {fingerprint}.json    ← cached LLM responses (see cache.py)
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

from daggergm.errors import InsufficientCredits, NotFound, PersistenceError, ValidationError
from daggergm.models import Adventure, UserProfile, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,100}$")


def is_valid_id(value: str) -> bool:
    return bool(value) and bool(_ID_RE.match(value))


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._users_root = base_path / "users"
        self._adv_root = base_path / "adventures"
        self._cache_root = base_path / "cache"
        for d in (self._users_root, self._adv_root, self._cache_root):
            d.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    @property
    def base_path(self) -> Path:
        return self._base

    @property
    def cache_dir(self) -> Path:
        return self._cache_root

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _adv_file(self, adventure_id: str) -> Path:
        if not is_valid_id(adventure_id):
            raise ValidationError(f"Invalid adventure id: {adventure_id!r}")
        return self._adv_root / f"{adventure_id}.json"

    def _user_file(self, user_id: str) -> Path:
        if not is_valid_id(user_id):
            raise ValidationError(f"Invalid user id: {user_id!r}")
        return self._users_root / f"{user_id}.json"

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        """Write via a temp file + rename so readers never see a torn file."""
        try:
            fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, path)
        except OSError as e:
            raise PersistenceError(f"Failed to write {path.name}: {e}") from e

    # ------------------------------------------------------------------
    # User profiles (credit balance)
    # ------------------------------------------------------------------

    def get_profile(self, user_id: str) -> UserProfile:
        """Return the stored profile, or a zero-credit profile for new users."""
        path = self._user_file(user_id)
        if not path.exists():
            return UserProfile(id=user_id)
        return UserProfile.model_validate(self._read_json(path))

    def _update_profile(self, user_id: str, mutate: Callable[[UserProfile], T]) -> T:
        with self._lock:
            profile = self.get_profile(user_id)
            result = mutate(profile)
            self._write_json(self._user_file(user_id), profile.model_dump())
            return result

    def decrement_credits(self, user_id: str, amount: int = 1) -> int:
        """Decrement the balance if it covers `amount`. Returns the new balance."""

        def _apply(profile: UserProfile) -> int:
            if profile.credits < amount:
                raise InsufficientCredits()
            profile.credits -= amount
            return profile.credits

        return self._update_profile(user_id, _apply)

    def increment_credits(self, user_id: str, amount: int = 1, purchased: bool = False) -> int:
        def _apply(profile: UserProfile) -> int:
            profile.credits += amount
            if purchased:
                profile.total_purchased += amount
            return profile.credits

        return self._update_profile(user_id, _apply)

    # ------------------------------------------------------------------
    # Adventures
    # ------------------------------------------------------------------

    def create_adventure(self, adventure: Adventure) -> Adventure:
        with self._lock:
            path = self._adv_file(adventure.id)
            if path.exists():
                raise PersistenceError(f"Adventure {adventure.id} already exists")
            self._write_json(path, adventure.model_dump(mode="json"))
        return adventure

    def get_adventure(self, adventure_id: str) -> Adventure | None:
        if not is_valid_id(adventure_id):
            return None
        path = self._adv_root / f"{adventure_id}.json"
        if not path.exists():
            return None
        return Adventure.model_validate(self._read_json(path))

    def list_adventures(self, user_id: str) -> list[Adventure]:
        """All adventures owned by `user_id`, newest first."""
        results = []
        for path in self._adv_root.glob("*.json"):
            adv = Adventure.model_validate(self._read_json(path))
            if adv.user_id == user_id:
                results.append(adv)
        results.sort(key=lambda a: a.created_at, reverse=True)
        return results

    def find_adventure_by_idempotency_key(self, user_id: str, key: str) -> Adventure | None:
        for adv in self.list_adventures(user_id):
            if adv.idempotency_key == key:
                return adv
        return None

    def update_adventure(self, adventure_id: str, mutate: Callable[[Adventure], T]) -> T:
        """Atomically read, mutate and write one adventure.

        `mutate` receives the current document and may raise to abort; in that
        case nothing is written. Returns whatever `mutate` returns.
        """
        with self._lock:
            adventure = self.get_adventure(adventure_id)
            if adventure is None:
                raise NotFound("Adventure not found")
            result = mutate(adventure)
            adventure.updated_at = utcnow()
            self._write_json(self._adv_file(adventure_id), adventure.model_dump(mode="json"))
            return result

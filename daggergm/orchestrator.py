"""Adventure generation orchestrator: the boundary between callers and the core.

Every public method returns a result dict and never raises. Success results
carry `"success": True`; failures are produced by `DaggerGMError.to_result()`
(`{"success": False, "error": ..., "code": ...}`) or, for anything unexpected,
an `internal_error` result logged with its traceback.

Generation flow (generate_adventure):
  1. Rate limit check (may reject with retry_after).
  2. Authentication: a None user id is rejected.
  3. Input validation into a GenerationConfig.
  4. Idempotency: a key that already produced an adventure returns it.
  5. Debit one credit (InsufficientCredits stops here, nothing else happens).
  6. Scaffold from the provider, then persist the new adventure.
     Any failure in 6 refunds the credit exactly once and re-raises.

Regeneration flow (regenerate_scaffold_movement, expand_movement,
refine_movement_content):
  1-3 as above, then ownership and state checks.
  4. Budget pre-check for the phase; an exhausted budget never reaches the LLM.
  5. Confirmed context is snapshotted from the adventure as loaded here.
  6. Provider call, then a conditional write that re-checks the target.
  7. Counter incremented only after the write succeeded.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from daggergm.confirmation import ConfirmationStore, confirmed_context
from daggergm.credits import CreditLedger
from daggergm.errors import (
    AuthenticationRequired,
    DaggerGMError,
    InvalidStateTransition,
    MovementLocked,
    NotFound,
    RegenerationLimitExceeded,
    ValidationError,
)
from daggergm.lifecycle import AdventureStateMachine
from daggergm.models import (
    Adventure,
    GenerationConfig,
    Movement,
    MovementSummary,
    MovementType,
    Phase,
    ScaffoldResult,
)
from daggergm.provider import AdventureProvider
from daggergm.ratelimit import RateLimiter
from daggergm.regeneration import REGENERATION_LIMITS, RegenerationBudget, counts_for
from daggergm.storage import Storage, is_valid_id

logger = logging.getLogger(__name__)

Result = dict[str, Any]

MAX_INSTRUCTION_LENGTH = 2000


class MovementEdit(BaseModel):
    """Fields a user may change by hand on an unconfirmed movement."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    title: str | None = Field(default=None, min_length=1, max_length=200)
    type: MovementType | None = None
    description: str | None = Field(default=None, min_length=1, max_length=10000)
    estimated_time: str | None = Field(default=None, alias="estimatedTime", min_length=1)


def _describe_validation_error(e: PydanticValidationError) -> str:
    first = e.errors()[0]
    field = ".".join(str(p) for p in first["loc"]) or "input"
    return f"Invalid {field}: {first['msg']}"


def _parse_config(params: GenerationConfig | dict[str, Any] | None) -> GenerationConfig:
    if isinstance(params, GenerationConfig):
        return params
    if not isinstance(params, dict):
        raise ValidationError("Generation parameters must be an object")
    try:
        return GenerationConfig.model_validate(params)
    except PydanticValidationError as e:
        raise ValidationError(_describe_validation_error(e)) from e


def _build_adventure(
    user_id: str,
    config: GenerationConfig,
    scaffold: ScaffoldResult,
    idempotency_key: str | None,
) -> Adventure:
    movements = [
        Movement(
            title=m.title,
            type=m.type,
            description=m.description,
            estimated_time=m.estimated_time,
            order_index=i,
        )
        for i, m in enumerate(scaffold.movements)
    ]
    return Adventure(
        user_id=user_id,
        title=scaffold.title,
        description=scaffold.description,
        frame=config.frame,
        focus=config.primary_motif,
        config=config,
        movements=movements,
        idempotency_key=idempotency_key,
    )


def _ordered(adventure: Adventure) -> list[Movement]:
    return sorted(adventure.movements, key=lambda m: m.order_index)


class Orchestrator:
    def __init__(
        self,
        storage: Storage,
        provider: AdventureProvider,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self._storage = storage
        self._provider = provider
        self._limiter = rate_limiter or RateLimiter()
        self.ledger = CreditLedger(storage)
        self.budget = RegenerationBudget(storage)
        self.confirmations = ConfirmationStore(storage)
        self.lifecycle = AdventureStateMachine(storage)
        self._inflight_keys: set[tuple[str, str]] = set()
        self._inflight_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Boundary helpers
    # ------------------------------------------------------------------

    async def _run(self, operation: str, fn: Callable[[], Awaitable[Result]]) -> Result:
        try:
            return await fn()
        except DaggerGMError as e:
            logger.info("%s failed: %s (%s)", operation, e, e.code)
            return e.to_result()
        except Exception as e:
            logger.exception("%s failed unexpectedly", operation)
            return {"success": False, "error": str(e) or type(e).__name__, "code": "internal_error"}

    def _rate_limit(self, user_id: str | None, client_id: str | None, operation: str) -> None:
        identifier = user_id or client_id or "anonymous"
        self._limiter.enforce(identifier, operation, authenticated=user_id is not None)

    @staticmethod
    def _require_user(user_id: str | None) -> str:
        if not user_id:
            raise AuthenticationRequired()
        if not is_valid_id(user_id):
            raise ValidationError("Invalid user id")
        return user_id

    def _load_owned(self, user_id: str, adventure_id: str) -> Adventure:
        adventure = self._storage.get_adventure(adventure_id)
        # Someone else's adventure looks exactly like a missing one
        if adventure is None or adventure.user_id != user_id:
            raise NotFound("Adventure not found")
        return adventure

    @staticmethod
    def _find(adventure: Adventure, movement_id: str) -> Movement:
        movement = adventure.find_movement(movement_id)
        if movement is None:
            raise NotFound("Movement not found")
        return movement

    def _refund(self, user_id: str) -> None:
        try:
            self.ledger.refund_credit(user_id)
        except Exception:
            logger.exception("Failed to refund credit for user %s", user_id)

    def _count_regeneration(self, adventure_id: str, phase: Phase) -> int:
        try:
            return self.budget.increment_regeneration(adventure_id, phase)
        except RegenerationLimitExceeded as e:
            # A concurrent request took the last slot after our pre-check
            logger.warning(
                "lost regeneration race adventure=%s phase=%s, result kept uncounted",
                adventure_id, phase,
            )
            return e.used

    def _claim_key(self, user_id: str, key: str) -> None:
        with self._inflight_lock:
            if (user_id, key) in self._inflight_keys:
                raise ValidationError("A generation with this idempotency key is already in progress")
            self._inflight_keys.add((user_id, key))

    def _release_key(self, user_id: str, key: str) -> None:
        with self._inflight_lock:
            self._inflight_keys.discard((user_id, key))

    # ------------------------------------------------------------------
    # Initial generation
    # ------------------------------------------------------------------

    async def generate_adventure(
        self,
        user_id: str | None,
        params: GenerationConfig | dict[str, Any] | None,
        *,
        idempotency_key: str | None = None,
        client_id: str | None = None,
    ) -> Result:
        """Generate a new adventure scaffold for one credit."""

        async def _op() -> Result:
            self._rate_limit(user_id, client_id, "adventure_generation")
            uid = self._require_user(user_id)
            config = _parse_config(params)
            if idempotency_key is not None and not is_valid_id(idempotency_key):
                raise ValidationError("Invalid idempotency key")

            if idempotency_key is None:
                return await self._generate(uid, config, None)

            self._claim_key(uid, idempotency_key)
            try:
                existing = self._storage.find_adventure_by_idempotency_key(uid, idempotency_key)
                if existing is not None:
                    logger.info("idempotent replay user=%s adventure=%s", uid, existing.id)
                    return {
                        "success": True,
                        "adventure_id": existing.id,
                        "adventure": existing.model_dump(mode="json"),
                        "credits_remaining": self.ledger.get_balance(uid),
                        "replayed": True,
                    }
                return await self._generate(uid, config, idempotency_key)
            finally:
                self._release_key(uid, idempotency_key)

        return await self._run("generate_adventure", _op)

    async def _generate(self, user_id: str, config: GenerationConfig, idempotency_key: str | None) -> Result:
        remaining = self.ledger.consume_credit(user_id)
        try:
            scaffold = await self._provider.generate_scaffold(config)
            adventure = _build_adventure(user_id, config, scaffold, idempotency_key)
            self._storage.create_adventure(adventure)
        except Exception:
            self._refund(user_id)
            raise

        logger.info(
            "adventure generated user=%s adventure=%s scenes=%d",
            user_id, adventure.id, len(adventure.movements),
        )
        return {
            "success": True,
            "adventure_id": adventure.id,
            "adventure": adventure.model_dump(mode="json"),
            "credits_remaining": remaining,
            "replayed": False,
        }

    # ------------------------------------------------------------------
    # Scaffold phase
    # ------------------------------------------------------------------

    async def regenerate_scaffold_movement(
        self,
        user_id: str | None,
        adventure_id: str,
        movement_id: str,
        *,
        client_id: str | None = None,
    ) -> Result:
        """Replace one unconfirmed scene summary with a fresh LLM version."""

        async def _op() -> Result:
            self._rate_limit(user_id, client_id, "movement_regeneration")
            uid = self._require_user(user_id)
            adventure = self._load_owned(uid, adventure_id)
            if adventure.state != "draft":
                raise InvalidStateTransition(
                    f"Scenes can only be regenerated while the adventure is a draft (it is {adventure.state})"
                )
            movement = self._find(adventure, movement_id)
            if movement.confirmed:
                raise MovementLocked("Cannot regenerate a confirmed scene. Unconfirm it first.")
            self.budget.ensure_can_regenerate(adventure_id, "scaffold")

            ordered = _ordered(adventure)
            result = await self._provider.regenerate_movement(
                movement.summary(),
                adventure.config,
                confirmed_context(adventure, exclude_movement_id=movement_id),
                position=ordered.index(movement) + 1,
                total=len(ordered),
            )

            def _apply(current: Adventure) -> Movement:
                if current.state != "draft":
                    raise InvalidStateTransition(
                        f"Scenes can only be regenerated while the adventure is a draft (it is {current.state})"
                    )
                target = self._find(current, movement_id)
                if target.confirmed:
                    raise MovementLocked("Scene was confirmed while it was being regenerated")
                target.title = result.title
                target.type = result.type
                target.description = result.description
                target.estimated_time = result.estimated_time
                target.expansion = None
                return target.model_copy()

            updated = self._storage.update_adventure(adventure_id, _apply)
            used = self._count_regeneration(adventure_id, "scaffold")
            logger.info("movement regenerated adventure=%s movement=%s used=%d", adventure_id, movement_id, used)
            return {
                "success": True,
                "movement": updated.model_dump(mode="json"),
                "regenerations_used": used,
                "regenerations_remaining": max(0, REGENERATION_LIMITS["scaffold"] - used),
            }

        return await self._run("regenerate_scaffold_movement", _op)

    async def update_movement(
        self,
        user_id: str | None,
        adventure_id: str,
        movement_id: str,
        fields: dict[str, Any],
    ) -> Result:
        """Manual edit of an unconfirmed scene. Free and not budgeted."""

        async def _op() -> Result:
            uid = self._require_user(user_id)
            try:
                edit = MovementEdit.model_validate(fields)
            except PydanticValidationError as e:
                raise ValidationError(_describe_validation_error(e)) from e
            changes = edit.model_dump(exclude_none=True)
            if not changes:
                raise ValidationError("No fields to update")
            self._load_owned(uid, adventure_id)

            def _apply(current: Adventure) -> Movement:
                if current.state != "draft":
                    raise InvalidStateTransition(
                        f"Scenes can only be edited while the adventure is a draft (it is {current.state})"
                    )
                target = self._find(current, movement_id)
                if target.confirmed:
                    raise MovementLocked("Cannot edit a confirmed scene. Unconfirm it first.")
                for name, value in changes.items():
                    setattr(target, name, value)
                return target.model_copy()

            updated = self._storage.update_adventure(adventure_id, _apply)
            logger.info("movement edited adventure=%s movement=%s fields=%s",
                        adventure_id, movement_id, sorted(changes))
            return {"success": True, "movement": updated.model_dump(mode="json")}

        return await self._run("update_movement", _op)

    # ------------------------------------------------------------------
    # Expansion phase
    # ------------------------------------------------------------------

    async def expand_movement(
        self,
        user_id: str | None,
        adventure_id: str,
        movement_id: str,
        *,
        client_id: str | None = None,
    ) -> Result:
        """Generate NPCs, adversaries, descriptions and narration for a confirmed scene."""

        async def _op() -> Result:
            self._rate_limit(user_id, client_id, "movement_expansion")
            uid = self._require_user(user_id)
            adventure = self._load_owned(uid, adventure_id)
            if adventure.state == "archived":
                raise InvalidStateTransition("Archived adventures cannot be edited")
            movement = self._find(adventure, movement_id)
            if not movement.confirmed:
                raise ValidationError("Only confirmed scenes can be expanded. Confirm the scene first.")
            self.budget.ensure_can_regenerate(adventure_id, "expansion")

            ordered = _ordered(adventure)
            i = ordered.index(movement)
            previous = ordered[i - 1].summary() if i > 0 else None
            following = ordered[i + 1].summary() if i + 1 < len(ordered) else None
            expansion = await self._provider.expand_movement(
                movement.summary(),
                adventure.config,
                previous=previous,
                next=following,
                use_cache=movement.expansion is None,
            )

            def _apply(current: Adventure) -> Movement:
                if current.state == "archived":
                    raise InvalidStateTransition("Archived adventures cannot be edited")
                target = self._find(current, movement_id)
                target.expansion = expansion
                return target.model_copy()

            updated = self._storage.update_adventure(adventure_id, _apply)
            used = self._count_regeneration(adventure_id, "expansion")
            logger.info("movement expanded adventure=%s movement=%s used=%d", adventure_id, movement_id, used)
            return {
                "success": True,
                "movement": updated.model_dump(mode="json"),
                "regenerations_used": used,
                "regenerations_remaining": max(0, REGENERATION_LIMITS["expansion"] - used),
            }

        return await self._run("expand_movement", _op)

    async def refine_movement_content(
        self,
        user_id: str | None,
        adventure_id: str,
        movement_id: str,
        instruction: str,
        *,
        client_id: str | None = None,
    ) -> Result:
        """Apply a free-text instruction to an unconfirmed scene. Uses the expansion budget."""

        async def _op() -> Result:
            self._rate_limit(user_id, client_id, "content_refinement")
            uid = self._require_user(user_id)
            text = (instruction or "").strip()
            if not text:
                raise ValidationError("Refinement instruction must not be empty")
            if len(text) > MAX_INSTRUCTION_LENGTH:
                raise ValidationError(
                    f"Refinement instruction is too long (max {MAX_INSTRUCTION_LENGTH} characters)"
                )
            adventure = self._load_owned(uid, adventure_id)
            if adventure.state == "archived":
                raise InvalidStateTransition("Archived adventures cannot be edited")
            movement = self._find(adventure, movement_id)
            if movement.confirmed:
                raise MovementLocked("Cannot refine a confirmed scene. Unconfirm it first.")
            self.budget.ensure_can_regenerate(adventure_id, "expansion")

            result: MovementSummary = await self._provider.refine_movement_content(
                movement.summary(), text, frame=adventure.frame,
            )

            def _apply(current: Adventure) -> Movement:
                if current.state == "archived":
                    raise InvalidStateTransition("Archived adventures cannot be edited")
                target = self._find(current, movement_id)
                if target.confirmed:
                    raise MovementLocked("Scene was confirmed while it was being refined")
                target.title = result.title
                target.description = result.description
                target.estimated_time = result.estimated_time
                target.expansion = None
                return target.model_copy()

            updated = self._storage.update_adventure(adventure_id, _apply)
            used = self._count_regeneration(adventure_id, "expansion")
            logger.info("movement refined adventure=%s movement=%s used=%d", adventure_id, movement_id, used)
            return {
                "success": True,
                "movement": updated.model_dump(mode="json"),
                "regenerations_used": used,
                "regenerations_remaining": max(0, REGENERATION_LIMITS["expansion"] - used),
            }

        return await self._run("refine_movement_content", _op)

    # ------------------------------------------------------------------
    # Confirmation and lifecycle
    # ------------------------------------------------------------------

    async def confirm_movement(self, user_id: str | None, adventure_id: str, movement_id: str) -> Result:
        async def _op() -> Result:
            uid = self._require_user(user_id)
            self._load_owned(uid, adventure_id)
            status = self.confirmations.confirm_movement(adventure_id, movement_id)
            return {"success": True, **status.model_dump()}

        return await self._run("confirm_movement", _op)

    async def unconfirm_movement(self, user_id: str | None, adventure_id: str, movement_id: str) -> Result:
        async def _op() -> Result:
            uid = self._require_user(user_id)
            self._load_owned(uid, adventure_id)
            status = self.confirmations.unconfirm_movement(adventure_id, movement_id)
            return {"success": True, **status.model_dump()}

        return await self._run("unconfirm_movement", _op)

    async def update_adventure_state(self, user_id: str | None, adventure_id: str, new_state: str) -> Result:
        async def _op() -> Result:
            uid = self._require_user(user_id)
            self._load_owned(uid, adventure_id)
            adventure = self.lifecycle.transition(adventure_id, new_state)
            return {"success": True, "adventure_id": adventure.id, "state": adventure.state}

        return await self._run("update_adventure_state", _op)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_adventure(self, user_id: str | None, adventure_id: str) -> Result:
        async def _op() -> Result:
            uid = self._require_user(user_id)
            adventure = self._load_owned(uid, adventure_id)
            return {
                "success": True,
                "adventure": adventure.model_dump(mode="json"),
                "regeneration_counts": counts_for(adventure).model_dump(),
            }

        return await self._run("get_adventure", _op)

    async def list_adventures(self, user_id: str | None) -> Result:
        async def _op() -> Result:
            uid = self._require_user(user_id)
            adventures = [
                {
                    "id": a.id,
                    "title": a.title,
                    "frame": a.frame,
                    "focus": a.focus,
                    "state": a.state,
                    "scene_count": len(a.movements),
                    "created_at": a.created_at,
                    "updated_at": a.updated_at,
                }
                for a in self._storage.list_adventures(uid)
            ]
            return {"success": True, "adventures": adventures}

        return await self._run("list_adventures", _op)

    async def get_regeneration_counts(self, user_id: str | None, adventure_id: str) -> Result:
        async def _op() -> Result:
            uid = self._require_user(user_id)
            adventure = self._load_owned(uid, adventure_id)
            return {"success": True, **counts_for(adventure).model_dump()}

        return await self._run("get_regeneration_counts", _op)

    async def get_balance(self, user_id: str | None) -> Result:
        async def _op() -> Result:
            uid = self._require_user(user_id)
            return {"success": True, "credits": self.ledger.get_balance(uid)}

        return await self._run("get_balance", _op)

    async def add_credits(self, user_id: str | None, amount: int) -> Result:
        async def _op() -> Result:
            uid = self._require_user(user_id)
            return {"success": True, "credits": self.ledger.add_credits(uid, amount)}

        return await self._run("add_credits", _op)

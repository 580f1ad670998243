"""LLM provider adapter.

The orchestrator talks to an `AdventureProvider`:

    generate_scaffold(config)                              -> ScaffoldResult
    regenerate_movement(movement, config, confirmed, ...)  -> MovementSummary
    expand_movement(movement, config, ...)                 -> SceneExpansion
    refine_movement_content(movement, instruction, ...)    -> MovementSummary

Two implementations:

  LLMAdventureProvider  renders a Handlebars prompt, calls an injected LLM
                        callable, parses the reply and validates it against
                        the pydantic schema. Transient LLM failures are retried
                        with exponential backoff; schema failures are not.
  MockAdventureProvider deterministic output, no network. Used for demos
                        (MOCK_LLM=true) and end-to-end tests.

The raw LLM reply never leaves this module: callers only ever see validated
models.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from daggergm import prompts
from daggergm.cache import ResponseCache
from daggergm.errors import LLMError, LLMSchemaValidationError, LLMTransientError
from daggergm.llm import LLM
from daggergm.models import (
    NPC,
    Adversary,
    GenerationConfig,
    MovementSummary,
    ScaffoldResult,
    SceneExpansion,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

TEMPERATURES: dict[str, float] = {
    "scaffold": 0.75,
    "combat": 0.5,
    "social": 0.9,
    "exploration": 0.8,
    "puzzle": 0.8,
}


class AdventureProvider(Protocol):
    async def generate_scaffold(self, config: GenerationConfig, *, use_cache: bool = True) -> ScaffoldResult: ...

    async def regenerate_movement(
        self,
        movement: MovementSummary,
        config: GenerationConfig,
        confirmed: list[MovementSummary],
        *,
        position: int = 1,
        total: int = 1,
    ) -> MovementSummary: ...

    async def expand_movement(
        self,
        movement: MovementSummary,
        config: GenerationConfig,
        *,
        previous: MovementSummary | None = None,
        next: MovementSummary | None = None,
        use_cache: bool = True,
    ) -> SceneExpansion: ...

    async def refine_movement_content(
        self,
        movement: MovementSummary,
        instruction: str,
        *,
        frame: str = "default",
    ) -> MovementSummary: ...


# ---------------------------------------------------------------------------
# Reply parsing
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def _extract_json(output: str) -> Any:
    """Parse the reply as JSON, tolerating a markdown code fence around it."""
    text = output.strip()
    match = _FENCE_RE.match(text)
    if match:
        text = match.group(1)
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        # Some models add a sentence before or after the object
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise LLMSchemaValidationError("LLM returned no JSON object") from None
        try:
            return json.loads(text[start:end + 1])
        except json.JSONDecodeError as e:
            raise LLMSchemaValidationError(f"LLM returned invalid JSON: {e}") from e


def _validate(model: type[M], data: Any) -> M:
    if not isinstance(data, dict):
        raise LLMSchemaValidationError(
            f"LLM reply must be a JSON object, got {type(data).__name__}"
        )
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise LLMSchemaValidationError(
            f"LLM reply failed {model.__name__} validation: {e.error_count()} error(s)"
        ) from e


# ---------------------------------------------------------------------------
# LLMAdventureProvider
# ---------------------------------------------------------------------------

class LLMAdventureProvider:
    """Production provider backed by an LLM callable.

    Args:
        llm:             Callable matching `daggergm.llm.LLM`.
        cache:           Optional response cache; None disables caching.
        max_attempts:    Total attempts for transient failures. Defaults to 3.
        backoff_seconds: First retry delay; doubles on every further retry.
        sleep:           Awaitable sleep, replaceable in tests.
    """

    def __init__(
        self,
        llm: LLM,
        cache: ResponseCache | None = None,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._llm = llm
        self._cache = cache
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff_seconds
        self._sleep = sleep

    async def _call(self, stage: str, prompt: str, temperature: float) -> str:
        """Call the LLM, retrying transient failures with exponential backoff."""
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._llm(stage, prompt, temperature=temperature)
            except LLMTransientError as e:
                if attempt >= self._max_attempts:
                    raise LLMError(
                        f"LLM backend unavailable after {attempt} attempts: {e}"
                    ) from e
                delay = self._backoff * (2 ** (attempt - 1))
                logger.warning(
                    "transient LLM error stage=%s attempt=%d/%d, retrying in %.1fs: %s",
                    stage, attempt, self._max_attempts, delay, e,
                )
                await self._sleep(delay)
        raise AssertionError("unreachable")

    async def _generate(
        self,
        *,
        stage: str,
        template_id: str,
        context: dict[str, Any],
        temperature: float,
        model: type[M],
        use_cache: bool,
        check: Callable[[M], None] | None = None,
    ) -> M:
        """Render, call, parse and validate. `check` adds rules beyond the schema."""
        cache = self._cache if use_cache else None
        if cache is not None:
            cached = cache.get(template_id, context)
            if cached is not None:
                try:
                    hit = model.model_validate(cached)
                    if check is not None:
                        check(hit)
                    return hit
                except (PydanticValidationError, LLMSchemaValidationError):
                    logger.warning("cached %s entry failed validation, ignoring", template_id)

        try:
            prompt = prompts.render_prompt(template_id, context)
        except prompts.PromptError as e:
            raise LLMError(str(e)) from e

        output = await self._call(stage, prompt, temperature)
        result = _validate(model, _extract_json(output))
        if check is not None:
            check(result)

        if cache is not None:
            cache.put(template_id, context, result.model_dump(mode="json"))
        return result

    async def generate_scaffold(self, config: GenerationConfig, *, use_cache: bool = True) -> ScaffoldResult:
        def _check_scene_count(result: ScaffoldResult) -> None:
            if len(result.movements) != config.num_scenes:
                raise LLMSchemaValidationError(
                    f"Scaffold has {len(result.movements)} scenes, expected {config.num_scenes}"
                )

        context = {
            "guidance": prompts.frame_guidance(config.frame, "scaffold"),
            "config": config.model_dump(mode="json"),
        }
        return await self._generate(
            stage="scaffold",
            template_id=prompts.SCAFFOLD,
            context=context,
            temperature=TEMPERATURES["scaffold"],
            model=ScaffoldResult,
            use_cache=use_cache,
            check=_check_scene_count,
        )

    async def regenerate_movement(
        self,
        movement: MovementSummary,
        config: GenerationConfig,
        confirmed: list[MovementSummary],
        *,
        position: int = 1,
        total: int = 1,
    ) -> MovementSummary:
        context = {
            "guidance": prompts.frame_guidance(config.frame, movement.type),
            "config": config.model_dump(mode="json"),
            "confirmed": [m.model_dump(mode="json") for m in confirmed],
            "movement": movement.model_dump(mode="json"),
            "position": position,
            "total": total,
        }
        result = await self._generate(
            stage="regenerate_movement",
            template_id=prompts.REGENERATE_MOVEMENT,
            context=context,
            temperature=TEMPERATURES.get(movement.type, 0.8),
            model=MovementSummary,
            use_cache=False,
        )
        if result.type != movement.type:
            logger.debug("regenerated movement changed type %s -> %s, keeping %s",
                         movement.type, result.type, movement.type)
            result = result.model_copy(update={"type": movement.type})
        return result

    async def expand_movement(
        self,
        movement: MovementSummary,
        config: GenerationConfig,
        *,
        previous: MovementSummary | None = None,
        next: MovementSummary | None = None,
        use_cache: bool = True,
    ) -> SceneExpansion:
        context = {
            "guidance": prompts.frame_guidance(config.frame, movement.type),
            "config": config.model_dump(mode="json"),
            "movement": movement.model_dump(mode="json"),
            "previous": previous.model_dump(mode="json") if previous else None,
            "next": next.model_dump(mode="json") if next else None,
        }
        return await self._generate(
            stage="expand_movement",
            template_id=prompts.EXPAND_MOVEMENT,
            context=context,
            temperature=TEMPERATURES.get(movement.type, 0.8),
            model=SceneExpansion,
            use_cache=use_cache,
        )

    async def refine_movement_content(
        self,
        movement: MovementSummary,
        instruction: str,
        *,
        frame: str = "default",
    ) -> MovementSummary:
        context = {
            "guidance": prompts.frame_guidance(frame, movement.type),
            "movement": movement.model_dump(mode="json"),
            "instruction": instruction,
        }
        result = await self._generate(
            stage="refine_movement",
            template_id=prompts.REFINE_MOVEMENT,
            context=context,
            temperature=TEMPERATURES.get(movement.type, 0.8),
            model=MovementSummary,
            use_cache=False,
        )
        if result.type != movement.type:
            result = result.model_copy(update={"type": movement.type})
        return result


# ---------------------------------------------------------------------------
# MockAdventureProvider
# ---------------------------------------------------------------------------

_MOCK_BASE_MOVEMENTS: list[tuple[str, str, str]] = [
    ("The Gathering Storm", "social",
     "The party meets at a crossroads inn where rumours of {motif} stir the locals."),
    ("Into the Unknown", "exploration",
     "The trail leads somewhere few return from, and signs of {motif} grow stronger."),
    ("The Heart of Danger", "combat",
     "The source of {motif} is revealed and its guardians attack."),
]

_MOCK_EXTRA_MOVEMENTS: list[tuple[str, str, str]] = [
    ("Unexpected Complications", "exploration",
     "A new path opens, and with it a twist that changes what the party knows about {motif}."),
    ("The Final Confrontation", "combat",
     "Everything comes to a head in a last stand against the power behind {motif}."),
]


def _mock_title(config: GenerationConfig) -> str:
    if config.stakes == "world":
        prefix = "The Fate of"
    elif config.stakes == "high":
        prefix = "The Crisis at"
    else:
        prefix = "The Mystery of"
    place = "the Verdant Ruins" if config.frame == "witherwild" else "the Ancient Keep"
    return f"{prefix} {place}"


class MockAdventureProvider:
    """Deterministic provider. Same input, same output, no network access."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    async def generate_scaffold(self, config: GenerationConfig, *, use_cache: bool = True) -> ScaffoldResult:
        self.calls.append("scaffold")
        motif = config.primary_motif.replace("_", " ")
        pool = _MOCK_BASE_MOVEMENTS + _MOCK_EXTRA_MOVEMENTS
        movements = [
            MovementSummary(
                title=title, type=kind,
                description=description.format(motif=motif),
                estimated_time="30-45 minutes",
            )
            for title, kind, description in pool[:config.num_scenes]
        ]
        return ScaffoldResult(
            title=_mock_title(config),
            description=(
                f"A {config.length.replace('_', ' ')} adventure for {config.party_size} "
                f"tier {config.party_tier} adventurers, centred on {motif}."
            ),
            estimated_duration=f"{config.num_scenes}-{config.num_scenes + 1} hours",
            movements=movements,
        )

    async def regenerate_movement(
        self,
        movement: MovementSummary,
        config: GenerationConfig,
        confirmed: list[MovementSummary],
        *,
        position: int = 1,
        total: int = 1,
    ) -> MovementSummary:
        self.calls.append("regenerate_movement")
        return MovementSummary(
            title=f"{movement.title} (Reimagined)",
            type=movement.type,
            description=(
                f"A new take on scene {position} of {total}, building on "
                f"{len(confirmed)} locked scene(s). {movement.description}"
            ),
            estimated_time=movement.estimated_time,
        )

    async def expand_movement(
        self,
        movement: MovementSummary,
        config: GenerationConfig,
        *,
        previous: MovementSummary | None = None,
        next: MovementSummary | None = None,
        use_cache: bool = True,
    ) -> SceneExpansion:
        self.calls.append("expand_movement")
        adversaries = []
        if movement.type == "combat":
            adversaries.append(Adversary(
                name="Thornbound Sentinel", quantity=config.party_size,
                tactics="Holds the choke point and pulls stragglers into the brambles.",
                description="A husk of bark and iron animated by old corruption.",
            ))
        return SceneExpansion(
            npcs=[NPC(
                name="Maren Ashgrove", role="quest_giver",
                description="A weathered warden who knows more than she says.",
                personality="Guarded, dry humour, fiercely loyal to the village.",
                ancestry="Human", community="Wildborne",
            )],
            adversaries=adversaries,
            descriptions=[
                f"{movement.title}: {movement.description}",
                "Moss-covered stones glow faintly where the light touches them.",
            ],
            narration=f"As you arrive, the air itself seems to hold its breath. {movement.description}",
            gm_notes=f"Let the scene run for about {movement.estimated_time}.",
        )

    async def refine_movement_content(
        self,
        movement: MovementSummary,
        instruction: str,
        *,
        frame: str = "default",
    ) -> MovementSummary:
        self.calls.append("refine_movement")
        return MovementSummary(
            title=movement.title,
            type=movement.type,
            description=f"{movement.description} (Refined: {instruction})",
            estimated_time=movement.estimated_time,
        )

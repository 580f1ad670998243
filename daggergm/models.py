"""Core domain models.

All components and storage functions operate on these types.
Pydantic is used for validation and serialisation at every data boundary:
user input (GenerationConfig), LLM output (ScaffoldResult, MovementSummary,
SceneExpansion) and the stored documents (Adventure, UserProfile).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

MovementType = Literal["combat", "exploration", "social", "puzzle"]
AdventureState = Literal["draft", "ready", "archived"]
Phase = Literal["scaffold", "expansion"]
Length = Literal["oneshot", "short_campaign", "campaign"]
Difficulty = Literal["easier", "standard", "harder"]
Stakes = Literal["low", "personal", "high", "world"]

MOVEMENT_TYPES: tuple[str, ...] = ("combat", "exploration", "social", "puzzle")


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Input configuration
# ---------------------------------------------------------------------------

class GenerationConfig(BaseModel):
    """Validated adventure generation parameters.

    Accepts snake_case, camelCase and the legacy aliases (`focus` for
    `primary_motif`, `party_level` for `party_tier`).
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    length: Length
    primary_motif: str = Field(
        min_length=1, max_length=100,
        validation_alias=AliasChoices("primary_motif", "primaryMotif", "focus"),
    )
    frame: str = Field(default="witherwild", min_length=1, max_length=50)
    party_size: int = Field(
        default=4, ge=1, le=8,
        validation_alias=AliasChoices("party_size", "partySize"),
    )
    party_tier: int = Field(
        default=1, ge=1, le=4,
        validation_alias=AliasChoices("party_tier", "partyTier", "party_level", "partyLevel"),
    )
    difficulty: Difficulty = "standard"
    stakes: Stakes = "personal"
    num_scenes: int = Field(
        default=3, ge=3, le=5,
        validation_alias=AliasChoices("num_scenes", "numScenes"),
    )

    @field_validator("primary_motif", "frame", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("frame")
    @classmethod
    def _lower_frame(cls, value: str) -> str:
        return value.lower()


# ---------------------------------------------------------------------------
# LLM output shapes
# ---------------------------------------------------------------------------

class MovementSummary(BaseModel):
    """Scaffold-level description of one scene, as returned by the LLM."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str = Field(min_length=1, max_length=200)
    type: MovementType
    description: str = Field(min_length=1, max_length=10000)
    estimated_time: str = Field(
        min_length=1,
        validation_alias=AliasChoices("estimated_time", "estimatedTime"),
    )


class ScaffoldResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str = Field(min_length=1, max_length=200)
    description: str = Field(
        min_length=1,
        validation_alias=AliasChoices("description", "summary"),
    )
    estimated_duration: str = Field(
        default="",
        validation_alias=AliasChoices("estimated_duration", "estimatedDuration"),
    )
    movements: list[MovementSummary] = Field(min_length=1)


class NPC(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    role: Literal["ally", "neutral", "antagonist", "quest_giver"] = "neutral"
    description: str = Field(min_length=1)
    personality: str = ""
    ancestry: str = ""
    community: str = ""


class Adversary(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1, le=20)
    tactics: str = ""
    description: str = ""


class SceneExpansion(BaseModel):
    """Detailed content for one scene: NPCs, adversaries, descriptions, narration."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    npcs: list[NPC] = Field(default_factory=list)
    adversaries: list[Adversary] = Field(default_factory=list)
    descriptions: list[str] = Field(min_length=1)
    narration: str | None = None
    gm_notes: str = Field(default="", validation_alias=AliasChoices("gm_notes", "gmNotes"))

    @field_validator("descriptions")
    @classmethod
    def _no_blank_descriptions(cls, value: list[str]) -> list[str]:
        if any(not d.strip() for d in value):
            raise ValueError("descriptions must not contain blank entries")
        return value


# ---------------------------------------------------------------------------
# Stored documents
# ---------------------------------------------------------------------------

class Movement(BaseModel):
    """One scene of an adventure, embedded in the adventure document."""

    id: str = Field(default_factory=new_id)
    title: str
    type: MovementType
    description: str
    estimated_time: str = ""
    order_index: int
    confirmed: bool = False
    confirmed_at: str | None = None
    expansion: SceneExpansion | None = None

    def summary(self) -> MovementSummary:
        return MovementSummary(
            title=self.title, type=self.type,
            description=self.description, estimated_time=self.estimated_time or "unknown",
        )


class Adventure(BaseModel):
    """Adventure document stored on disk. Owned by exactly one user."""

    id: str = Field(default_factory=new_id)
    user_id: str
    title: str
    description: str = ""
    frame: str
    focus: str
    state: AdventureState = "draft"
    config: GenerationConfig
    movements: list[Movement] = Field(default_factory=list)
    scaffold_regenerations_used: int = 0
    expansion_regenerations_used: int = 0
    idempotency_key: str | None = None
    created_at: str = Field(default_factory=utcnow)
    updated_at: str = Field(default_factory=utcnow)
    exported_at: str | None = None

    def find_movement(self, movement_id: str) -> Movement | None:
        for m in self.movements:
            if m.id == movement_id:
                return m
        return None


class UserProfile(BaseModel):
    id: str
    credits: int = Field(default=0, ge=0)
    total_purchased: int = 0


# ---------------------------------------------------------------------------
# Aggregates returned to callers
# ---------------------------------------------------------------------------

class ConfirmationStatus(BaseModel):
    confirmed_count: int
    total_count: int
    all_confirmed: bool


class RegenerationCounts(BaseModel):
    scaffold: int
    expansion: int
    scaffold_remaining: int
    expansion_remaining: int

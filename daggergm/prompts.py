"""Handlebars prompt rendering for the generation steps.

Each generation step has a template id (SCAFFOLD, REGENERATE_MOVEMENT,
EXPAND_MOVEMENT, REFINE_MOVEMENT). The template id is also the first half of
the response-cache fingerprint, so changing a template's wording should come
with a new id.

System guidance is chosen per frame and per call category (the scaffold, or
one of the four movement types). Unknown frames fall back to "default".

Values are inserted with triple-stash ({{{x}}}) so user text such as
"Dragon's Hollow" reaches the model unescaped.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pybars

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


SCAFFOLD = "scaffold.v1"
REGENERATE_MOVEMENT = "regenerate_movement.v1"
EXPAND_MOVEMENT = "expand_movement.v1"
REFINE_MOVEMENT = "refine_movement.v1"


# ── Frame guidance ───────────────────────────────────────

FRAME_GUIDANCE: dict[str, dict[str, str]] = {
    "witherwild": {
        "scaffold": (
            "You are an expert Daggerheart GM crafting adventures in The Witherwild, "
            "a land where ancient corruption creeps through the forests, fey bargains "
            "carry hidden prices and lost settlements are swallowed by the wild. "
            "Include at least one corruption-themed encounter, use Witherwild "
            "adversaries and hazards, and keep the language evocative and natural."
        ),
        "combat": (
            "Design combat featuring corrupted creatures, spreading brambles or toxic "
            "spores, verticality from trees and cliffs, and chances to turn nature "
            "to the party's advantage."
        ),
        "exploration": (
            "Create exploration through overgrown ruins, unpredictable fey crossings "
            "and hidden groves, with visible signs of the corruption spreading."
        ),
        "social": (
            "NPCs should be druids and rangers fighting the rot, fey with alien "
            "morality, survivors of lost settlements, or spirits with their own agendas."
        ),
        "puzzle": (
            "Puzzles draw on natural cycles, fey riddles, cleansing corrupted ground "
            "and old druidic mechanisms that grow and change."
        ),
    },
    "default": {
        "scaffold": (
            "You are an expert Daggerheart GM crafting engaging adventures. Tell a "
            "complete story, balance combat, exploration and roleplay, give players "
            "meaningful choices and build to an exciting climax."
        ),
        "combat": (
            "Design balanced combat with interesting terrain, varied enemy tactics, "
            "a moment for each party member, and clear victory conditions."
        ),
        "exploration": (
            "Create exploration that rewards curiosity, tells its story through the "
            "environment, offers more than one path and hides secrets worth finding."
        ),
        "social": (
            "Design social encounters with memorable NPCs, clear motivations, "
            "solutions beyond combat and consequences that move the story forward."
        ),
        "puzzle": (
            "Create puzzles with several valid solutions that never halt progress "
            "outright and scale with the party's capabilities."
        ),
    },
}


def frame_guidance(frame: str, category: str) -> str:
    guidance = FRAME_GUIDANCE.get(frame.lower(), FRAME_GUIDANCE["default"])
    return guidance.get(category) or guidance["scaffold"]


# ── Templates ────────────────────────────────────────────

_SETTING_BLOCK = """\
## Adventure
Frame: {{{config.frame}}}
Focus: {{{config.primary_motif}}}
Length: {{{config.length}}}
Party: {{{config.party_size}}} adventurers, tier {{{config.party_tier}}}
Difficulty: {{{config.difficulty}}}, Stakes: {{{config.stakes}}}
"""

TEMPLATES: dict[str, str] = {
    SCAFFOLD: """\
{{{guidance}}}

""" + _SETTING_BLOCK + """
Create the outline of this adventure with exactly {{{config.num_scenes}}} scenes.
Each scene has a type: combat, exploration, social or puzzle.

Return only a JSON object, no other text:
{
  "title": "<adventure title>",
  "description": "<two or three sentence summary>",
  "estimatedDuration": "<e.g. 3-4 hours>",
  "movements": [
    {"title": "<scene title>", "type": "combat|exploration|social|puzzle",
     "description": "<what happens>", "estimatedTime": "<e.g. 30-45 minutes>" }
  ]
}""",

    REGENERATE_MOVEMENT: """\
{{{guidance}}}

""" + _SETTING_BLOCK + """
{{#if confirmed}}
## Confirmed Scenes (locked)
These scenes are final. Do not change them. The new scene must stay
consistent with them and fit between them in this order:
{{#each confirmed}}
- {{{title}}} ({{{type}}}): {{{description}}}
{{/each}}

{{/if}}
## Scene to Replace
Position: scene {{{position}}} of {{{total}}}
{{{movement.title}}} ({{{movement.type}}}): {{{movement.description}}}

Write a NEW version of this scene. Keep the type {{{movement.type}}}, vary it
from the original, keep continuity with the confirmed scenes and keep the
difficulty appropriate for the party.

Return only a JSON object, no other text:
{"title": "", "type": "{{{movement.type}}}", "description": "", "estimatedTime": "" }""",

    EXPAND_MOVEMENT: """\
{{{guidance}}}

""" + _SETTING_BLOCK + """
## Scene to Expand
{{{movement.title}}} ({{{movement.type}}}): {{{movement.description}}}
{{#if previous}}Previous scene: {{{previous.title}}}
{{/if}}
{{#if next}}Next scene: {{{next.title}}}
{{/if}}

Expand this scene into playable detail for the GM.

Return only a JSON object, no other text:
{
  "npcs": [
    {"name": "", "role": "ally|neutral|antagonist|quest_giver",
     "description": "", "personality": "", "ancestry": "", "community": "" }
  ],
  "adversaries": [
    {"name": "", "quantity": 1, "tactics": "", "description": "" }
  ],
  "descriptions": ["<vivid description of the location, one per entry>"],
  "narration": "<optional read-aloud text, or null>",
  "gmNotes": "<objectives, mechanics and transitions>"
}""",

    REFINE_MOVEMENT: """\
You are an expert Daggerheart GM helping to refine adventure content.
{{{guidance}}}

## Scene
{{{movement.title}}} ({{{movement.type}}})
{{{movement.description}}}

## Instruction
{{{instruction}}}

Apply the instruction to the scene. Keep its type {{{movement.type}}}.

Return only a JSON object, no other text:
{"title": "", "type": "{{{movement.type}}}", "description": "", "estimatedTime": "" }""",
}


def render_prompt(template_id: str, context: dict[str, Any]) -> str:
    """Compile and render the template registered under `template_id`.

    Templates are cached by source string to avoid recompilation.
    """
    template_str = TEMPLATES.get(template_id)
    if template_str is None:
        raise PromptError(f"Unknown prompt template: {template_id}")
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e

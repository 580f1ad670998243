"""Tests for daggergm.provider — retry, schema validation, caching, mock provider."""

import json

import pytest

from daggergm.cache import ResponseCache
from daggergm.errors import LLMError, LLMSchemaValidationError, LLMTransientError
from daggergm.models import GenerationConfig, MovementSummary
from daggergm.provider import LLMAdventureProvider, MockAdventureProvider


# ── Helpers ──────────────────────────────────────────────


class ScriptedLLM:
    """Return canned replies in order; an Exception instance in the script is raised."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = []  # list of (stage, prompt, temperature)

    async def __call__(self, stage, prompt, *, temperature=None):
        self.calls.append((stage, prompt, temperature))
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def _scaffold_json(n=3) -> str:
    kinds = ["social", "exploration", "combat", "puzzle", "combat"]
    return json.dumps({
        "title": "The Mystery of the Verdant Ruins",
        "description": "Something stirs beneath the roots.",
        "estimatedDuration": "3-4 hours",
        "movements": [
            {"title": f"Scene {i}", "type": kinds[i], "description": f"Beat {i}",
             "estimatedTime": "30 minutes"}
            for i in range(n)
        ],
    })


def _movement_json(title="Fresh", type="combat") -> str:
    return json.dumps({
        "title": title, "type": type, "description": "New beat", "estimatedTime": "45 minutes",
    })


CONFIG = GenerationConfig(length="oneshot", primary_motif="high_fantasy")
TARGET = MovementSummary(title="Old", type="combat", description="Old beat", estimated_time="30m")


def _provider(script, **kw):
    llm = ScriptedLLM(script)
    sleep = RecordingSleep()
    return LLMAdventureProvider(llm, sleep=sleep, **kw), llm, sleep


# ── Scaffold ─────────────────────────────────────────────


async def test_scaffold_happy_path():
    provider, llm, _ = _provider([_scaffold_json()])
    result = await provider.generate_scaffold(CONFIG)
    assert result.title == "The Mystery of the Verdant Ruins"
    assert [m.type for m in result.movements] == ["social", "exploration", "combat"]
    stage, prompt, temperature = llm.calls[0]
    assert stage == "scaffold"
    assert temperature == 0.75
    assert "high_fantasy" in prompt


async def test_scaffold_accepts_code_fence_and_chatter():
    reply = "Here you go!\n```json\n" + _scaffold_json() + "\n```"
    provider, _, _ = _provider([reply])
    result = await provider.generate_scaffold(CONFIG)
    assert len(result.movements) == 3


async def test_scaffold_wrong_scene_count_is_schema_error():
    provider, _, _ = _provider([_scaffold_json(n=4)])
    with pytest.raises(LLMSchemaValidationError, match="expected 3"):
        await provider.generate_scaffold(CONFIG)


# ── Retry policy ─────────────────────────────────────────


async def test_transient_errors_retried_with_backoff():
    provider, llm, sleep = _provider([
        LLMTransientError("HTTP 503"),
        LLMTransientError("timed out"),
        _scaffold_json(),
    ])
    result = await provider.generate_scaffold(CONFIG)
    assert len(result.movements) == 3
    assert len(llm.calls) == 3
    assert sleep.delays == [1.0, 2.0]


async def test_transient_errors_escalate_after_max_attempts():
    provider, llm, _ = _provider([LLMTransientError("down")] * 3)
    with pytest.raises(LLMError, match="after 3 attempts") as exc:
        await provider.generate_scaffold(CONFIG)
    assert not isinstance(exc.value, LLMTransientError)
    assert len(llm.calls) == 3


async def test_non_transient_error_not_retried():
    provider, llm, sleep = _provider([LLMError("HTTP 401")])
    with pytest.raises(LLMError, match="401"):
        await provider.generate_scaffold(CONFIG)
    assert len(llm.calls) == 1
    assert sleep.delays == []


@pytest.mark.parametrize("reply", [
    "not json at all",
    "[1, 2, 3]",
    json.dumps({"title": "T", "description": "D", "movements": [{"title": "x"}]}),
])
async def test_schema_failure_not_retried(reply):
    provider, llm, _ = _provider([reply])
    with pytest.raises(LLMSchemaValidationError):
        await provider.generate_scaffold(CONFIG)
    assert len(llm.calls) == 1


# ── Caching ──────────────────────────────────────────────


async def test_scaffold_cache_hit_skips_llm(tmp_path):
    cache = ResponseCache(tmp_path)
    provider, llm, _ = _provider([_scaffold_json()], cache=cache)
    first = await provider.generate_scaffold(CONFIG)
    second = await provider.generate_scaffold(CONFIG)
    assert first == second
    assert len(llm.calls) == 1


async def test_invalid_reply_is_not_cached(tmp_path):
    cache = ResponseCache(tmp_path)
    provider, llm, _ = _provider(["garbage", _scaffold_json()], cache=cache)
    with pytest.raises(LLMSchemaValidationError):
        await provider.generate_scaffold(CONFIG)
    await provider.generate_scaffold(CONFIG)
    assert len(llm.calls) == 2


async def test_regeneration_bypasses_cache(tmp_path):
    cache = ResponseCache(tmp_path)
    provider, llm, _ = _provider([_movement_json("A"), _movement_json("B")], cache=cache)
    first = await provider.regenerate_movement(TARGET, CONFIG, [])
    second = await provider.regenerate_movement(TARGET, CONFIG, [])
    assert (first.title, second.title) == ("A", "B")
    assert len(llm.calls) == 2


async def test_unusable_cache_dir_falls_through_to_llm(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    provider, llm, _ = _provider([_scaffold_json()], cache=ResponseCache(blocker))
    result = await provider.generate_scaffold(CONFIG)
    assert len(result.movements) == 3
    assert len(llm.calls) == 1


def _rewrite_only_entry(cache_dir, mutate):
    (entry,) = list(cache_dir.glob("*.json"))
    doc = json.loads(entry.read_text())
    mutate(doc)
    entry.write_text(json.dumps(doc))


async def test_corrupt_cache_entry_falls_through_to_llm(tmp_path):
    provider, llm, _ = _provider([_scaffold_json(), _scaffold_json()], cache=ResponseCache(tmp_path))
    await provider.generate_scaffold(CONFIG)
    (entry,) = list(tmp_path.glob("*.json"))
    entry.write_text("{truncated")
    result = await provider.generate_scaffold(CONFIG)
    assert len(result.movements) == 3
    assert len(llm.calls) == 2


async def test_schema_invalid_cache_entry_is_ignored(tmp_path):
    provider, llm, _ = _provider([_scaffold_json(), _scaffold_json()], cache=ResponseCache(tmp_path))
    await provider.generate_scaffold(CONFIG)
    _rewrite_only_entry(tmp_path, lambda doc: doc.update(payload={"title": "No scenes"}))
    result = await provider.generate_scaffold(CONFIG)
    assert len(result.movements) == 3
    assert len(llm.calls) == 2


async def test_cached_scaffold_with_wrong_scene_count_is_ignored(tmp_path):
    provider, llm, _ = _provider([_scaffold_json(), _scaffold_json()], cache=ResponseCache(tmp_path))
    await provider.generate_scaffold(CONFIG)
    _rewrite_only_entry(
        tmp_path, lambda doc: doc["payload"]["movements"].append(doc["payload"]["movements"][0])
    )
    result = await provider.generate_scaffold(CONFIG)
    assert len(result.movements) == 3
    assert len(llm.calls) == 2


# ── Movement calls ───────────────────────────────────────


async def test_regenerate_passes_confirmed_context_and_keeps_type():
    locked = [MovementSummary(title="Locked One", type="social", description="Inn", estimated_time="1h")]
    provider, llm, _ = _provider([_movement_json(type="puzzle")])
    result = await provider.regenerate_movement(TARGET, CONFIG, locked, position=2, total=3)
    assert result.type == "combat"
    stage, prompt, temperature = llm.calls[0]
    assert stage == "regenerate_movement"
    assert "Locked One" in prompt
    assert temperature == 0.5


async def test_expand_movement_four_parts():
    reply = json.dumps({
        "npcs": [{"name": "Ila", "role": "ally", "description": "Scout"}],
        "adversaries": [{"name": "Wolf", "quantity": 2}],
        "descriptions": ["Dark woods"],
        "narration": "Howls echo.",
        "gmNotes": "Wolves flee.",
    })
    provider, llm, _ = _provider([reply])
    result = await provider.expand_movement(TARGET, CONFIG)
    assert result.adversaries[0].name == "Wolf"
    assert llm.calls[0][0] == "expand_movement"


async def test_expand_movement_schema_failure():
    provider, _, _ = _provider([json.dumps({"npcs": [], "descriptions": []})])
    with pytest.raises(LLMSchemaValidationError):
        await provider.expand_movement(TARGET, CONFIG)


async def test_refine_uses_instruction():
    provider, llm, _ = _provider([_movement_json(title="Refined")])
    result = await provider.refine_movement_content(TARGET, "make it spookier")
    assert result.title == "Refined"
    assert "make it spookier" in llm.calls[0][1]


# ── Mock provider ────────────────────────────────────────


async def test_mock_scaffold_is_deterministic():
    mock = MockAdventureProvider()
    cfg = GenerationConfig(length="oneshot", primary_motif="undead", stakes="world", num_scenes=5)
    a = await mock.generate_scaffold(cfg)
    b = await mock.generate_scaffold(cfg)
    assert a == b
    assert a.title == "The Fate of the Verdant Ruins"
    assert [m.title for m in a.movements] == [
        "The Gathering Storm", "Into the Unknown", "The Heart of Danger",
        "Unexpected Complications", "The Final Confrontation",
    ]


async def test_mock_default_frame_title():
    mock = MockAdventureProvider()
    cfg = GenerationConfig(length="oneshot", primary_motif="x", frame="default", stakes="high")
    assert (await mock.generate_scaffold(cfg)).title == "The Crisis at the Ancient Keep"


async def test_mock_expansion_validates():
    mock = MockAdventureProvider()
    exp = await mock.expand_movement(TARGET, CONFIG)
    assert exp.descriptions
    assert exp.adversaries[0].quantity == CONFIG.party_size


async def test_wrong_scene_count_is_not_cached(tmp_path):
    cache = ResponseCache(tmp_path)
    provider, llm, _ = _provider([_scaffold_json(n=4), _scaffold_json()], cache=cache)
    with pytest.raises(LLMSchemaValidationError):
        await provider.generate_scaffold(CONFIG)
    result = await provider.generate_scaffold(CONFIG)
    assert len(result.movements) == 3
    assert len(llm.calls) == 2

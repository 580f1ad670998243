"""Tests for daggergm.cache — fingerprinting and best-effort JSON cache."""

import json
from unittest.mock import patch

from daggergm.cache import ResponseCache, fingerprint


def test_fingerprint_ignores_key_order():
    assert fingerprint("t.v1", {"a": 1, "b": {"x": 2, "y": 3}}) == \
        fingerprint("t.v1", {"b": {"y": 3, "x": 2}, "a": 1})


def test_fingerprint_depends_on_template_and_params():
    base = fingerprint("t.v1", {"a": 1})
    assert fingerprint("t.v2", {"a": 1}) != base
    assert fingerprint("t.v1", {"a": 2}) != base


def test_miss_then_hit(tmp_path):
    cache = ResponseCache(tmp_path)
    assert cache.get("t.v1", {"a": 1}) is None
    cache.put("t.v1", {"a": 1}, {"title": "X"})
    assert cache.get("t.v1", {"a": 1}) == {"title": "X"}


def test_hit_updates_access_count(tmp_path):
    cache = ResponseCache(tmp_path)
    cache.put("t.v1", {"a": 1}, {"title": "X"})
    cache.get("t.v1", {"a": 1})
    cache.get("t.v1", {"a": 1})
    doc = json.loads((tmp_path / f"{fingerprint('t.v1', {'a': 1})}.json").read_text())
    assert doc["access_count"] == 2
    assert doc["template_id"] == "t.v1"
    assert doc["accessed_at"] >= doc["created_at"]


def test_corrupt_entry_is_a_miss(tmp_path):
    cache = ResponseCache(tmp_path)
    (tmp_path / f"{fingerprint('t.v1', {})}.json").write_text("{not json")
    assert cache.get("t.v1", {}) is None


def test_write_failure_is_swallowed(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    # The cache directory is a regular file, so every write fails
    cache = ResponseCache(blocker)
    cache.put("t.v1", {}, {"title": "X"})
    assert cache.get("t.v1", {}) is None


def test_hit_survives_access_count_write_failure(tmp_path):
    cache = ResponseCache(tmp_path)
    cache.put("t.v1", {"a": 1}, {"title": "X"})
    with patch.object(ResponseCache, "_write", side_effect=OSError("read-only file system")):
        assert cache.get("t.v1", {"a": 1}) == {"title": "X"}

"""
Tests for the file cache and progress reporter.

What we test
------------
1. Values round-trip per kind, and kinds are isolated under one key.
2. Missing, expired and corrupt entries fall back to the default.
3. Kind/value mismatches are rejected.
4. clear() removes every entry.
5. Progress is clamped to [0, 1] and never goes backwards.
"""

from __future__ import annotations

import json
import time

import pytest

from beatmap_recs.utils import Cache, CacheKind, ProgressReporter


@pytest.fixture
def cache(tmp_path) -> Cache:
    return Cache(cache_dir=tmp_path / "cache")


# ── Cache ─────────────────────────────────────────────────────────────────────

class TestCache:
    def test_missing_key_returns_default(self, cache):
        assert cache.retrieve_or_default("nope", default=[1]) == [1]
        assert cache.retrieve_or_default("nope", kind=CacheKind.TEXT) is None

    def test_kinds_are_separate(self, cache):
        cache.store("Key", "hello", kind=CacheKind.TEXT)
        cache.store("Key", b"\x00\x01", kind=CacheKind.BINARY)
        cache.store("Key", {"a": [1, 2]}, kind=CacheKind.STRUCTURED)

        assert cache.retrieve_or_default("Key", kind=CacheKind.TEXT) == "hello"
        assert cache.retrieve_or_default("Key", kind=CacheKind.BINARY) == b"\x00\x01"
        assert cache.retrieve_or_default("Key") == {"a": [1, 2]}
        assert sorted(p.name for p in cache.cache_dir.iterdir()) == [
            "Bin_Key.ch", "Json_Key.ch", "Text_Key.ch",
        ]

    def test_overwrite(self, cache):
        cache.store("Key", [1])
        cache.store("Key", [2])
        assert cache.retrieve_or_default("Key") == [2]

    def test_type_mismatch(self, cache):
        with pytest.raises(TypeError):
            cache.store("Key", b"bytes", kind=CacheKind.TEXT)
        with pytest.raises(TypeError):
            cache.store("Key", "text", kind=CacheKind.BINARY)

    def test_corrupt_entry_returns_default(self, cache):
        cache.store("Key", {"ok": True})
        (cache.cache_dir / "Json_Key.ch").write_text("{not json", encoding="utf-8")
        assert cache.retrieve_or_default("Key", default="fallback") == "fallback"

    def test_expired_structured_entry(self, tmp_path):
        cache = Cache(cache_dir=tmp_path, ttl_hours=1)
        path = tmp_path / "Json_Key.ch"
        path.write_text(json.dumps({"timestamp": time.time() - 7200, "data": 1}), encoding="utf-8")

        assert cache.retrieve_or_default("Key", default=0) == 0
        assert not path.exists()

    def test_fresh_entry_within_ttl(self, tmp_path):
        cache = Cache(cache_dir=tmp_path, ttl_hours=1)
        cache.store("Key", "v", kind=CacheKind.TEXT)
        assert cache.retrieve_or_default("Key", kind=CacheKind.TEXT) == "v"

    def test_clear(self, cache):
        cache.store("A", 1)
        cache.store("B", "b", kind=CacheKind.TEXT)
        assert cache.clear() == 2
        assert cache.retrieve_or_default("A") is None
        assert Cache(cache_dir=cache.cache_dir / "never").clear() == 0


# ── Progress ──────────────────────────────────────────────────────────────────

class TestProgressReporter:
    def test_never_goes_backwards(self):
        seen = []
        reporter = ProgressReporter(seen.append)
        for fraction in (0.1, 0.5, 0.3, 0.5, 0.9):
            reporter.report(fraction)
        assert seen == [0.1, 0.5, 0.5, 0.9]

    def test_clamped(self):
        seen = []
        reporter = ProgressReporter(seen.append)
        reporter.report(-1)
        reporter.report(2)
        assert seen == [0.0, 1.0]

    def test_report_step(self):
        seen = []
        reporter = ProgressReporter(seen.append)
        reporter.report_step(0.3, 0.9, 1, 2)
        reporter.report_step(0.3, 0.9, 2, 2)
        assert seen == pytest.approx([0.6, 0.9])

    def test_empty_phase_jumps_to_end(self):
        reporter = ProgressReporter()
        reporter.report_step(0.15, 0.3, 0, 0)
        assert reporter.current == pytest.approx(0.3)

"""Tests for the markdown-backed id-pattern cache."""

from __future__ import annotations

from pathlib import Path

import pytest

from prd_refinery.agent.pattern_cache import CACHE_HEADER, PatternCache


def test_record_is_in_memory_until_persisted(tmp_path: Path) -> None:
    path = tmp_path / "cache" / "id-patterns.md"
    cache = PatternCache.load(path)

    cache.record("TASK-{id}", "Prefix task ids with TASK-")
    cache.record("TASK-{id}", "Prefix task ids with TASK-")
    cache.record("{id}", "Bare ids")

    assert not path.exists()
    assert cache.persist() == path
    text = path.read_text(encoding="utf-8")
    assert text.startswith(CACHE_HEADER)
    assert "- **Occurrences**: 2" in text


def test_load_restores_counts_and_ordering(tmp_path: Path) -> None:
    path = tmp_path / "id-patterns.md"
    cache = PatternCache(path)
    cache.record("{id}", "Bare ids")
    for _ in range(3):
        cache.record("REQ-{id}", "Requirement ids")
    cache.persist()

    reloaded = PatternCache.load(path)
    reloaded.record("{id}", "Bare ids")

    assert [(entry.name, entry.occurrences) for entry in reloaded.entries()] == [
        ("REQ-{id}", 3),
        ("{id}", 2),
    ]
    most_common = reloaded.most_common()
    assert most_common is not None
    assert most_common.guidance == "Requirement ids"


def test_empty_cache_and_blank_patterns(tmp_path: Path) -> None:
    cache = PatternCache.load(tmp_path / "missing.md")

    assert cache.most_common() is None
    assert cache.entries() == []
    with pytest.raises(ValueError, match="non-empty"):
        cache.record("  ", "nothing")

"""Tests for YAML configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from prd_refinery.agent.config import HOME_ENV, config_from_dict, load_config, resolve_home


def test_defaults_without_config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(HOME_ENV, raising=False)

    config = load_config()

    assert config.spec_kit.auto_answer_threshold == 0.85
    assert config.refinement.max_iterations == 5
    assert not config.refinement.auto_approve
    assert config.paths.home == tmp_path / ".prd-refinery"
    assert config.paths.conversations_path == tmp_path / ".prd-refinery" / "conversations"


def test_load_config_reads_yaml(tmp_path: Path) -> None:
    path = tmp_path / "prd-refinery.yml"
    path.write_text(
        "\n".join(
            [
                "spec_kit:",
                "  auto_answer_threshold: 0.6",
                "  skip_if_high_confidence: false",
                "refinement:",
                "  max_iterations: 3",
                "  auto_approve: true",
                "  strict: true",
                "testing:",
                "  directory: spec",
                "  runner: playwright",
                f"paths:\n  home: {tmp_path / 'state'}",
            ]
        ),
        encoding="utf-8",
    )

    config = load_config(path)

    gate = config.spec_kit.to_gate_config()
    assert gate.auto_answer_threshold == 0.6
    assert not gate.skip_if_high_confidence
    assert config.refinement.max_iterations == 3
    assert config.refinement.strict
    testing = config.testing.to_testing_config()
    assert (testing.directory, testing.framework, testing.runner) == (
        "spec",
        "pytest",
        "playwright",
    )
    assert config.paths.journal_path == tmp_path / "state" / "generation-journal.jsonl"


def test_home_comes_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(HOME_ENV, str(tmp_path / "home"))

    assert resolve_home() == tmp_path / "home"
    assert config_from_dict({}).paths.pattern_cache_path == tmp_path / "home" / "id-patterns.md"


@pytest.mark.parametrize(
    "data, message",
    [
        ({"spec_kit": {"auto_answer_threshold": 1.5}}, "between 0 and 1"),
        ({"refinement": {"max_iterations": 0}}, "greater than zero"),
        ({"refinement": {"auto_approve": "yes"}}, "true or false"),
        ({"testing": {"runner": 3}}, "must be a string"),
        ({"refinement": ["bad"]}, "must be a mapping"),
    ],
)
def test_invalid_values_are_rejected(data: dict[str, object], message: str) -> None:
    with pytest.raises(ValueError, match=message):
        config_from_dict(data, home=Path("state"))


def test_missing_or_malformed_file(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="not found"):
        load_config(tmp_path / "absent.yml")
    broken = tmp_path / "broken.yml"
    broken.write_text("refinement: [unclosed", encoding="utf-8")
    with pytest.raises(ValueError, match="not valid YAML"):
        load_config(broken)

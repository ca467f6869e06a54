"""YAML configuration for refinement sessions."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from prd_refinery.agent.config_validation import require_positive_int, require_unit_interval
from prd_refinery.agent.confidence_gate import DEFAULT_AUTO_ANSWER_THRESHOLD, AutoAnswerConfig
from prd_refinery.agent.models import TestingConfig

CONFIG_FILENAME = "prd-refinery.yml"
HOME_ENV = "PRD_REFINERY_HOME"
DEFAULT_HOME = Path(".prd-refinery")


def resolve_home(cwd: Path | None = None) -> Path:
    """Resolve the state directory from the environment or the working directory."""
    env_value = os.environ.get(HOME_ENV)
    if env_value:
        return Path(env_value).expanduser()
    return (cwd or Path.cwd()) / DEFAULT_HOME


@dataclass(frozen=True)
class SpecKitSettings:
    """Confidence gate settings."""

    auto_answer_threshold: float = DEFAULT_AUTO_ANSWER_THRESHOLD
    skip_if_high_confidence: bool = True

    def to_gate_config(self) -> AutoAnswerConfig:
        """Return the equivalent confidence gate configuration."""
        return AutoAnswerConfig(
            auto_answer_threshold=self.auto_answer_threshold,
            skip_if_high_confidence=self.skip_if_high_confidence,
        )


@dataclass(frozen=True)
class RefinementSettings:
    """Refinement loop settings."""

    max_iterations: int = 5
    auto_approve: bool = False
    strict: bool = False
    ask_pre_phase_questions: bool = True
    ask_mid_phase_questions: bool = True
    ask_post_phase_questions: bool = True
    show_codebase_insights: bool = True


@dataclass(frozen=True)
class TestingDefaults:
    """Testing descriptor values used by the testing-config fixer."""

    __test__ = False

    directory: str = "tests"
    framework: str = "pytest"
    runner: str = "pytest"
    command: str = "pytest -q"

    def to_testing_config(self) -> TestingConfig:
        """Return a fresh testing descriptor carrying these defaults."""
        return TestingConfig(
            directory=self.directory,
            framework=self.framework,
            runner=self.runner,
            command=self.command,
        )


@dataclass(frozen=True)
class PathSettings:
    """Filesystem locations for persisted state, relative to the state directory."""

    home: Path = field(default_factory=resolve_home)
    conversations_dir: str = "conversations"
    journal_file: str = "generation-journal.jsonl"
    pattern_cache_file: str = "id-patterns.md"

    @property
    def conversations_path(self) -> Path:
        """Return the conversation store directory."""
        return self.home / self.conversations_dir

    @property
    def journal_path(self) -> Path:
        """Return the generation journal file."""
        return self.home / self.journal_file

    @property
    def pattern_cache_path(self) -> Path:
        """Return the id-pattern cache file."""
        return self.home / self.pattern_cache_file


@dataclass(frozen=True)
class RefineryConfig:
    """Top-level configuration."""

    spec_kit: SpecKitSettings = field(default_factory=SpecKitSettings)
    refinement: RefinementSettings = field(default_factory=RefinementSettings)
    testing: TestingDefaults = field(default_factory=TestingDefaults)
    paths: PathSettings = field(default_factory=PathSettings)


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{name}' must be a mapping.")
    return value


def _bool(section: dict[str, Any], key: str, default: bool, section_name: str) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"{section_name}.{key} must be true or false.")
    return value


def _string(section: dict[str, Any], key: str, default: str, section_name: str) -> str:
    value = section.get(key, default)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{section_name}.{key} must be a string.")
    return value.strip()


def config_from_dict(data: dict[str, Any], *, home: Path | None = None) -> RefineryConfig:
    """Build and validate configuration from a parsed mapping."""
    spec_kit = _section(data, "spec_kit")
    refinement = _section(data, "refinement")
    testing = _section(data, "testing")
    paths = _section(data, "paths")

    threshold = require_unit_interval(
        spec_kit.get("auto_answer_threshold", DEFAULT_AUTO_ANSWER_THRESHOLD),
        "spec_kit.auto_answer_threshold",
    )
    max_iterations = require_positive_int(
        refinement.get("max_iterations", 5), "refinement.max_iterations"
    )
    resolved_home = home or resolve_home()
    if paths.get("home"):
        resolved_home = Path(str(paths["home"])).expanduser()

    return RefineryConfig(
        spec_kit=SpecKitSettings(
            auto_answer_threshold=threshold,
            skip_if_high_confidence=_bool(
                spec_kit, "skip_if_high_confidence", True, "spec_kit"
            ),
        ),
        refinement=RefinementSettings(
            max_iterations=max_iterations,
            auto_approve=_bool(refinement, "auto_approve", False, "refinement"),
            strict=_bool(refinement, "strict", False, "refinement"),
            ask_pre_phase_questions=_bool(
                refinement, "ask_pre_phase_questions", True, "refinement"
            ),
            ask_mid_phase_questions=_bool(
                refinement, "ask_mid_phase_questions", True, "refinement"
            ),
            ask_post_phase_questions=_bool(
                refinement, "ask_post_phase_questions", True, "refinement"
            ),
            show_codebase_insights=_bool(
                refinement, "show_codebase_insights", True, "refinement"
            ),
        ),
        testing=TestingDefaults(
            directory=_string(testing, "directory", "tests", "testing"),
            framework=_string(testing, "framework", "pytest", "testing"),
            runner=_string(testing, "runner", "pytest", "testing"),
            command=_string(testing, "command", "pytest -q", "testing"),
        ),
        paths=PathSettings(
            home=resolved_home,
            conversations_dir=_string(paths, "conversations_dir", "conversations", "paths"),
            journal_file=_string(paths, "journal_file", "generation-journal.jsonl", "paths"),
            pattern_cache_file=_string(paths, "pattern_cache_file", "id-patterns.md", "paths"),
        ),
    )


def load_config(path: Path | None = None, *, home: Path | None = None) -> RefineryConfig:
    """Load configuration from YAML; a missing default file yields defaults."""
    if path is None:
        candidate = Path.cwd() / CONFIG_FILENAME
        if not candidate.exists():
            return config_from_dict({}, home=home)
        path = candidate
    if not path.exists():
        raise ValueError(f"Config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"Config file is not valid YAML: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Config file root must be a mapping.")
    return config_from_dict(data, home=home)

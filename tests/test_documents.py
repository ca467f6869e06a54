"""Tests for PRD loading and PRD set writing."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from prd_refinery.agent.documents import (
    PrdSetWriter,
    discover_documents,
    load_document,
    load_documents,
    split_front_matter,
)
from prd_refinery.agent.models import PrdDocument

MARKDOWN_PRD = """---
prd:
  id: checkout
  title: Checkout
  version: 1.2.0
requirements:
  idPattern: "CHK-{id}"
  phases:
    - id: 1
      name: Cart
      tasks:
        - id: CHK-1
          title: Add items
          description: Add items to the cart.
          testStrategy: unit
          validationChecklist: [items persisted]
    - id: 2
      name: Payment
      dependsOn: [1]
      tasks:
        - title: Charge card
testing:
  directory: tests
  runner: pytest
relationships:
  dependsOn:
    - prd: catalog
config:
  logs: {level: debug}
---

# Checkout

Let shoppers pay.
"""


def test_load_markdown_front_matter(tmp_path: Path) -> None:
    path = tmp_path / "checkout.md"
    path.write_text(MARKDOWN_PRD, encoding="utf-8")

    document = load_document(path)

    assert document.prd_id == "checkout"
    assert document.id_pattern == "CHK-{id}"
    assert document.phases[1].depends_on == [1]
    assert document.phases[1].tasks[0].task_id == "2.1"
    assert document.phases[0].tasks[0].validation_checklist == ["items persisted"]
    assert document.declared_dependencies() == ["catalog"]
    assert document.config_overlay == {"logs": {"level": "debug"}}
    assert document.body.startswith("# Checkout")


def test_missing_version_defaults(tmp_path: Path) -> None:
    path = tmp_path / "prd.json"
    path.write_text(json.dumps({"prd": {"id": "x"}, "phases": []}), encoding="utf-8")

    assert load_document(path).version == "1.0.0"


@pytest.mark.parametrize(
    "name, content, message",
    [
        ("a.txt", "x", "Unsupported PRD file type"),
        ("b.md", "---\nprd: [\n---\n", "not valid YAML"),
        ("c.md", "---\nprd: {}\n", "not terminated"),
        ("d.json", "[1]", "root must be a mapping"),
    ],
)
def test_load_document_errors(tmp_path: Path, name: str, content: str, message: str) -> None:
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ValueError, match=message):
        load_document(path)


def test_plain_markdown_has_no_front_matter() -> None:
    assert split_front_matter("# Title\n") == ({}, "# Title\n")


def test_writer_round_trips_documents(tmp_path: Path, executable_document: PrdDocument) -> None:
    writer = PrdSetWriter(tmp_path / "set")

    path = writer.write(executable_document)
    reloaded = load_document(path)

    assert path == tmp_path / "set" / "billing-export" / "index.md"
    assert reloaded.to_dict() == executable_document.to_dict()
    assert "# Billing Export" in path.read_text(encoding="utf-8")


def test_discover_documents_skips_hidden_and_unsupported(tmp_path: Path) -> None:
    (tmp_path / "a").mkdir()
    (tmp_path / "a" / "index.md").write_text(MARKDOWN_PRD, encoding="utf-8")
    (tmp_path / ".cache").mkdir()
    (tmp_path / ".cache" / "old.md").write_text(MARKDOWN_PRD, encoding="utf-8")
    (tmp_path / "notes.txt").write_text("ignore", encoding="utf-8")

    assert discover_documents(tmp_path) == [tmp_path / "a" / "index.md"]
    assert [document.prd_id for document in load_documents(tmp_path)] == ["checkout"]
    with pytest.raises(ValueError, match="not found"):
        discover_documents(tmp_path / "missing")

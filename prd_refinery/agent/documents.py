"""Loading PRD documents from disk and writing PRD sets back."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from prd_refinery.agent.autofix import slugify
from prd_refinery.agent.models import PrdDocument

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES: frozenset[str] = frozenset({".md", ".markdown", ".yml", ".yaml", ".json"})
FRONT_MATTER_DELIMITER = "---"


def split_front_matter(text: str) -> tuple[dict[str, Any], str]:
    """Split markdown into parsed YAML front matter and the remaining body."""
    lines = text.splitlines()
    if not lines or lines[0].strip() != FRONT_MATTER_DELIMITER:
        return {}, text
    for index in range(1, len(lines)):
        if lines[index].strip() == FRONT_MATTER_DELIMITER:
            raw = "\n".join(lines[1:index])
            body = "\n".join(lines[index + 1 :]).lstrip("\n")
            try:
                data = yaml.safe_load(raw) or {}
            except yaml.YAMLError as exc:
                raise ValueError(f"Front matter is not valid YAML: {exc}") from exc
            if not isinstance(data, dict):
                raise ValueError("Front matter must be a mapping.")
            return data, body
    raise ValueError("Front matter is not terminated by '---'.")


def load_document(path: Path) -> PrdDocument:
    """Parse a PRD from markdown front matter, YAML, or JSON."""
    if not path.is_file():
        raise ValueError(f"PRD file not found: {path}")
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ValueError(f"Unsupported PRD file type: {path.suffix or '<none>'}")
    text = path.read_text(encoding="utf-8")
    body = ""
    if suffix in {".md", ".markdown"}:
        data, body = split_front_matter(text)
    elif suffix == ".json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"PRD file is not valid JSON: {exc}") from exc
    else:
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"PRD file is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"PRD file root must be a mapping: {path}")
    document = PrdDocument.from_dict(data, body=body)
    logger.debug("Loaded %s from %s", document.prd_id or "<unnamed>", path)
    return document


def discover_documents(root: Path) -> list[Path]:
    """Return PRD files under root, or root itself when it is a file."""
    if root.is_file():
        return [root]
    if not root.is_dir():
        raise ValueError(f"PRD path not found: {root}")
    return sorted(
        path
        for path in root.rglob("*")
        if path.is_file()
        and path.suffix.lower() in SUPPORTED_SUFFIXES
        and not any(part.startswith(".") for part in path.relative_to(root).parts)
    )


def load_documents(root: Path) -> list[PrdDocument]:
    """Load every PRD under root."""
    return [load_document(path) for path in discover_documents(root)]


def render_document(document: PrdDocument) -> str:
    """Serialize a document to markdown with YAML front matter."""
    front_matter = yaml.safe_dump(document.to_dict(), sort_keys=False, allow_unicode=True)
    body = document.body.strip() or f"# {document.title or document.prd_id}\n"
    if document.description and not document.body.strip():
        body += f"\n{document.description}\n"
    return f"{FRONT_MATTER_DELIMITER}\n{front_matter}{FRONT_MATTER_DELIMITER}\n\n{body.rstrip()}\n"


class PrdSetWriter:
    """Write documents to ``<output>/<prd_id>/index.md``."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = output_dir

    def path_for(self, document: PrdDocument) -> Path:
        """Return the target path for document."""
        folder = slugify(document.prd_id) or "untitled-prd"
        return self.output_dir / folder / "index.md"

    def write(self, document: PrdDocument) -> Path:
        """Serialize document and return the written path."""
        target = self.path_for(document)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(render_document(document), encoding="utf-8")
        logger.info("Wrote %s", target)
        return target

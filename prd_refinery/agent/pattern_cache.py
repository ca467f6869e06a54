"""Id-pattern cache persisted as a markdown document.

The cache is an explicit load -> mutate -> persist cycle: ``load`` reads the
markdown file, ``record`` only touches memory, and ``persist`` writes the file.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from prd_refinery.agent.models import utc_now

logger = logging.getLogger(__name__)

CACHE_HEADER = "# Learned ID Patterns (Auto-Generated)"
_OCCURRENCES_PATTERN = re.compile(r"\*\*Occurrences\*\*:\s*(\d+)")
_LAST_SEEN_PATTERN = re.compile(r"\*\*Last seen\*\*:\s*(\S+)")


@dataclass
class CachedPattern:
    """A task id pattern observed while fixing documents."""

    name: str
    guidance: str
    occurrences: int
    last_seen: str


class PatternCache:
    """In-memory id-pattern statistics backed by a markdown file."""

    def __init__(self, path: Path, entries: dict[str, CachedPattern] | None = None) -> None:
        self.path = path
        self._entries: dict[str, CachedPattern] = dict(entries or {})

    @classmethod
    def load(cls, path: Path) -> PatternCache:
        """Load cached patterns from markdown, returning an empty cache when absent."""
        if not path.exists():
            return cls(path)
        entries: dict[str, CachedPattern] = {}
        content = path.read_text(encoding="utf-8")
        for block in re.split(r"^## ", content, flags=re.MULTILINE)[1:]:
            lines = block.splitlines()
            name = lines[0].strip() if lines else ""
            if not name:
                continue
            guidance = next(
                (line.strip() for line in lines[1:] if line.strip() and not line.startswith("-")),
                "",
            )
            occurrences = _OCCURRENCES_PATTERN.search(block)
            last_seen = _LAST_SEEN_PATTERN.search(block)
            entries[name] = CachedPattern(
                name=name,
                guidance=guidance,
                occurrences=int(occurrences.group(1)) if occurrences else 0,
                last_seen=last_seen.group(1) if last_seen else utc_now(),
            )
        logger.debug("Loaded %d id patterns from %s", len(entries), path)
        return cls(path, entries)

    def record(self, pattern: str, guidance: str) -> CachedPattern:
        """Count one more observation of pattern."""
        if not pattern.strip():
            raise ValueError("pattern must be non-empty.")
        now = utc_now()
        entry = self._entries.get(pattern)
        if entry is None:
            entry = CachedPattern(name=pattern, guidance=guidance, occurrences=1, last_seen=now)
            self._entries[pattern] = entry
        else:
            entry.occurrences += 1
            entry.last_seen = now
        return entry

    def most_common(self) -> CachedPattern | None:
        """Return the most frequently observed pattern, if any."""
        if not self._entries:
            return None
        return max(self._entries.values(), key=lambda item: item.occurrences)

    def entries(self) -> list[CachedPattern]:
        """Return cached patterns ordered by occurrences, most frequent first."""
        return sorted(self._entries.values(), key=lambda item: (-item.occurrences, item.name))

    def persist(self) -> Path:
        """Write the cache to its markdown file and return the path."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        blocks = [
            f"## {entry.name}\n\n{entry.guidance}\n\n"
            f"- **Occurrences**: {entry.occurrences}\n"
            f"- **Last seen**: {entry.last_seen}\n"
            for entry in self.entries()
        ]
        content = (
            f"{CACHE_HEADER}\n\nTask id patterns detected while fixing PRDs.\n\n---\n\n"
            + "\n".join(blocks)
        )
        self.path.write_text(content, encoding="utf-8")
        logger.info("Persisted %d id patterns to %s", len(self._entries), self.path)
        return self.path

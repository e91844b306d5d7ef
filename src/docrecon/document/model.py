"""Addressable model of a parsed plan document."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional, Tuple

_WHITESPACE = re.compile(r"\s+")
_TRAILING_PARENTHETICAL = re.compile(r"\s*\([^)]*\)\s*$")
_LEADING_HASHES = re.compile(r"^#+\s*")


def section_key(name: str | None) -> str:
    """Return the case-insensitive lookup key for a section heading."""
    value = _LEADING_HASHES.sub("", (name or "").strip())
    value = _TRAILING_PARENTHETICAL.sub("", value)
    value = value.rstrip(":").strip()
    return _WHITESPACE.sub(" ", value).casefold()


def normalise_context(value: str | None) -> str | None:
    """Collapse a provenance context into its comparable form."""
    if value is None:
        return None
    cleaned = _LEADING_HASHES.sub("", value.strip())
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    return cleaned or None


class SectionKind(str, Enum):
    """Structural role of a top-level section."""

    TASK_LIST = "task-list"
    SLICE_LIST = "slice-list"
    FREEFORM = "freeform"


@dataclass(slots=True, frozen=True)
class SliceReference:
    """Cross-reference from a task to a slice defined in the roadmap."""

    container: str
    slice_id: str
    label: str = ""

    @property
    def target(self) -> str:
        return f"{self.slice_id} — {self.label}" if self.label else self.slice_id

    def render(self) -> str:
        return f"[[{self.container}#{self.target}]]"

    @property
    def key(self) -> tuple[str, str]:
        return (self.container.strip().casefold(), self.slice_id.strip().casefold())


@dataclass(slots=True, frozen=True)
class ProvenanceMarker:
    """Origin tag embedded next to an inserted line."""

    source_file: str
    source_context: str | None = None

    @property
    def key(self) -> tuple[str, str | None]:
        return (self.source_file.strip().casefold(), normalise_context(self.source_context))

    def render(self) -> str:
        context = normalise_context(self.source_context)
        if context:
            return f"<!-- from {self.source_file}: {context} -->"
        return f"<!-- from {self.source_file} -->"


@dataclass(slots=True)
class TaskItem:
    """Checkbox line owned by a single section."""

    text: str
    checked: bool
    line_number: int
    end_line: int
    raw: str
    section: str = ""
    indent: str = ""
    slice_link: SliceReference | None = None
    provenance: ProvenanceMarker | None = None
    extra_markers: Tuple[ProvenanceMarker, ...] = ()
    sub_items: Tuple[str, ...] = ()

    @property
    def markers(self) -> Tuple[ProvenanceMarker, ...]:
        if self.provenance is None:
            return self.extra_markers
        return (self.provenance, *self.extra_markers)

    def carries(self, key: tuple[str, str | None]) -> bool:
        """Return True when any marker on this item has ``key``."""
        return any(marker.key == key for marker in self.markers)


@dataclass(slots=True)
class Subsection:
    """Deeper heading inside a slice-list section (slice or archive group)."""

    title: str
    level: int
    start_line: int
    end_line: int
    append_line: int
    slice_id: str | None = None

    @property
    def key(self) -> str:
        return section_key(self.title)


@dataclass(slots=True)
class Section:
    """Named, contiguous line range of a document."""

    name: str
    kind: SectionKind
    start_line: int
    end_line: int
    level: int = 2
    append_line: int = -1
    tasks: list[TaskItem] = field(default_factory=list)
    subsections: list[Subsection] = field(default_factory=list)

    @property
    def key(self) -> str:
        return section_key(self.name)

    @property
    def is_preamble(self) -> bool:
        return self.level == 0

    def subsection(self, title: str) -> Optional[Subsection]:
        wanted = section_key(title)
        for subsection in self.subsections:
            if subsection.key == wanted:
                return subsection
        return None

    def contains(self, line_number: int) -> bool:
        return self.start_line <= line_number < self.end_line


@dataclass(slots=True)
class Document:
    """Ordered sections derived from one text file."""

    lines: list[str]
    sections: list[Section]
    newline: str = "\n"
    trailing_newline: bool = False

    @property
    def line_count(self) -> int:
        return len(self.lines)

    def render(self, lines: list[str] | None = None) -> str:
        """Join ``lines`` (defaults to the parsed lines) with this document's conventions."""
        selected = self.lines if lines is None else lines
        body = self.newline.join(selected)
        if self.trailing_newline and selected:
            return body + self.newline
        return body

    def section(self, name: str) -> Optional[Section]:
        wanted = section_key(name)
        if not wanted:
            return None
        for section in self.sections:
            if not section.is_preamble and section.key == wanted:
                return section
        return None

    def task_items(self) -> Iterator[TaskItem]:
        for section in self.sections:
            yield from section.tasks

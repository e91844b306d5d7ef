"""Single-pass parser that turns plan documents into addressable sections."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .markers import (
    CHECKBOX_PATTERN,
    FENCE_PATTERN,
    HEADING_PATTERN,
    RULE_PATTERN,
    SLICE_ID_PATTERN,
    SUB_ITEM_PATTERN,
    parse_task_line,
)
from .model import Document, Section, SectionKind, Subsection, TaskItem, section_key

LOGGER = logging.getLogger(__name__)

DEFAULT_TASK_SECTIONS: tuple[str, ...] = (
    "Now",
    "Current",
    "Next",
    "Later",
    "Blocked",
    "Done",
    "Future Tasks",
    "Potential Future Tasks",
    "Next 1-3 Actions",
    "Active Tasks",
    "Recently Completed",
)

DEFAULT_SLICE_SECTIONS: tuple[str, ...] = (
    "Active Vertical Slices",
    "Planned Slices",
    "Milestones",
    "Completed Work",
)


def split_text(text: str) -> tuple[list[str], str, bool]:
    """Split ``text`` into lines, returning the newline style and trailing-newline flag."""
    if not text:
        return [], "\n", False
    newline = "\r\n" if "\r\n" in text else "\n"
    body = text.replace("\r\n", "\n")
    trailing = body.endswith("\n")
    lines = body.split("\n")
    if trailing:
        lines.pop()
    return lines, newline, trailing


def _front_matter_end(lines: Sequence[str]) -> int:
    """Return the index after a leading YAML front matter block, or 0."""
    if not lines or lines[0].strip() != "---":
        return 0
    for index in range(1, len(lines)):
        if lines[index].strip() == "---":
            return index + 1
    return 0


def _content_end(lines: Sequence[str], lower: int, upper: int) -> int:
    """Trim trailing blank lines and horizontal rules from ``[lower, upper)``."""
    end = upper
    while end > lower and (not lines[end - 1].strip() or RULE_PATTERN.match(lines[end - 1])):
        end -= 1
    return end


@dataclass(slots=True)
class DocumentParser:
    """Parse task, roadmap and archive documents into a :class:`Document`."""

    task_sections: Sequence[str] = DEFAULT_TASK_SECTIONS
    slice_sections: Sequence[str] = DEFAULT_SLICE_SECTIONS
    _task_keys: frozenset[str] = field(init=False, repr=False)
    _slice_keys: frozenset[str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._task_keys = frozenset(section_key(name) for name in self.task_sections)
        self._slice_keys = frozenset(section_key(name) for name in self.slice_sections)

    @classmethod
    def with_extra_sections(
        cls,
        task_sections: Iterable[str] = (),
        slice_sections: Iterable[str] = (),
    ) -> "DocumentParser":
        """Extend the default vocabulary with producer-defined section names."""
        return cls(
            task_sections=(*DEFAULT_TASK_SECTIONS, *task_sections),
            slice_sections=(*DEFAULT_SLICE_SECTIONS, *slice_sections),
        )

    def classify(self, title: str) -> SectionKind:
        key = section_key(title)
        if key in self._task_keys:
            return SectionKind.TASK_LIST
        if key in self._slice_keys:
            return SectionKind.SLICE_LIST
        return SectionKind.FREEFORM

    def parse(self, text: str) -> Document:
        lines, newline, trailing = split_text(text)
        opaque_until = _front_matter_end(lines)

        sections: list[Section] = []
        current = Section(name="", kind=SectionKind.FREEFORM, start_line=0, end_line=0, level=0)
        subsection: Subsection | None = None
        open_task: TaskItem | None = None
        in_fence = False

        def close_subsection(at: int) -> None:
            nonlocal subsection
            if subsection is not None:
                subsection.end_line = at
                subsection = None

        def open_section(name: str, kind: SectionKind, at: int, level: int) -> None:
            nonlocal current
            close_subsection(at)
            current.end_line = at
            if current.end_line > current.start_line or not current.is_preamble:
                sections.append(current)
            current = Section(name=name, kind=kind, start_line=at, end_line=at, level=level)

        for index, line in enumerate(lines):
            if index < opaque_until:
                continue
            if FENCE_PATTERN.match(line):
                in_fence = not in_fence
                open_task = None
                continue
            if in_fence:
                continue

            heading = HEADING_PATTERN.match(line)
            if heading:
                open_task = None
                level = len(heading.group("hashes"))
                title = heading.group("title").strip()
                kind = self.classify(title)
                if level <= 2:
                    if level == 1 and current.is_preamble:
                        continue
                    open_section(title, kind, index, level)
                elif current.kind is SectionKind.SLICE_LIST and kind is SectionKind.FREEFORM:
                    close_subsection(index)
                    slice_match = SLICE_ID_PATTERN.match(title)
                    subsection = Subsection(
                        title=title,
                        level=level,
                        start_line=index,
                        end_line=index,
                        append_line=index + 1,
                        slice_id=slice_match.group("id").upper() if slice_match else None,
                    )
                    current.subsections.append(subsection)
                elif current.kind is SectionKind.TASK_LIST or kind is not SectionKind.FREEFORM:
                    # Unknown structure below a task list ends the list.
                    open_section(title, kind, index, level)
                continue

            if current.kind is SectionKind.FREEFORM:
                continue

            if CHECKBOX_PATTERN.match(line):
                parts = parse_task_line(line)
                if parts is None:
                    continue
                open_task = TaskItem(
                    text=parts.text,
                    checked=parts.checked,
                    line_number=index,
                    end_line=index + 1,
                    raw=line,
                    section=current.name,
                    indent=parts.indent,
                    slice_link=parts.slice_link,
                    provenance=parts.markers[0] if parts.markers else None,
                    extra_markers=parts.markers[1:],
                )
                current.tasks.append(open_task)
                continue

            if open_task is not None and SUB_ITEM_PATTERN.match(line):
                open_task.end_line = index + 1
                open_task.sub_items = (*open_task.sub_items, line)
                continue

            open_task = None
            stripped = line.lstrip()
            if stripped.startswith(("- [", "* [")):
                LOGGER.debug("Unclassified checkbox-like line %d kept as opaque content: %r", index, line)

        # Closing with an empty sentinel flushes the last open section.
        open_section("", SectionKind.FREEFORM, len(lines), 0)

        for section in sections:
            lower = section.start_line if section.is_preamble else section.start_line + 1
            section.append_line = _content_end(lines, lower, section.end_line)
            for child in section.subsections:
                child.append_line = _content_end(lines, child.start_line + 1, child.end_line)

        return Document(lines=lines, sections=sections, newline=newline, trailing_newline=trailing)


def parse(text: str, *, parser: DocumentParser | None = None) -> Document:
    """Parse ``text`` with the default (or supplied) parser."""
    return (parser or DocumentParser()).parse(text)

"""Turn placement selections into line directives against a parsed document."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from ..document.markers import render_task_line, text_key
from ..document.model import Document, ProvenanceMarker, Section, Subsection, TaskItem, section_key
from ..provenance import ProvenanceTracker
from ..structured import DEFAULT_FINGERPRINT_WIDTH, EditDirective, PlacementSelection, PlannedLine, TaskLocator
from ..telemetry import emit_event

LOGGER = logging.getLogger(__name__)

_LOCATOR_PREFIX = 40

# Equivalent names a destination may carry in older documents.
SECTION_ALTERNATES: dict[str, tuple[str, ...]] = {
    "now": ("Current", "Active Tasks"),
    "current": ("Now", "Active Tasks"),
    "next": ("Next 1-3 Actions", "Next Actions"),
    "future tasks": ("Potential Future Tasks",),
    "done": ("Recently Completed",),
}


@dataclass(slots=True, frozen=True)
class SkippedSelection:
    """Selection that produced no directive, with the reason."""

    source_proposal_id: str
    text: str
    reason: str
    section: str | None = None


@dataclass(slots=True)
class InsertionPlan:
    """Ordered directives in original line coordinates for one document."""

    directives: list[EditDirective] = field(default_factory=list)
    created_sections: list[str] = field(default_factory=list)
    skipped: list[SkippedSelection] = field(default_factory=list)
    removed: list[tuple[str, TaskItem]] = field(default_factory=list)
    newline: str = "\n"
    trailing_newline: bool = False
    line_count: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.directives


@dataclass(slots=True)
class _StagedInsert:
    at: int
    section: str
    source_proposal_id: str | None
    lines: list[PlannedLine] = field(default_factory=list)
    group: str | None = None
    note: str | None = None


@dataclass(slots=True)
class _Target:
    """Resolved insertion point for one selection."""

    section_name: str
    section: Section | None
    subsection: Subsection | None
    subsection_title: str | None


@dataclass(slots=True)
class _NewBlock:
    """Synthesized heading followed by the inserts that land beneath it."""

    heading: _StagedInsert
    items: list[_StagedInsert] = field(default_factory=list)
    children: dict[str, "_NewBlock"] = field(default_factory=dict)

    def flatten(self) -> list[_StagedInsert]:
        chunks = [self.heading, *self.items]
        for child in self.children.values():
            chunks.extend(child.flatten())
        return chunks


class _PlanBuilder:
    """Accumulates directives while preserving input order.

    Inserts at the same line keep their input order once applied. New
    subsections follow plain appends at the same line, and new sections
    follow everything else, so appended lines never land under a heading
    they do not belong to.
    """

    def __init__(self) -> None:
        self.entries: list[EditDirective | _StagedInsert] = []
        self.new_subsections: dict[tuple[str, str], _NewBlock] = {}
        self.new_sections: dict[str, _NewBlock] = {}

    def add(self, entry: EditDirective | _StagedInsert) -> None:
        self.entries.append(entry)

    def created_sections(self) -> list[str]:
        return [block.heading.section for block in self.new_sections.values()]

    def build(self) -> list[EditDirective]:
        directives: list[EditDirective] = []
        staged: list[EditDirective | _StagedInsert] = list(self.entries)
        for block in (*self.new_subsections.values(), *self.new_sections.values()):
            staged.extend(block.flatten())
        for entry in staged:
            if isinstance(entry, EditDirective):
                directives.append(entry)
                continue
            directives.append(
                EditDirective(
                    action="insert",
                    start_line=entry.at,
                    end_line=entry.at,
                    lines=tuple(entry.lines),
                    group=entry.group,
                    source_proposal_id=entry.source_proposal_id,
                    section=entry.section,
                    note=entry.note,
                )
            )
        return directives


@dataclass(slots=True)
class PlacementResolver:
    """Compute exact, order-stable insertion points for a batch of selections."""

    fingerprint_width: int = DEFAULT_FINGERPRINT_WIDTH
    subsection_level: int = 3

    @classmethod
    def from_settings(cls, settings: object) -> "PlacementResolver":
        return cls(fingerprint_width=getattr(settings, "fingerprint_width", DEFAULT_FINGERPRINT_WIDTH))

    def fingerprint(self, document: Document, start: int, end: int) -> tuple[str, ...]:
        return tuple(line[: self.fingerprint_width] for line in document.lines[start:end])

    def resolve(self, document: Document, selections: Sequence[PlacementSelection]) -> InsertionPlan:
        plan = InsertionPlan(
            newline=document.newline,
            trailing_newline=document.trailing_newline,
            line_count=document.line_count,
        )
        tracker = ProvenanceTracker(document)
        builder = _PlanBuilder()
        consumed: set[int] = set()
        batch_markers: set[tuple[tuple[str, Optional[str]], str]] = set()
        batch_texts: set[tuple[str, str, str]] = set()

        def skip(selection: PlacementSelection, reason: str, section: str | None = None) -> None:
            LOGGER.debug("Skipping %s (%s): %s", selection.source_proposal_id, selection.final_text, reason)
            plan.skipped.append(
                SkippedSelection(
                    source_proposal_id=selection.source_proposal_id,
                    text=selection.final_text,
                    reason=reason,
                    section=section,
                )
            )

        for selection in selections:
            if selection.discard:
                skip(selection, "discarded")
                continue

            marker = selection.provenance
            if marker is not None and marker.key in tracker:
                skip(selection, "already applied", tracker.find_existing(marker).section or None)
                continue

            origin: TaskItem | None = None
            if selection.origin is not None:
                origin = self._locate(document, selection.origin, consumed)

            if selection.remove:
                if origin is None:
                    skip(selection, "origin not found")
                    continue
                consumed.add(origin.line_number)
                builder.add(self._delete(document, origin, selection, group=None))
                plan.removed.append((selection.source_proposal_id, origin))
                continue

            target = self._target(document, selection)
            in_place = selection.in_place or (
                origin is not None
                and target is not None
                and target.section is not None
                and target.subsection_title is None
                and target.section.contains(origin.line_number)
            )

            if in_place:
                if origin is None:
                    skip(selection, "origin not found")
                    continue
                directive = self._replace(document, origin, selection)
                if directive is None:
                    skip(selection, "unchanged", origin.section or None)
                    continue
                consumed.add(origin.line_number)
                builder.add(directive)
                continue

            if target is None:
                skip(selection, "no destination")
                continue

            text = selection.final_text.strip()
            if not text and origin is not None:
                text = origin.text
            dedupe_text = (section_key(target.section_name), section_key(target.subsection_title or ""), text_key(text))
            if dedupe_text in batch_texts:
                skip(selection, "duplicate in batch", target.section_name)
                continue
            if marker is not None and (marker.key, text_key(text)) in batch_markers:
                skip(selection, "duplicate in batch", target.section_name)
                continue

            if selection.origin is not None and origin is None:
                if self._present_in_target(document, target, text):
                    skip(selection, "already present", target.section_name)
                else:
                    skip(selection, "origin not found", target.section_name)
                continue
            if origin is None and marker is None and self._present_in_target(document, target, text):
                skip(selection, "already present", target.section_name)
                continue

            group = None
            carried: tuple[ProvenanceMarker, ...] = selection.extra_markers
            sub_items: tuple[str, ...] = selection.sub_items
            slice_link = selection.slice_link
            checked = selection.checked
            if origin is not None:
                group = f"move:{selection.source_proposal_id}:{origin.line_number}"
                consumed.add(origin.line_number)
                builder.add(self._delete(document, origin, selection, group=group))
                carried = origin.markers
                sub_items = origin.sub_items
                slice_link = slice_link or origin.slice_link
                checked = checked or origin.checked

            if marker is not None and any(existing.key == marker.key for existing in carried):
                marker = None
            content = render_task_line(text, checked=checked, slice_link=slice_link, markers=carried)
            lines = [PlannedLine(content, marker), *(PlannedLine(item) for item in sub_items)]
            self._stage_insert(builder, document, target, selection, lines, group)

            batch_texts.add(dedupe_text)
            if selection.provenance is not None:
                batch_markers.add((selection.provenance.key, text_key(text)))

        plan.directives = builder.build()
        plan.created_sections = builder.created_sections()
        emit_event(
            "plan_resolved",
            selections=len(selections),
            directives=len(plan.directives),
            created_sections=plan.created_sections,
            skipped=[{"id": item.source_proposal_id, "reason": item.reason} for item in plan.skipped],
        )
        return plan

    def _target(self, document: Document, selection: PlacementSelection) -> _Target | None:
        name = (selection.destination_section or "").strip()
        if not name:
            return None
        section = find_section(document, name)
        subsection = None
        if section is not None and selection.subsection:
            subsection = find_subsection(section, selection.subsection)
        return _Target(
            section_name=section.name if section is not None else name,
            section=section,
            subsection=subsection,
            subsection_title=selection.subsection,
        )

    def _locate(self, document: Document, locator: TaskLocator, consumed: set[int]) -> TaskItem | None:
        """Find the live task a locator refers to, never returning one twice."""
        wanted = text_key(locator.text)
        if not wanted:
            return None
        items = [item for item in document.task_items() if item.line_number not in consumed]

        if locator.line_number is not None:
            for item in items:
                if item.line_number == locator.line_number and _text_matches(item, wanted):
                    return item

        scoped: list[TaskItem] = []
        if locator.section:
            section = find_section(document, locator.section)
            if section is not None:
                scoped = [item for item in items if section.contains(item.line_number)]

        for pool in (scoped, items):
            for item in pool:
                if _exact_text(item, wanted):
                    return item

        # Truncated text only matches inside the named section, and only one task.
        candidates = [item for item in scoped if _prefix_text(item, wanted)]
        if len(candidates) == 1:
            return candidates[0]
        if candidates:
            LOGGER.debug("Locator %r is ambiguous in %s", locator.text, locator.section)
        return None

    def _present_in_target(self, document: Document, target: _Target, text: str) -> bool:
        if target.section is None:
            return False
        wanted = text_key(text)
        start, end = target.section.start_line, target.section.end_line
        if target.subsection is not None:
            start, end = target.subsection.start_line, target.subsection.end_line
        elif target.subsection_title:
            return False
        return any(
            start <= item.line_number < end and text_key(item.text) == wanted for item in target.section.tasks
        )

    def _delete(
        self,
        document: Document,
        origin: TaskItem,
        selection: PlacementSelection,
        *,
        group: str | None,
    ) -> EditDirective:
        return EditDirective(
            action="delete",
            start_line=origin.line_number,
            end_line=origin.end_line,
            fingerprint=self.fingerprint(document, origin.line_number, origin.end_line),
            group=group,
            source_proposal_id=selection.source_proposal_id,
            section=origin.section or None,
            note="move" if group else "remove",
        )

    def _replace(
        self,
        document: Document,
        origin: TaskItem,
        selection: PlacementSelection,
    ) -> EditDirective | None:
        markers = list(origin.markers)
        if selection.provenance is not None and not origin.carries(selection.provenance.key):
            markers.append(selection.provenance)
        content = render_task_line(
            origin.text,
            checked=selection.checked or origin.checked,
            slice_link=origin.slice_link or selection.slice_link,
            markers=markers,
            indent=origin.indent,
        )
        if content == origin.raw:
            return None
        return EditDirective(
            action="replace",
            start_line=origin.line_number,
            end_line=origin.line_number + 1,
            lines=(PlannedLine(content),),
            fingerprint=self.fingerprint(document, origin.line_number, origin.line_number + 1),
            source_proposal_id=selection.source_proposal_id,
            section=origin.section or None,
            note="update",
        )

    def _stage_insert(
        self,
        builder: _PlanBuilder,
        document: Document,
        target: _Target,
        selection: PlacementSelection,
        lines: list[PlannedLine],
        group: str | None,
    ) -> None:
        subsection_heading = "#" * self.subsection_level

        def item(at: int, section: str, note: str) -> _StagedInsert:
            return _StagedInsert(
                at=at,
                section=section,
                source_proposal_id=selection.source_proposal_id,
                lines=list(lines),
                group=group,
                note=note,
            )

        def heading_chunk(at: int, section: str, text: str, *, gap: bool, note: str) -> _StagedInsert:
            heading_lines = [PlannedLine("")] if gap else []
            heading_lines.append(PlannedLine(text))
            return _StagedInsert(
                at=at,
                section=section,
                source_proposal_id=selection.source_proposal_id,
                lines=heading_lines,
                note=note,
            )

        if target.section is None:
            key = section_key(target.section_name)
            block = builder.new_sections.get(key)
            if block is None:
                gap = bool(builder.new_sections) or bool(document.line_count and document.lines[-1].strip())
                block = _NewBlock(
                    heading_chunk(
                        document.line_count,
                        target.section_name,
                        f"## {target.section_name}",
                        gap=gap,
                        note="create-section",
                    )
                )
                builder.new_sections[key] = block
                LOGGER.info("Creating missing section '%s' at end of document", target.section_name)
            if target.subsection_title:
                sub_key = section_key(target.subsection_title)
                child = block.children.get(sub_key)
                if child is None:
                    child = _NewBlock(
                        heading_chunk(
                            document.line_count,
                            target.section_name,
                            f"{subsection_heading} {target.subsection_title}",
                            gap=True,
                            note="create-subsection",
                        )
                    )
                    block.children[sub_key] = child
                block = child
            block.items.append(item(document.line_count, target.section_name, "append"))
            return

        section = target.section
        if target.subsection is not None:
            builder.add(item(target.subsection.append_line, section.name, f"append:{target.subsection.title}"))
            return

        if target.subsection_title:
            sub_key = (section.key, section_key(target.subsection_title))
            block = builder.new_subsections.get(sub_key)
            if block is None:
                block = _NewBlock(
                    heading_chunk(
                        section.append_line,
                        section.name,
                        f"{subsection_heading} {target.subsection_title}",
                        gap=True,
                        note="create-subsection",
                    )
                )
                builder.new_subsections[sub_key] = block
            block.items.append(item(section.append_line, section.name, "append"))
            return

        builder.add(item(section.append_line, section.name, "append"))


def find_section(document: Document, name: str) -> Section | None:
    """Look up a section by name, falling back to its known alternate names."""
    section = document.section(name)
    if section is not None:
        return section
    for alternate in SECTION_ALTERNATES.get(section_key(name), ()):
        section = document.section(alternate)
        if section is not None:
            return section
    return None


def find_subsection(section: Section, title: str) -> Subsection | None:
    """Match a subsection by title, or by slice id when ``title`` names one."""
    found = section.subsection(title)
    if found is not None:
        return found
    wanted = title.strip().split()[0].upper() if title.strip() else ""
    for subsection in section.subsections:
        if subsection.slice_id and subsection.slice_id == wanted:
            return subsection
    return None


def _exact_text(item: TaskItem, wanted: str) -> bool:
    return text_key(item.text) == wanted


def _prefix_text(item: TaskItem, wanted: str) -> bool:
    return text_key(item.text)[:_LOCATOR_PREFIX] == wanted[:_LOCATOR_PREFIX]


def _text_matches(item: TaskItem, wanted: str) -> bool:
    return _exact_text(item, wanted) or _prefix_text(item, wanted)


def resolve(
    document: Document,
    selections: Iterable[PlacementSelection],
    *,
    fingerprint_width: int = DEFAULT_FINGERPRINT_WIDTH,
) -> InsertionPlan:
    """Resolve ``selections`` against ``document`` with default settings."""
    return PlacementResolver(fingerprint_width=fingerprint_width).resolve(document, list(selections))


__all__ = [
    "InsertionPlan",
    "PlacementResolver",
    "SECTION_ALTERNATES",
    "SkippedSelection",
    "find_section",
    "find_subsection",
    "resolve",
]

"""Typed payloads that describe placements and the line edits derived from them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Tuple

from .document.model import ProvenanceMarker, SliceReference

DEFAULT_DOCUMENT = "Tasks.md"
DEFAULT_FINGERPRINT_WIDTH = 60
DEFAULT_CONTEXT_LINES = 2


@dataclass(slots=True, frozen=True)
class TaskLocator:
    """Reference to a task item that already exists in a document."""

    text: str
    section: str | None = None
    line_number: int | None = None
    provenance: ProvenanceMarker | None = None


@dataclass(slots=True, frozen=True)
class PlacementSelection:
    """Normalized decision about where a proposed item lands."""

    source_proposal_id: str
    final_text: str
    destination_section: str | None
    slice_link: SliceReference | None = None
    discard: bool = False
    document: str = DEFAULT_DOCUMENT
    checked: bool = False
    origin: TaskLocator | None = None
    provenance: ProvenanceMarker | None = None
    subsection: str | None = None
    remove: bool = False
    sub_items: Tuple[str, ...] = ()
    extra_markers: Tuple[ProvenanceMarker, ...] = ()

    @property
    def in_place(self) -> bool:
        """True when the origin item is rewritten where it already lives."""
        return self.origin is not None and not self.remove and not self.destination_section


@dataclass(slots=True, frozen=True)
class PlannedLine:
    """Line to insert, with the marker the applier stamps onto it."""

    content: str
    marker: ProvenanceMarker | None = None

    def stamped(self) -> str:
        if self.marker is None:
            return self.content
        rendered = self.marker.render()
        if rendered in self.content:
            return self.content
        return f"{self.content} {rendered}"


@dataclass(slots=True, frozen=True)
class EditDirective:
    """Line-oriented edit expressed in original document coordinates."""

    action: Literal["insert", "delete", "replace"]
    start_line: int
    end_line: int
    lines: Tuple[PlannedLine, ...] = ()
    fingerprint: Tuple[str, ...] = ()
    group: str | None = None
    source_proposal_id: str | None = None
    section: str | None = None
    note: str | None = None

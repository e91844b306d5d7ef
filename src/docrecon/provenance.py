"""Read-only lookups of provenance markers in a parsed document."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from .document.markers import text_key
from .document.model import Document, ProvenanceMarker, TaskItem

MarkerKey = tuple[str, Optional[str]]


def marker_of(candidate: Any) -> ProvenanceMarker | None:
    """Return the marker carried by a proposal, selection or marker."""
    if candidate is None:
        return None
    if isinstance(candidate, ProvenanceMarker):
        return candidate
    marker = getattr(candidate, "provenance", None)
    if isinstance(marker, ProvenanceMarker):
        return marker
    return None


def _text_of(candidate: Any) -> str:
    for attribute in ("final_text", "text"):
        value = getattr(candidate, attribute, None)
        if isinstance(value, str) and value.strip():
            return value
    return ""


@dataclass(slots=True, frozen=True)
class HistoryEntry:
    """Where a previously reviewed proposal lives in the current document."""

    proposal_id: str
    text: str
    section: str | None = None
    line_number: int | None = None
    checked: bool | None = None
    matched_by: str | None = None

    @property
    def present(self) -> bool:
        return self.section is not None


@dataclass(slots=True)
class Partition:
    """Proposals split by whether the document already represents them."""

    fresh: list[Any] = field(default_factory=list)
    applied: list[tuple[Any, TaskItem]] = field(default_factory=list)


class ProvenanceTracker:
    """Index of every marker in a document, queried by ``(source_file, context)``."""

    def __init__(self, document: Document) -> None:
        self.document = document
        self._index: dict[MarkerKey, TaskItem] = {}
        self._by_text: dict[str, TaskItem] = {}
        for item in document.task_items():
            for marker in item.markers:
                self._index.setdefault(marker.key, item)
            self._by_text.setdefault(text_key(item.text), item)

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def keys(self) -> frozenset[MarkerKey]:
        return frozenset(self._index)

    def find_existing(self, proposal: Any) -> TaskItem | None:
        """Return the task item carrying the proposal's provenance key, if any."""
        marker = marker_of(proposal)
        if marker is None:
            return None
        return self._index.get(marker.key)

    def find_by_text(self, text: str) -> TaskItem | None:
        return self._by_text.get(text_key(text))

    def partition(self, proposals: Iterable[Any]) -> Partition:
        result = Partition()
        for proposal in proposals:
            existing = self.find_existing(proposal)
            if existing is None:
                result.fresh.append(proposal)
            else:
                result.applied.append((proposal, existing))
        return result

    def history(self, proposals: Iterable[Any]) -> list[HistoryEntry]:
        entries: list[HistoryEntry] = []
        for proposal in proposals:
            proposal_id = str(getattr(proposal, "id", None) or getattr(proposal, "source_proposal_id", "") or "")
            text = _text_of(proposal)
            item = self.find_existing(proposal)
            matched_by = "provenance" if item is not None else None
            if item is None and text:
                item = self.find_by_text(text)
                matched_by = "text" if item is not None else None
            if item is None:
                entries.append(HistoryEntry(proposal_id=proposal_id, text=text))
                continue
            entries.append(
                HistoryEntry(
                    proposal_id=proposal_id,
                    text=text,
                    section=item.section or None,
                    line_number=item.line_number,
                    checked=item.checked,
                    matched_by=matched_by,
                )
            )
        return entries


def find_existing(document: Document, proposal: Any) -> TaskItem | None:
    return ProvenanceTracker(document).find_existing(proposal)


def partition(document: Document, proposals: Iterable[Any]) -> Partition:
    """Split ``proposals`` into fresh ones and ones already applied to ``document``."""
    return ProvenanceTracker(document).partition(proposals)


def history(document: Document, proposals: Iterable[Any]) -> list[HistoryEntry]:
    """Annotate each proposal with the section it currently lives in."""
    return ProvenanceTracker(document).history(proposals)


__all__ = [
    "HistoryEntry",
    "Partition",
    "ProvenanceTracker",
    "find_existing",
    "history",
    "marker_of",
    "partition",
]

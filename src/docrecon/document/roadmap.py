"""Milestones, their slices and the current focus read from a roadmap document."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, Optional, Pattern

from .markers import FENCE_PATTERN
from .model import SliceReference
from .parser import split_text

LOGGER = logging.getLogger(__name__)

MILESTONE_PATTERN: Pattern[str] = re.compile(r"^#{2,3}\s*(?P<id>M\d+)\s*[—–-]\s*(?P<title>.+?)\s*$", re.IGNORECASE)
SLICE_HEADER_PATTERN: Pattern[str] = re.compile(
    r"^#{4,5}\s*(?P<id>(?:VS|PS)\d+)\s*[—–-]\s*(?P<name>.+?)\s*$", re.IGNORECASE
)
STATUS_PATTERN: Pattern[str] = re.compile(r"^\*\*Status:\*\*\s*(?P<status>[A-Za-z]+)", re.IGNORECASE)
FOCUS_HEADER_PATTERN: Pattern[str] = re.compile(r"^##\s*Current\s+Focus\s*$", re.IGNORECASE)
FOCUS_MILESTONE_PATTERN: Pattern[str] = re.compile(r"^\*\*Milestone:\*\*\s*(?P<id>M\d+)", re.IGNORECASE)
_TOP_HEADING = re.compile(r"^##\s+")
_ANY_HEADING = re.compile(r"^#{1,5}\s")

# A status line must follow its milestone heading within this many lines.
STATUS_LOOKAHEAD = 5


class MilestoneStatus(str, Enum):
    """Lifecycle state written on a milestone's ``**Status:**`` line."""

    PLANNED = "planned"
    ACTIVE = "active"
    DONE = "done"
    BLOCKED = "blocked"
    CUT = "cut"

    @classmethod
    def coerce(cls, value: str | None) -> "MilestoneStatus":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.PLANNED


@dataclass(slots=True, frozen=True)
class RoadmapSlice:
    """Slice heading nested under a milestone."""

    slice_id: str
    name: str
    milestone_id: str
    line_number: int

    @property
    def key(self) -> str:
        return self.slice_id.casefold()


@dataclass(slots=True)
class Milestone:
    """Milestone heading with its status and slices."""

    milestone_id: str
    title: str
    status: MilestoneStatus
    line_number: int
    slices: list[RoadmapSlice] = field(default_factory=list)

    @property
    def key(self) -> str:
        return self.milestone_id.casefold()


@dataclass(slots=True)
class Roadmap:
    """Parsed roadmap used to resolve slice links and report focus."""

    milestones: list[Milestone] = field(default_factory=list)
    focus_id: str | None = None

    def slices(self) -> Iterator[RoadmapSlice]:
        for milestone in self.milestones:
            yield from milestone.slices

    def milestone(self, milestone_id: str) -> Optional[Milestone]:
        wanted = milestone_id.strip().casefold()
        for milestone in self.milestones:
            if milestone.key == wanted:
                return milestone
        return None

    def current_milestone(self) -> Optional[Milestone]:
        """Milestone named under Current Focus, else the first active one."""
        if self.focus_id:
            focused = self.milestone(self.focus_id)
            if focused is not None:
                return focused
            LOGGER.debug("Current Focus names unknown milestone %s", self.focus_id)
        for milestone in self.milestones:
            if milestone.status is MilestoneStatus.ACTIVE:
                return milestone
        return None

    def active_slice(self) -> Optional[RoadmapSlice]:
        """First slice of the current milestone."""
        current = self.current_milestone()
        if current is None or not current.slices:
            return None
        return current.slices[0]

    def resolve(self, reference: SliceReference) -> RoadmapSlice | Milestone | None:
        """Return the slice or milestone ``reference`` points at, if the roadmap defines it."""
        wanted = reference.slice_id.strip().casefold()
        for item in self.slices():
            if item.key == wanted:
                return item
        return self.milestone(wanted)

    def unresolved(self, references: Iterable[SliceReference]) -> list[SliceReference]:
        return [reference for reference in references if self.resolve(reference) is None]


def parse_roadmap(text: str) -> Roadmap:
    """Read milestones, nested slices and the Current Focus milestone from ``text``."""
    lines, _, _ = split_text(text)
    roadmap = Roadmap()
    current: Milestone | None = None
    in_focus = False
    in_fence = False

    for index, raw in enumerate(lines):
        line = raw.strip()
        if FENCE_PATTERN.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue

        if FOCUS_HEADER_PATTERN.match(line):
            in_focus = True
            continue
        if in_focus:
            if _TOP_HEADING.match(line):
                in_focus = False
            focus = FOCUS_MILESTONE_PATTERN.match(line)
            if focus:
                roadmap.focus_id = focus.group("id").upper()
                continue

        milestone = MILESTONE_PATTERN.match(line)
        if milestone:
            current = Milestone(
                milestone_id=milestone.group("id").upper(),
                title=milestone.group("title"),
                status=_status_after(lines, index),
                line_number=index,
            )
            roadmap.milestones.append(current)
            continue

        heading = SLICE_HEADER_PATTERN.match(line)
        if heading:
            if current is None:
                LOGGER.debug("Ignoring slice %s outside any milestone (line %d)", heading.group("id"), index + 1)
                continue
            current.slices.append(
                RoadmapSlice(
                    slice_id=heading.group("id").upper(),
                    name=heading.group("name"),
                    milestone_id=current.milestone_id,
                    line_number=index,
                )
            )
    return roadmap


def _status_after(lines: list[str], index: int) -> MilestoneStatus:
    for candidate in lines[index + 1 : index + 1 + STATUS_LOOKAHEAD]:
        stripped = candidate.strip()
        if _ANY_HEADING.match(stripped):
            break
        match = STATUS_PATTERN.match(stripped)
        if match:
            return MilestoneStatus.coerce(match.group("status"))
    return MilestoneStatus.PLANNED


__all__ = [
    "Milestone",
    "MilestoneStatus",
    "Roadmap",
    "RoadmapSlice",
    "parse_roadmap",
]

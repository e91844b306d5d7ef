"""Hunk-level change sets that can be partially accepted."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from enum import Enum
from typing import Iterable, Literal, Sequence

from ..errors import DiffApplyError
from ..structured import DEFAULT_CONTEXT_LINES, EditDirective

LOGGER = logging.getLogger(__name__)

SEARCH_RADIUS = 50

_HUNK_HEADER = re.compile(r"^@@ -(?P<old>\d+)(?:,(?P<old_count>\d+))? \+(?P<new>\d+)(?:,(?P<new_count>\d+))? @@")
_DIFF_FENCE = re.compile(r"```diff[^\n]*\n(?P<body>.*?)```", re.DOTALL)


class HunkStatus(str, Enum):
    """Review state of a hunk."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(slots=True, frozen=True)
class DiffLine:
    """One line of a hunk: ``' '`` context, ``'-'`` removed or ``'+'`` added."""

    tag: Literal[" ", "-", "+"]
    text: str

    def render(self) -> str:
        return f"{self.tag}{self.text}"


@dataclass(slots=True)
class DiffHunk:
    """Contiguous run of context, removed and added lines.

    ``old_start`` and ``new_start`` are zero-based line indexes.
    """

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: list[DiffLine] = field(default_factory=list)
    status: HunkStatus = HunkStatus.PENDING
    error: str | None = None
    groups: tuple[str, ...] = ()

    @property
    def old_lines(self) -> list[str]:
        return [line.text for line in self.lines if line.tag != "+"]

    @property
    def new_lines(self) -> list[str]:
        return [line.text for line in self.lines if line.tag != "-"]

    @property
    def added(self) -> int:
        return sum(1 for line in self.lines if line.tag == "+")

    @property
    def removed(self) -> int:
        return sum(1 for line in self.lines if line.tag == "-")

    def header(self) -> str:
        old = self.old_start + 1 if self.old_count else self.old_start
        new = self.new_start + 1 if self.new_count else self.new_start
        return f"@@ -{old},{self.old_count} +{new},{self.new_count} @@"

    def render(self) -> str:
        return "\n".join([self.header(), *(line.render() for line in self.lines)])


@dataclass(slots=True)
class DiffBlock:
    """One file's ordered hunks, produced fresh for each review."""

    path: str
    hunks: list[DiffHunk] = field(default_factory=list)
    original: str | None = None
    proposed: str | None = None

    def __len__(self) -> int:
        return len(self.hunks)

    @property
    def is_empty(self) -> bool:
        return not self.hunks

    def _hunk(self, index: int) -> DiffHunk:
        if index < 0 or index >= len(self.hunks):
            raise IndexError(f"Hunk {index} out of range for {self.path} ({len(self.hunks)} hunk(s))")
        return self.hunks[index]

    def accept(self, index: int) -> None:
        self._hunk(index).status = HunkStatus.ACCEPTED

    def reject(self, index: int) -> None:
        self._hunk(index).status = HunkStatus.REJECTED

    def accept_all(self) -> None:
        for hunk in self.hunks:
            hunk.status = HunkStatus.ACCEPTED

    def reject_all(self) -> None:
        for hunk in self.hunks:
            hunk.status = HunkStatus.REJECTED

    def counts(self) -> dict[str, int]:
        totals = {status.value: 0 for status in HunkStatus}
        for hunk in self.hunks:
            totals[hunk.status.value] += 1
        return totals

    def render(self) -> str:
        """Return the block as a unified diff."""
        if not self.hunks:
            return ""
        parts = [f"--- a/{self.path}", f"+++ b/{self.path}"]
        parts.extend(hunk.render() for hunk in self.hunks)
        return "\n".join(parts) + "\n"


@dataclass(slots=True)
class DiffEngine:
    """Line diff with a fixed context window and per-hunk review state."""

    context_lines: int = DEFAULT_CONTEXT_LINES

    def diff(self, original: str, proposed: str, path: str = "document") -> DiffBlock:
        old = original.split("\n")
        new = proposed.split("\n")
        block = DiffBlock(path=path, original=original, proposed=proposed)
        if original == proposed:
            return block

        opcodes = SequenceMatcher(None, old, new, autojunk=False).get_opcodes()
        changes = [index for index, opcode in enumerate(opcodes) if opcode[0] != "equal"]

        groups: list[list[int]] = []
        for index in changes:
            if groups:
                previous = groups[-1][-1]
                gap = sum(opcodes[between][2] - opcodes[between][1] for between in range(previous + 1, index))
                if gap <= self.context_lines:
                    groups[-1].append(index)
                    continue
            groups.append([index])

        consumed_until = 0
        for group in groups:
            first, last = opcodes[group[0]], opcodes[group[-1]]
            lead = min(self.context_lines, first[1] - consumed_until)
            old_start = first[1] - lead
            new_start = first[3] - lead
            lines = [DiffLine(" ", text) for text in old[old_start : first[1]]]
            for tag, i1, i2, j1, j2 in opcodes[group[0] : group[-1] + 1]:
                if tag == "equal":
                    lines.extend(DiffLine(" ", text) for text in old[i1:i2])
                    continue
                lines.extend(DiffLine("-", text) for text in old[i1:i2])
                lines.extend(DiffLine("+", text) for text in new[j1:j2])
            following = opcodes[group[-1] + 1] if group[-1] + 1 < len(opcodes) else None
            trail = min(self.context_lines, following[2] - following[1]) if following else 0
            lines.extend(DiffLine(" ", text) for text in old[last[2] : last[2] + trail])
            consumed_until = last[2] + trail

            old_count = sum(1 for line in lines if line.tag != "+")
            new_count = sum(1 for line in lines if line.tag != "-")
            block.hunks.append(DiffHunk(old_start, old_count, new_start, new_count, lines))
        return block

    def tag_groups(self, block: DiffBlock, directives: Iterable[EditDirective]) -> None:
        """Record on each hunk the move groups whose edits it carries.

        Accepting only some hunks of a group leaves the whole group unapplied.
        """
        points = [_change_points(hunk) for hunk in block.hunks]
        for directive in directives:
            if not directive.group:
                continue
            hunk = _owner(block.hunks, points, directive)
            if hunk is not None and directive.group not in hunk.groups:
                hunk.groups = (*hunk.groups, directive.group)

    def apply_accepted(self, block: DiffBlock, original: str | None = None) -> str:
        """Rebuild text taking the new side of accepted hunks only.

        Pending and rejected hunks keep the old side. When ``original`` differs
        from the text the block was computed against, each accepted hunk is
        relocated by content before it is applied.
        """
        base = block.original if original is None else original
        if base is None:
            raise DiffApplyError(f"No original text available for {block.path}", details={"path": block.path})
        if block.original is not None and base == block.original:
            return _walk(block, base)
        return _relocate_and_apply(block, base)


def _change_points(hunk: DiffHunk) -> tuple[set[int], set[int]]:
    """Old-side indexes of removed lines and of the gaps that receive added lines."""
    removed: set[int] = set()
    inserted: set[int] = set()
    position = hunk.old_start
    for line in hunk.lines:
        if line.tag == "+":
            inserted.add(position)
            continue
        if line.tag == "-":
            removed.add(position)
        position += 1
    return removed, inserted


def _owner(hunks: Sequence[DiffHunk], points: Sequence[tuple[set[int], set[int]]], directive: EditDirective) -> DiffHunk | None:
    for hunk, (removed, inserted) in zip(hunks, points):
        if directive.action == "insert":
            if directive.start_line in inserted:
                return hunk
        elif any(index in removed for index in range(directive.start_line, directive.end_line)):
            return hunk
    for hunk in hunks:
        if hunk.old_start <= directive.start_line <= hunk.old_start + hunk.old_count:
            return hunk
    return None


def _void_partial_groups(block: DiffBlock, failed: set[int]) -> set[int]:
    """Return indexes of hunks left unapplied, adding accepted hunks of broken move groups."""
    voided = set(failed)
    while True:
        broken = {
            group
            for index, hunk in enumerate(block.hunks)
            if hunk.status is not HunkStatus.ACCEPTED or index in voided
            for group in hunk.groups
        }
        newly = [
            index
            for index, hunk in enumerate(block.hunks)
            if hunk.status is HunkStatus.ACCEPTED and index not in voided and broken.intersection(hunk.groups)
        ]
        if not newly:
            return voided
        for index in newly:
            hunk = block.hunks[index]
            group = sorted(broken.intersection(hunk.groups))[0]
            hunk.error = f"move group {group} not fully applied"
            LOGGER.warning("Leaving hunk %s in %s unapplied: %s", hunk.header(), block.path, hunk.error)
            voided.add(index)


def _walk(block: DiffBlock, original: str) -> str:
    old = original.split("\n")
    voided = _void_partial_groups(block, set())
    output: list[str] = []
    position = 0
    for index, hunk in sorted(enumerate(block.hunks), key=lambda pair: pair[1].old_start):
        output.extend(old[position : hunk.old_start])
        if hunk.status is HunkStatus.ACCEPTED and index not in voided:
            output.extend(hunk.new_lines)
        else:
            output.extend(old[hunk.old_start : hunk.old_start + hunk.old_count])
        position = hunk.old_start + hunk.old_count
    output.extend(old[position:])
    return "\n".join(output)


def _matches(lines: Sequence[str], position: int, wanted: Sequence[str], *, trimmed: bool) -> bool:
    if position < 0 or position + len(wanted) > len(lines):
        return False
    for offset, expected in enumerate(wanted):
        actual = lines[position + offset]
        if trimmed:
            if actual.strip() != expected.strip():
                return False
        elif actual != expected:
            return False
    return True


def locate_hunk(lines: Sequence[str], hunk: DiffHunk, radius: int = SEARCH_RADIUS) -> int | None:
    """Find where ``hunk``'s old side sits in ``lines``, near its hint first."""
    wanted = hunk.old_lines
    hint = max(0, min(hunk.old_start, len(lines)))
    if not wanted:
        return hint
    for trimmed in (False, True):
        for distance in range(radius + 1):
            for candidate in ((hint,) if distance == 0 else (hint - distance, hint + distance)):
                if _matches(lines, candidate, wanted, trimmed=trimmed):
                    return candidate
    for trimmed in (False, True):
        for candidate in range(len(lines) - len(wanted) + 1):
            if _matches(lines, candidate, wanted, trimmed=trimmed):
                return candidate
    return None


def _relocate_and_apply(block: DiffBlock, original: str) -> str:
    lines = original.split("\n")
    positions: dict[int, int] = {}
    failed: set[int] = set()
    for index, hunk in enumerate(block.hunks):
        if hunk.status is not HunkStatus.ACCEPTED:
            continue
        position = locate_hunk(lines, hunk)
        if position is None:
            hunk.error = "old lines not found in current text"
            LOGGER.warning("Unable to locate hunk %s in %s; leaving it unapplied", hunk.header(), block.path)
            failed.add(index)
            continue
        positions[index] = position

    placements = sorted(positions.items(), key=lambda item: item[1], reverse=True)
    lowest = len(lines) + 1
    for index, position in placements:
        end = position + len(block.hunks[index].old_lines)
        if end > lowest:
            block.hunks[index].error = "overlaps another accepted hunk"
            failed.add(index)
            continue
        lowest = position

    voided = _void_partial_groups(block, failed)
    for index, position in placements:
        if index in voided:
            continue
        hunk = block.hunks[index]
        lines[position : position + len(hunk.old_lines)] = hunk.new_lines
    return "\n".join(lines)


def parse_unified_diff(text: str) -> list[DiffBlock]:
    """Parse unified diff text into blocks without original text attached."""
    blocks: list[DiffBlock] = []
    current: DiffBlock | None = None
    hunk: DiffHunk | None = None
    old_remaining = new_remaining = 0
    pending_old_path: str | None = None

    for raw in text.splitlines():
        if hunk is not None and (old_remaining > 0 or new_remaining > 0):
            tag = raw[:1] if raw else " "
            if tag in (" ", "-", "+"):
                body = raw[1:]
                hunk.lines.append(DiffLine(tag, body))
                if tag != "+":
                    old_remaining -= 1
                if tag != "-":
                    new_remaining -= 1
                continue
            if tag == "\\":
                continue
            hunk = None

        if raw.startswith("--- "):
            pending_old_path = _strip_prefix(raw[4:])
            continue
        if raw.startswith("+++ "):
            path = _strip_prefix(raw[4:])
            if path == "/dev/null" and pending_old_path:
                path = pending_old_path
            current = DiffBlock(path=path)
            blocks.append(current)
            hunk = None
            continue
        match = _HUNK_HEADER.match(raw)
        if match:
            if current is None:
                current = DiffBlock(path=pending_old_path or "document")
                blocks.append(current)
            old_count = int(match.group("old_count") or 1)
            new_count = int(match.group("new_count") or 1)
            old_start = int(match.group("old"))
            new_start = int(match.group("new"))
            hunk = DiffHunk(
                old_start=old_start - 1 if old_count else old_start,
                old_count=old_count,
                new_start=new_start - 1 if new_count else new_start,
                new_count=new_count,
            )
            current.hunks.append(hunk)
            old_remaining, new_remaining = old_count, new_count
    return blocks


def _strip_prefix(value: str) -> str:
    path = value.split("\t", 1)[0].strip()
    if path.startswith(("a/", "b/")):
        return path[2:]
    return path


def extract_diff_blocks(text: str) -> list[DiffBlock]:
    """Find ```diff fences in producer text and parse each one."""
    blocks: list[DiffBlock] = []
    for match in _DIFF_FENCE.finditer(text or ""):
        blocks.extend(parse_unified_diff(match.group("body")))
    return blocks


def diff(original: str, proposed: str, path: str = "document", *, context_lines: int = DEFAULT_CONTEXT_LINES) -> DiffBlock:
    return DiffEngine(context_lines=context_lines).diff(original, proposed, path=path)


def apply_accepted(block: DiffBlock, original: str | None = None) -> str:
    return DiffEngine().apply_accepted(block, original)


def render_blocks(blocks: Iterable[DiffBlock]) -> str:
    return "".join(block.render() for block in blocks if not block.is_empty)


__all__ = [
    "DiffBlock",
    "DiffEngine",
    "DiffHunk",
    "DiffLine",
    "HunkStatus",
    "apply_accepted",
    "diff",
    "extract_diff_blocks",
    "locate_hunk",
    "parse_unified_diff",
    "render_blocks",
]

"""Inline token grammar for task lines, slice links and provenance comments."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Pattern, Tuple

from .model import ProvenanceMarker, SliceReference

HEADING_PATTERN: Pattern[str] = re.compile(r"^(?P<hashes>#{1,6})\s+(?P<title>.+?)\s*#*\s*$")
CHECKBOX_PATTERN: Pattern[str] = re.compile(r"^(?P<indent>\s*)[-*+]\s*\[(?P<mark>[ xX])\]\s+(?P<body>\S.*)$")
PROVENANCE_PATTERN: Pattern[str] = re.compile(r"<!--\s*from\s+(?P<body>.+?)\s*-->")
SLICE_LINK_PATTERN: Pattern[str] = re.compile(
    r"\[\[(?P<container>[^\]#|]+)#(?P<target>[^\]|]+?)(?:\|[^\]]*)?\]\]"
)
SLICE_TARGET_PATTERN: Pattern[str] = re.compile(r"^(?P<id>[A-Za-z]+\d+)\s*[—–-]\s*(?P<label>.+)$")
SLICE_ID_PATTERN: Pattern[str] = re.compile(r"^(?P<id>(?:VS|PS|M)\d+)\b", re.IGNORECASE)
RULE_PATTERN: Pattern[str] = re.compile(r"^\s*(?:-{3,}|\*{3,}|_{3,})\s*$")
FENCE_PATTERN: Pattern[str] = re.compile(r"^\s*(```|~~~)")
SUB_ITEM_PATTERN: Pattern[str] = re.compile(r"^(?:\s{2,}|\t)\S")
# A file name with an extension may contain spaces; legacy markers separate it
# from the context with whitespace, current ones with a colon.
_MARKER_LEGACY = re.compile(r"^(?P<file>[^:]+?\.[A-Za-z0-9]+)(?:\s+(?P<context>.*))?$")
_MARKER_COLON = re.compile(r"^(?P<file>[^:]+?)\s*:\s*(?P<context>.*)$")
_MARKER_TOKEN = re.compile(r"^(?P<file>\S+)(?:\s+(?P<context>.*))?$")
_WHITESPACE = re.compile(r"\s+")

DEFAULT_SLICE_CONTAINER = "Roadmap"


@dataclass(slots=True, frozen=True)
class TaskLineParts:
    """Decomposed checkbox line."""

    indent: str
    checked: bool
    text: str
    slice_link: SliceReference | None
    markers: Tuple[ProvenanceMarker, ...]


def parse_marker(body: str) -> ProvenanceMarker | None:
    """Parse the inside of ``<!-- from ... -->`` into a marker."""
    stripped = body.strip()
    for pattern in (_MARKER_LEGACY, _MARKER_COLON, _MARKER_TOKEN):
        match = pattern.match(stripped)
        if match:
            context = (match.group("context") or "").strip() or None
            return ProvenanceMarker(source_file=match.group("file").strip(), source_context=context)
    return None


def parse_slice_target(container: str, target: str) -> SliceReference:
    target = target.strip()
    match = SLICE_TARGET_PATTERN.match(target)
    if match:
        return SliceReference(container.strip(), match.group("id"), match.group("label").strip())
    return SliceReference(container.strip(), target, "")


def parse_slice_link(value: str | None) -> SliceReference | None:
    """Parse ``[[Roadmap#VS1 — Name]]`` (or a bare ``VS1 — Name``) into a reference."""
    if not value or not value.strip():
        return None
    match = SLICE_LINK_PATTERN.search(value)
    if match:
        return parse_slice_target(match.group("container"), match.group("target"))
    bare = SLICE_TARGET_PATTERN.match(value.strip())
    if bare:
        return SliceReference(DEFAULT_SLICE_CONTAINER, bare.group("id"), bare.group("label").strip())
    return None


def parse_task_line(line: str) -> TaskLineParts | None:
    """Split a checkbox line into text, optional slice link and markers."""
    match = CHECKBOX_PATTERN.match(line)
    if not match:
        return None
    body = match.group("body")

    markers = tuple(
        marker
        for marker in (parse_marker(found.group("body")) for found in PROVENANCE_PATTERN.finditer(body))
        if marker is not None
    )
    body = PROVENANCE_PATTERN.sub(" ", body)

    slice_link = None
    link_match = SLICE_LINK_PATTERN.search(body)
    if link_match:
        slice_link = parse_slice_target(link_match.group("container"), link_match.group("target"))
        body = body[: link_match.start()] + " " + body[link_match.end() :]

    return TaskLineParts(
        indent=match.group("indent"),
        checked=match.group("mark") in {"x", "X"},
        text=clean_text(body),
        slice_link=slice_link,
        markers=markers,
    )


def render_task_line(
    text: str,
    *,
    checked: bool = False,
    slice_link: SliceReference | None = None,
    markers: Iterable[ProvenanceMarker] = (),
    indent: str = "",
) -> str:
    """Render a checkbox line in the link-then-comment order."""
    parts = [f"{indent}- [{'x' if checked else ' '}] {clean_text(text)}"]
    if slice_link is not None:
        parts.append(slice_link.render())
    seen: set[tuple[str, str | None]] = set()
    for marker in markers:
        if marker.key in seen:
            continue
        seen.add(marker.key)
        parts.append(marker.render())
    return " ".join(parts)


def clean_text(value: str) -> str:
    return _WHITESPACE.sub(" ", value or "").strip()


def clean_heading(value: str) -> str:
    """Strip Markdown heading hashes and surrounding whitespace."""
    return re.sub(r"^#+\s*", "", (value or "").strip()).strip()


def text_key(value: str | None) -> str:
    """Comparable form of task text (case and whitespace insensitive)."""
    return clean_text(value or "").casefold()

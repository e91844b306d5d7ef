"""Decode producer payloads (optionally fenced JSON) into change proposals."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Sequence

from ..errors import MalformedProposal
from .schema import ProducerKind, RejectedProposal, parse_proposal

LOGGER = logging.getLogger(__name__)

# Envelope key -> producer kind of the proposals listed under it.
_ENVELOPES: Mapping[str, ProducerKind | None] = {
    "proposals": None,
    "tasks": None,
    "ideas": ProducerKind.IDEA,
    "matches": ProducerKind.COMMIT,
    "groups": ProducerKind.ARCHIVE,
}

_KIND_KEYS = ("producerKind", "producer_kind", "kind")


@dataclass(slots=True)
class DecodedBatch:
    """Proposals decoded from one producer response."""

    proposals: list[Any] = field(default_factory=list)
    rejected: list[RejectedProposal] = field(default_factory=list)


def _strip_code_fence(payload: str) -> str:
    """Remove Markdown-style code fences that wrap JSON payloads."""
    if not payload.startswith("```"):
        return payload
    fence_header_match = re.match(r"```(?:json)?", payload[:10], re.IGNORECASE)
    if not fence_header_match:
        return payload
    fence_end = payload.find("```", len(fence_header_match.group(0)))
    if fence_end == -1:
        return payload
    content_start = payload.find("\n", len(fence_header_match.group(0)))
    if content_start == -1:
        return payload
    return payload[content_start + 1 : fence_end].strip()


def _strip_trailing_commas(payload: str) -> str:
    """Remove trailing commas before closing braces/brackets."""
    if not payload:
        return payload
    return re.sub(r",(\s*[}\]])", r"\1", payload)


def _extract_fenced_json(raw: str) -> str | None:
    """Return the body of the first ```json fence found anywhere in ``raw``."""
    match = re.search(r"```json\s*\n(?P<body>.*?)```", raw, re.IGNORECASE | re.DOTALL)
    if match:
        return match.group("body").strip()
    return None


def _repair_json_payload(raw: str) -> str | None:
    """Attempt to salvage a JSON object embedded in surrounding prose."""
    stripped = _strip_code_fence(raw.strip())
    if stripped == raw.strip() and "```" in raw:
        stripped = _extract_fenced_json(raw) or stripped
    if not stripped:
        return None

    try:
        json.loads(stripped)
    except json.JSONDecodeError:
        pass
    else:
        return stripped

    opening_idx = None
    expected: list[str] = []
    in_string = False
    escaped = False
    for index, char in enumerate(stripped):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"' and opening_idx is not None:
            in_string = True
        elif char in "{[":
            if opening_idx is None:
                opening_idx = index
            expected.append("}" if char == "{" else "]")
        elif expected and char == expected[-1]:
            expected.pop()
            if not expected and opening_idx is not None:
                candidate = stripped[opening_idx : index + 1]
                return _strip_trailing_commas(candidate.strip())
    return None


def load_payload(raw: str) -> Any:
    """Parse a producer response into JSON data, tolerating fences and prose."""
    text = (raw or "").strip()
    if not text:
        raise MalformedProposal("Producer returned an empty response.")

    candidates = [text]
    repaired = _repair_json_payload(text)
    if repaired and repaired not in candidates:
        candidates.append(repaired)

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    raise MalformedProposal(
        "Producer response is not valid JSON.",
        details={"snippet": text[:200]},
    )


def _declared_kind(item: Mapping[str, Any]) -> str | None:
    for key in _KIND_KEYS:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip().lower()
    return None


def iter_payload_items(
    payload: Any,
    kind: ProducerKind | None = None,
) -> Iterator[tuple[Any, ProducerKind | None]]:
    """Yield ``(item, kind)`` pairs from any supported producer envelope."""
    if isinstance(payload, list):
        for item in payload:
            yield item, kind
        return
    if not isinstance(payload, Mapping):
        yield payload, kind
        return

    if _declared_kind(payload) or "text" in payload or "taskText" in payload:
        yield payload, kind
        return

    matched = False
    for key, envelope_kind in _ENVELOPES.items():
        items = payload.get(key)
        if isinstance(items, list):
            matched = True
            fallback = ProducerKind.HARVEST if key == "tasks" else None
            for item in items:
                yield item, envelope_kind or kind or fallback

    standalone = payload.get("standaloneTasks") or payload.get("standalone_tasks")
    if isinstance(standalone, list) and standalone:
        matched = True
        yield {"sliceRef": None, "tasks": standalone}, ProducerKind.ARCHIVE

    selected = payload.get("selectedTask") or payload.get("selected_task")
    if isinstance(selected, Mapping):
        matched = True
        item = dict(selected)
        if payload.get("reasoning") and "reasoning" not in item:
            item["reasoning"] = payload["reasoning"]
        yield item, ProducerKind.PROMOTION

    if not matched:
        LOGGER.debug("Producer payload has no recognised envelope keys: %s", sorted(payload))


def decode_proposals(
    payload: Any,
    *,
    kind: ProducerKind | str | None = None,
    id_prefix: str | None = None,
) -> DecodedBatch:
    """Validate every proposal in ``payload``; invalid entries are reported, not raised.

    ``payload`` may be raw producer text or already-decoded JSON data.
    """
    default_kind = ProducerKind(kind) if kind is not None else None
    batch = DecodedBatch()
    if isinstance(payload, str):
        try:
            payload = load_payload(payload)
        except MalformedProposal as error:
            batch.rejected.append(RejectedProposal(proposal_id="", reason=str(error), details=error.details))
            return batch

    for index, (item, item_kind) in enumerate(iter_payload_items(payload, default_kind), start=1):
        if not isinstance(item, Mapping):
            batch.rejected.append(
                RejectedProposal(
                    proposal_id=f"{id_prefix or 'proposal'}-{index}",
                    reason="Proposal payload must be a mapping.",
                    details={"type": type(item).__name__},
                )
            )
            continue
        data = dict(item)
        resolved_kind = _declared_kind(data) or (item_kind.value if item_kind else None)
        if not data.get("id"):
            data["id"] = f"{id_prefix or resolved_kind or 'proposal'}-{index}"
        try:
            batch.proposals.append(parse_proposal(data, kind=item_kind))
        except MalformedProposal as error:
            LOGGER.debug("Dropping malformed proposal %s: %s", data["id"], error)
            batch.rejected.append(RejectedProposal(proposal_id=str(data["id"]), reason=str(error), details=error.details))
    return batch


def decode_many(payloads: Sequence[Any], *, kind: ProducerKind | str | None = None) -> DecodedBatch:
    """Decode several producer responses into one batch."""
    combined = DecodedBatch()
    for position, payload in enumerate(payloads, start=1):
        batch = decode_proposals(payload, kind=kind, id_prefix=f"batch{position}" if len(payloads) > 1 else None)
        combined.proposals.extend(batch.proposals)
        combined.rejected.extend(batch.rejected)
    return combined


__all__ = ["DecodedBatch", "decode_many", "decode_proposals", "iter_payload_items", "load_payload"]

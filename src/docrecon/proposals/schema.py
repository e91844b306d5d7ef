"""Typed producer proposals consumed by the normalizer."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from ..document.markers import clean_heading
from ..document.model import ProvenanceMarker
from ..errors import MalformedProposal

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_SHORT_SHA = 7

# Field names used by individual producers for the same concept.
_KEY_ALIASES: Mapping[str, str] = {
    "kind": "producer_kind",
    "producer": "producer_kind",
    "task_text": "text",
    "task": "text",
    "destination": "suggested_destination",
    "slice_link": "suggested_slice_link",
    "slice_ref_link": "suggested_slice_link",
    "sha": "commit_sha",
    "date": "source_date",
    "heading": "idea_heading",
}


class ProducerKind(str, Enum):
    """Producers that emit change proposals."""

    HARVEST = "harvest"
    IDEA = "idea"
    COMMIT = "commit"
    ARCHIVE = "archive"
    PROMOTION = "promotion"


class ProposalModel(BaseModel):
    """Base model shared by every proposal variant."""

    model_config = ConfigDict(extra="ignore", frozen=True, str_strip_whitespace=True)

    id: str = ""
    source_file: Optional[str] = None
    source_context: Optional[str] = None
    suggested_destination: Optional[str] = None
    suggested_slice_link: Optional[str] = None
    reasoning: Optional[str] = None
    existing_similar: Optional[str] = None

    @field_validator(
        "source_file",
        "source_context",
        "suggested_destination",
        "suggested_slice_link",
        "reasoning",
        "existing_similar",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, str):
            value = str(value)
        return value.strip() or None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @property
    def kind(self) -> ProducerKind:
        return ProducerKind(getattr(self, "producer_kind"))

    @property
    def context(self) -> str | None:
        return self.source_context

    @property
    def provenance(self) -> ProvenanceMarker | None:
        """Marker identifying where this proposal came from, when known."""
        if not self.source_file:
            return None
        return ProvenanceMarker(source_file=self.source_file, source_context=self.context)


class HarvestProposal(ProposalModel):
    """Task mined from a freeform document such as the log."""

    producer_kind: Literal["harvest"] = "harvest"
    text: str = Field(min_length=1)
    source_date: Optional[str] = None
    suggested_vs_name: Optional[str] = None

    @property
    def context(self) -> str | None:
        # Log entries are keyed by their date; the quote is only for review.
        return self.source_date or self.source_context


class IdeaProposal(ProposalModel):
    """Actionable task derived from a heading in the ideas document."""

    producer_kind: Literal["idea"] = "idea"
    text: str = Field(min_length=1)
    source_file: Optional[str] = "Ideas.md"
    idea_heading: Optional[str] = None
    idea_context: Optional[str] = None

    @property
    def context(self) -> str | None:
        if self.source_context:
            return self.source_context
        if self.idea_heading:
            return clean_heading(self.idea_heading) or None
        return None


class CommitProposal(ProposalModel):
    """Commit matched to an open task."""

    producer_kind: Literal["commit"] = "commit"
    text: str = Field(min_length=1)
    source_file: Optional[str] = "git"
    commit_sha: str = Field(min_length=4)
    commit_title: Optional[str] = None
    commit_date: Optional[str] = None
    task_section: Optional[str] = None
    confidence: Literal["high", "medium", "low"] = "medium"
    action: Literal["mark-complete", "mark-archive", "skip"] = "mark-complete"

    @field_validator("confidence", "action", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower().replace("_", "-")
        return value

    @property
    def short_sha(self) -> str:
        return self.commit_sha[:_SHORT_SHA]

    @property
    def context(self) -> str | None:
        return self.source_context or self.short_sha


class ArchivedTask(BaseModel):
    """Completed task listed inside an archive group."""

    model_config = ConfigDict(extra="ignore", frozen=True, str_strip_whitespace=True)

    text: str = Field(min_length=1)
    line_number: Optional[int] = None
    full_line: Optional[str] = None
    section: Optional[str] = None


class ArchiveProposal(ProposalModel):
    """Completed tasks grouped by slice, to be moved into the archive."""

    producer_kind: Literal["archive"] = "archive"
    text: str = ""
    source_file: Optional[str] = "Tasks.md"
    slice_ref: Optional[str] = None
    slice_name: Optional[str] = None
    summary: Optional[str] = None
    tasks: Tuple[ArchivedTask, ...] = Field(min_length=1)

    @field_validator("slice_ref", "slice_name", "summary", mode="before")
    @classmethod
    def _blank_optional(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @property
    def provenance(self) -> ProvenanceMarker | None:
        return None


class PromotionProposal(ProposalModel):
    """Existing task promoted into a higher-priority section."""

    producer_kind: Literal["promotion"] = "promotion"
    text: str = Field(min_length=1)
    source_section: Optional[str] = None
    suggested_destination: Optional[str] = "Now"

    @property
    def provenance(self) -> ProvenanceMarker | None:
        return None


@dataclass(slots=True)
class RejectedProposal:
    """Proposal dropped from a batch, with the reason it was dropped."""

    proposal_id: str
    reason: str
    details: Mapping[str, Any] = field(default_factory=dict)


ChangeProposal = Annotated[
    Union[HarvestProposal, IdeaProposal, CommitProposal, ArchiveProposal, PromotionProposal],
    Field(discriminator="producer_kind"),
]

PROPOSAL_ADAPTER: TypeAdapter[Any] = TypeAdapter(ChangeProposal)


def snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).replace("-", "_").lower()


def _normalise_keys(value: Any) -> Any:
    if isinstance(value, Mapping):
        result: dict[str, Any] = {}
        for key, child in value.items():
            name = snake_case(str(key))
            name = _KEY_ALIASES.get(name, name)
            if name in result:
                continue
            result[name] = _normalise_keys(child)
        return result
    if isinstance(value, (list, tuple)):
        return [_normalise_keys(item) for item in value]
    return value


def parse_proposal(payload: Mapping[str, Any], *, kind: str | ProducerKind | None = None) -> Any:
    """Validate ``payload`` (camel or snake case keys) as a :data:`ChangeProposal`."""
    if not isinstance(payload, Mapping):
        raise MalformedProposal(
            "Proposal payload must be a mapping.",
            details={"type": type(payload).__name__},
        )
    data = _normalise_keys(payload)
    if kind is not None and not data.get("producer_kind"):
        data["producer_kind"] = ProducerKind(kind).value
    if isinstance(data.get("producer_kind"), str):
        data["producer_kind"] = data["producer_kind"].strip().lower()
    try:
        return PROPOSAL_ADAPTER.validate_python(data)
    except ValidationError as error:
        fields = sorted(
            {".".join(str(part) for part in item.get("loc", ())) for item in error.errors()} - {""}
        )
        raise MalformedProposal(
            f"Invalid {data.get('producer_kind') or 'unknown'} proposal: {', '.join(fields) or 'payload'}",
            details={"id": data.get("id"), "fields": fields},
        ) from error


__all__ = [
    "ArchiveProposal",
    "ArchivedTask",
    "ChangeProposal",
    "CommitProposal",
    "HarvestProposal",
    "IdeaProposal",
    "PROPOSAL_ADAPTER",
    "ProducerKind",
    "PromotionProposal",
    "ProposalModel",
    "RejectedProposal",
    "parse_proposal",
    "snake_case",
]

"""Convert heterogeneous producer proposals into placement selections."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence

from ..document.markers import clean_heading, parse_slice_link
from ..errors import MalformedProposal
from ..structured import DEFAULT_DOCUMENT, PlacementSelection, TaskLocator
from .schema import (
    ArchiveProposal,
    CommitProposal,
    HarvestProposal,
    IdeaProposal,
    PromotionProposal,
    ProposalModel,
    RejectedProposal,
    parse_proposal,
)

LOGGER = logging.getLogger(__name__)

DISCARD = "discard"
DEFAULT_DESTINATION = "Later"
DEFAULT_ARCHIVE_DOCUMENT = "Archive.md"
DEFAULT_ARCHIVE_SECTION = "Completed Work"
DEFAULT_ARCHIVE_GROUP = "Completed Tasks"
ACTIVE_SLICES = "Active Vertical Slices"
PLANNED_SLICES = "Planned Slices"

# Producer destination slugs mapped to section names.
DESTINATION_ALIASES: Mapping[str, str] = {
    "now": "Now",
    "current": "Current",
    "next": "Next",
    "next-actions": "Next",
    "next-1-3-actions": "Next",
    "later": "Later",
    "future": "Future Tasks",
    "future-tasks": "Future Tasks",
    "potential-future-tasks": "Future Tasks",
    "blocked": "Blocked",
    "done": "Done",
    "active-vs": ACTIVE_SLICES,
    "active-slice": ACTIVE_SLICES,
    "new-planned-slice": PLANNED_SLICES,
    "existing-planned-slice": PLANNED_SLICES,
    "planned-slice": PLANNED_SLICES,
    "archive": DEFAULT_ARCHIVE_SECTION,
}


def destination_slug(value: str) -> str:
    return "-".join(clean_heading(value).lower().replace("_", "-").split())


def resolve_destination(value: str | None, default: str = DEFAULT_DESTINATION) -> str:
    """Map a producer destination (slug or section name) to a section name."""
    if value is None or not value.strip():
        return default
    slug = destination_slug(value)
    if slug == DISCARD:
        return DISCARD
    if slug in DESTINATION_ALIASES:
        return DESTINATION_ALIASES[slug]
    return clean_heading(value)


@dataclass(slots=True, frozen=True)
class SelectionOverride:
    """Human adjustment applied to a proposal before it is normalized."""

    proposal_id: str
    destination: Optional[str] = None
    slice_link: Optional[str] = None
    text: Optional[str] = None
    subsection: Optional[str] = None
    discard: bool = False

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "SelectionOverride":
        proposal_id = payload.get("proposal_id") or payload.get("proposalId") or payload.get("taskId")
        if not proposal_id:
            raise MalformedProposal("Selection override is missing a proposal id.", details=dict(payload))

        def _optional(*keys: str) -> Optional[str]:
            for key in keys:
                value = payload.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
            return None

        destination = _optional("destination")
        return cls(
            proposal_id=str(proposal_id),
            destination=destination,
            slice_link=_optional("slice_link", "sliceLink"),
            text=_optional("text", "customText", "custom_text"),
            subsection=_optional("subsection", "targetVS", "target_vs", "sliceName", "slice_name"),
            discard=bool(payload.get("discard")) or (destination is not None and destination_slug(destination) == DISCARD),
        )


@dataclass(slots=True)
class NormalizationResult:
    """Selections produced from a batch plus the proposals that were dropped."""

    selections: list[PlacementSelection] = field(default_factory=list)
    rejected: list[RejectedProposal] = field(default_factory=list)

    @property
    def active(self) -> list[PlacementSelection]:
        return [selection for selection in self.selections if not selection.discard]

    def for_document(self, document: str) -> list[PlacementSelection]:
        wanted = document.casefold()
        return [selection for selection in self.selections if selection.document.casefold() == wanted]

    def documents(self) -> list[str]:
        names: list[str] = []
        for selection in self.selections:
            if selection.document not in names:
                names.append(selection.document)
        return names


@dataclass(slots=True)
class ProposalNormalizer:
    """Exhaustive mapping from each producer kind to placement selections."""

    default_destination: str = DEFAULT_DESTINATION
    tasks_document: str = DEFAULT_DOCUMENT
    archive_document: str = DEFAULT_ARCHIVE_DOCUMENT
    archive_section: str = DEFAULT_ARCHIVE_SECTION

    @classmethod
    def from_settings(cls, settings: Any) -> "ProposalNormalizer":
        return cls(
            default_destination=settings.default_destination,
            tasks_document=settings.documents.tasks,
            archive_document=settings.documents.archive,
            archive_section=settings.archive_section,
        )

    def normalize(
        self,
        proposals: Iterable[Any],
        overrides: Iterable[SelectionOverride] | Mapping[str, SelectionOverride] | None = None,
    ) -> NormalizationResult:
        result = NormalizationResult()
        override_map = _index_overrides(overrides)
        for index, raw in enumerate(proposals, start=1):
            try:
                proposal = raw if isinstance(raw, ProposalModel) else parse_proposal(raw)
            except MalformedProposal as error:
                proposal_id = str(raw.get("id") or f"proposal-{index}") if isinstance(raw, Mapping) else f"proposal-{index}"
                LOGGER.debug("Rejected proposal %s: %s", proposal_id, error)
                result.rejected.append(RejectedProposal(proposal_id, str(error), error.details))
                continue

            proposal_id = proposal.id or f"{proposal.kind.value}-{index}"
            override = override_map.get(proposal_id)
            try:
                result.selections.extend(self._normalize_one(proposal, proposal_id, override))
            except MalformedProposal as error:
                result.rejected.append(RejectedProposal(proposal_id, str(error), error.details))
        return result

    def _normalize_one(
        self,
        proposal: ProposalModel,
        proposal_id: str,
        override: SelectionOverride | None,
    ) -> list[PlacementSelection]:
        if isinstance(proposal, (HarvestProposal, IdeaProposal)):
            return [self._insertion(proposal, proposal_id, override)]
        if isinstance(proposal, CommitProposal):
            return self._commit(proposal, proposal_id, override)
        if isinstance(proposal, ArchiveProposal):
            return self._archive(proposal, proposal_id, override)
        if isinstance(proposal, PromotionProposal):
            return [self._promotion(proposal, proposal_id, override)]
        raise MalformedProposal(
            f"Unsupported proposal type: {type(proposal).__name__}",
            details={"id": proposal_id},
        )

    def _discarded(self, proposal_id: str, text: str, document: str) -> PlacementSelection:
        return PlacementSelection(
            source_proposal_id=proposal_id,
            final_text=text,
            destination_section=None,
            discard=True,
            document=document,
        )

    def _insertion(
        self,
        proposal: HarvestProposal | IdeaProposal,
        proposal_id: str,
        override: SelectionOverride | None,
    ) -> PlacementSelection:
        text = (override.text if override and override.text else proposal.text).strip()
        raw_destination = override.destination if override and override.destination else proposal.suggested_destination
        destination = resolve_destination(raw_destination, self.default_destination)
        if (override and override.discard) or destination == DISCARD:
            return self._discarded(proposal_id, text, self.tasks_document)

        link_value = override.slice_link if override and override.slice_link else proposal.suggested_slice_link
        slice_link = parse_slice_link(link_value)
        subsection = override.subsection if override and override.subsection else None
        if subsection is None and destination in (ACTIVE_SLICES, PLANNED_SLICES):
            if slice_link is not None:
                subsection = slice_link.slice_id
            elif isinstance(proposal, HarvestProposal) and proposal.suggested_vs_name:
                subsection = proposal.suggested_vs_name

        return PlacementSelection(
            source_proposal_id=proposal_id,
            final_text=text,
            destination_section=destination,
            slice_link=slice_link,
            document=self.tasks_document,
            provenance=proposal.provenance,
            subsection=subsection,
        )

    def _commit(
        self,
        proposal: CommitProposal,
        proposal_id: str,
        override: SelectionOverride | None,
    ) -> list[PlacementSelection]:
        if (override and override.discard) or proposal.action == "skip":
            return [self._discarded(proposal_id, proposal.text, self.tasks_document)]

        marker = proposal.provenance
        locator = TaskLocator(text=proposal.text, section=proposal.task_section)
        selections = [
            PlacementSelection(
                source_proposal_id=proposal_id,
                final_text=proposal.text,
                destination_section=None,
                document=self.tasks_document,
                checked=True,
                origin=locator,
                provenance=marker,
            )
        ]
        if proposal.action == "mark-archive":
            slice_link = parse_slice_link(proposal.suggested_slice_link)
            selections.append(
                PlacementSelection(
                    source_proposal_id=proposal_id,
                    final_text=proposal.text,
                    destination_section=self.archive_section,
                    slice_link=slice_link,
                    document=self.archive_document,
                    checked=True,
                    provenance=marker,
                    subsection=_archive_group(slice_link.target if slice_link else None),
                )
            )
        return selections

    def _archive(
        self,
        proposal: ArchiveProposal,
        proposal_id: str,
        override: SelectionOverride | None,
    ) -> list[PlacementSelection]:
        if override and override.discard:
            return [self._discarded(proposal_id, proposal.slice_ref or proposal.text, self.tasks_document)]
        group = _archive_group(override.subsection if override and override.subsection else proposal.slice_ref)
        section = resolve_destination(proposal.suggested_destination, self.archive_section)
        selections: list[PlacementSelection] = []
        for task in proposal.tasks:
            slice_link = parse_slice_link(task.full_line) if task.full_line else None
            selections.append(
                PlacementSelection(
                    source_proposal_id=proposal_id,
                    final_text=task.text,
                    destination_section=None,
                    document=self.tasks_document,
                    checked=True,
                    origin=TaskLocator(text=task.text, section=task.section, line_number=task.line_number),
                    remove=True,
                )
            )
            selections.append(
                PlacementSelection(
                    source_proposal_id=proposal_id,
                    final_text=task.text,
                    destination_section=section,
                    slice_link=slice_link,
                    document=self.archive_document,
                    checked=True,
                    subsection=group,
                )
            )
        return selections

    def _promotion(
        self,
        proposal: PromotionProposal,
        proposal_id: str,
        override: SelectionOverride | None,
    ) -> PlacementSelection:
        destination = resolve_destination(
            override.destination if override and override.destination else proposal.suggested_destination,
            "Now",
        )
        if (override and override.discard) or destination == DISCARD:
            return self._discarded(proposal_id, proposal.text, self.tasks_document)
        link_value = override.slice_link if override and override.slice_link else proposal.suggested_slice_link
        return PlacementSelection(
            source_proposal_id=proposal_id,
            final_text=override.text if override and override.text else proposal.text,
            destination_section=destination,
            slice_link=parse_slice_link(link_value),
            document=self.tasks_document,
            origin=TaskLocator(text=proposal.text, section=_source_section(proposal.source_section)),
        )


def _archive_group(value: str | None) -> str:
    cleaned = clean_heading(value or "")
    return cleaned or DEFAULT_ARCHIVE_GROUP


def _source_section(value: str | None) -> str | None:
    if not value:
        return None
    resolved = resolve_destination(value, "")
    return resolved or None


def _index_overrides(
    overrides: Iterable[SelectionOverride] | Mapping[str, SelectionOverride] | None,
) -> dict[str, SelectionOverride]:
    if overrides is None:
        return {}
    if isinstance(overrides, Mapping):
        return dict(overrides)
    return {override.proposal_id: override for override in overrides}


def normalize(
    proposals: Sequence[Any],
    overrides: Iterable[SelectionOverride] | Mapping[str, SelectionOverride] | None = None,
    *,
    normalizer: ProposalNormalizer | None = None,
) -> NormalizationResult:
    """Normalize ``proposals`` with the default (or supplied) normalizer."""
    return (normalizer or ProposalNormalizer()).normalize(proposals, overrides)


__all__ = [
    "DESTINATION_ALIASES",
    "DISCARD",
    "NormalizationResult",
    "ProposalNormalizer",
    "SelectionOverride",
    "normalize",
    "resolve_destination",
]

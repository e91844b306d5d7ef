"""End-to-end reconciliation of proposals against documents on disk."""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Sequence

from ..config import ReconcileSettings
from ..document.markers import text_key
from ..document.model import SliceReference, TaskItem
from ..document.roadmap import Roadmap, parse_roadmap
from ..errors import MalformedProposal
from ..proposals.normalizer import NormalizationResult, ProposalNormalizer, SelectionOverride
from ..proposals.schema import ProposalModel, RejectedProposal, parse_proposal
from ..provenance import ProvenanceTracker
from ..structured import PlacementSelection
from ..telemetry import emit_event
from .applier import ApplyResult, PatchApplier
from .diff import DiffBlock, DiffEngine, HunkStatus
from .resolver import InsertionPlan, PlacementResolver, SkippedSelection

LOGGER = logging.getLogger(__name__)

_REGISTRY_LOCK = threading.Lock()
_DOCUMENT_LOCKS: dict[str, threading.Lock] = {}


def document_lock(path: Path) -> threading.Lock:
    """Return the process-wide lock that serializes writers of ``path``."""
    key = os.path.normcase(str(Path(path).resolve()))
    with _REGISTRY_LOCK:
        lock = _DOCUMENT_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _DOCUMENT_LOCKS[key] = lock
        return lock


def read_document(path: Path) -> str:
    """Read ``path`` exactly as stored; a missing document reads as empty."""
    if not path.exists():
        return ""
    with path.open("r", encoding="utf-8", newline="") as handle:
        return handle.read()


def write_atomic(path: Path, text: str) -> None:
    """Write ``text`` through a temporary sibling file and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        newline="",
        delete=False,
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
    ) as handle:
        handle.write(text)
        handle.flush()
        temp_path = Path(handle.name)
    try:
        os.replace(temp_path, path)
    except OSError:
        temp_path.unlink(missing_ok=True)
        raise


@dataclass(slots=True)
class DocumentChange:
    """Planned (and possibly written) change to a single document."""

    document: str
    path: Path
    original: str
    plan: InsertionPlan
    result: ApplyResult
    block: DiffBlock
    written: bool = False
    final_text: str | None = None

    @property
    def proposed(self) -> str:
        return self.result.text

    @property
    def changed(self) -> bool:
        return self.original != self.result.text


@dataclass(slots=True)
class ReconcileOutcome:
    """Everything one reconciliation run produced, for review or reporting."""

    changes: list[DocumentChange] = field(default_factory=list)
    suppressed: list[tuple[Any, TaskItem]] = field(default_factory=list)
    rejected: list[RejectedProposal] = field(default_factory=list)
    selections: list[PlacementSelection] = field(default_factory=list)
    proposals: list[Any] = field(default_factory=list)
    unresolved_links: list[tuple[str, SliceReference]] = field(default_factory=list)

    @property
    def blocks(self) -> list[DiffBlock]:
        return [change.block for change in self.changes if not change.block.is_empty]

    @property
    def skipped(self) -> list[SkippedSelection]:
        return [item for change in self.changes for item in change.plan.skipped]

    def iter_hunks(self) -> Iterator[tuple[DocumentChange, int]]:
        """Yield ``(change, hunk_index)`` in display order."""
        for change in self.changes:
            for index in range(len(change.block.hunks)):
                yield change, index

    def accept(self, numbers: Iterable[int]) -> None:
        """Accept hunks by their 1-based display number across all blocks."""
        wanted = set(numbers)
        for number, (change, index) in enumerate(self.iter_hunks(), start=1):
            if number in wanted:
                change.block.accept(index)
        known = sum(1 for _ in self.iter_hunks())
        unknown = sorted(number for number in wanted if number < 1 or number > known)
        if unknown:
            raise IndexError(f"Unknown hunk number(s): {', '.join(str(number) for number in unknown)}")

    def accept_all(self) -> None:
        for change in self.changes:
            change.block.accept_all()


class ReconcileSession:
    """Read, plan, preview and write documents for one project root.

    Planning is pure; writes to one document path are serialized through a
    shared per-path lock so concurrent sessions never interleave.
    """

    def __init__(self, settings: ReconcileSettings | None = None, *, root: Path | None = None) -> None:
        settings = settings or ReconcileSettings()
        if root is not None:
            settings = replace(settings, root=Path(root))
        self.settings = settings
        self.parser = self.settings.parser()
        self.normalizer = ProposalNormalizer.from_settings(self.settings)
        self.resolver = PlacementResolver.from_settings(self.settings)
        self.applier = PatchApplier(fingerprint_width=self.settings.fingerprint_width)
        self.engine = DiffEngine(context_lines=self.settings.context_lines)

    @classmethod
    def from_config(cls, config: Mapping[str, Any], *, base_path: Path | None = None) -> "ReconcileSession":
        return cls(ReconcileSettings.from_config(config, base_path=base_path))

    def path_for(self, document: str) -> Path:
        return self.settings.document_path(document)

    def read(self, document: str) -> str:
        return read_document(self.path_for(document))

    def _coerce(self, proposals: Iterable[Any], outcome: ReconcileOutcome) -> list[ProposalModel]:
        models: list[ProposalModel] = []
        for index, raw in enumerate(proposals, start=1):
            if isinstance(raw, ProposalModel):
                models.append(raw)
                continue
            try:
                models.append(parse_proposal(raw))
            except MalformedProposal as error:
                proposal_id = str(raw.get("id") or f"proposal-{index}") if isinstance(raw, Mapping) else f"proposal-{index}"
                outcome.rejected.append(RejectedProposal(proposal_id, str(error), error.details))
        return models

    def _suppress(self, models: list[ProposalModel], outcome: ReconcileOutcome) -> list[ProposalModel]:
        tasks_name = self.settings.documents.tasks
        tracker = ProvenanceTracker(self.parser.parse(self.read(tasks_name)))
        partition = tracker.partition(models)
        for proposal, existing in partition.applied:
            LOGGER.info(
                "Suppressing proposal %s: already applied in section '%s' (line %d)",
                proposal.id,
                existing.section,
                existing.line_number + 1,
            )
        outcome.suppressed.extend(partition.applied)
        return partition.fresh

    def roadmap(self) -> Roadmap | None:
        """Parse the configured roadmap document, or return None when it does not exist."""
        path = self.path_for(self.settings.documents.roadmap)
        if not path.exists():
            return None
        return parse_roadmap(read_document(path))

    def _check_links(self, selections: Sequence[PlacementSelection]) -> list[tuple[str, SliceReference]]:
        links = [
            (selection.source_proposal_id, selection.slice_link)
            for selection in selections
            if selection.slice_link is not None and not selection.discard
        ]
        if not links:
            return []
        roadmap = self.roadmap()
        if roadmap is None:
            LOGGER.debug("No roadmap document; %d slice link(s) left unchecked", len(links))
            return []
        container = Path(self.settings.documents.roadmap).stem.casefold()
        unresolved: list[tuple[str, SliceReference]] = []
        for proposal_id, link in links:
            if link.container.strip().casefold() != container:
                continue
            if roadmap.resolve(link) is None:
                LOGGER.warning("Proposal %s links to %s, which the roadmap does not define", proposal_id, link.render())
                unresolved.append((proposal_id, link))
        if unresolved:
            emit_event("slice_links_unresolved", count=len(unresolved))
        return unresolved

    def normalize(
        self,
        proposals: Iterable[Any],
        overrides: Iterable[SelectionOverride] | Mapping[str, SelectionOverride] | None = None,
    ) -> tuple[ReconcileOutcome, NormalizationResult]:
        outcome = ReconcileOutcome()
        models = self._coerce(proposals, outcome)
        outcome.proposals = list(models)
        fresh = self._suppress(models, outcome)
        normalized = self.normalizer.normalize(fresh, overrides)
        outcome.rejected.extend(normalized.rejected)
        outcome.selections = list(normalized.selections)
        outcome.unresolved_links = self._check_links(outcome.selections)
        return outcome, normalized

    def _ordered_documents(self, normalized: NormalizationResult) -> list[str]:
        names = normalized.documents()
        tasks = self.settings.documents.tasks
        if tasks in names:
            names.remove(tasks)
            names.insert(0, tasks)
        return names

    def _plan_document(self, document: str, text: str, selections: Sequence[PlacementSelection]) -> DocumentChange:
        parsed = self.parser.parse(text)
        plan = self.resolver.resolve(parsed, selections)
        result = self.applier.apply(text, plan)
        block = self.engine.diff(text, result.text, path=document)
        self.engine.tag_groups(block, result.applied)
        return DocumentChange(
            document=document,
            path=self.path_for(document),
            original=text,
            plan=plan,
            result=result,
            block=block,
        )

    def _carry_removed(
        self,
        selections: list[PlacementSelection],
        removals: Mapping[str, list[PlacementSelection]],
        previous: DocumentChange | None,
    ) -> list[PlacementSelection]:
        """Attach sub-items and markers of tasks removed elsewhere in this run."""
        if previous is None:
            return selections
        applied_lines = {
            (directive.source_proposal_id, directive.start_line)
            for directive in previous.result.applied
            if directive.action == "delete"
        }
        stale_lines = {
            (problem.directive.source_proposal_id, problem.directive.start_line)
            for problem in previous.result.stale
            if problem.directive.action == "delete"
        }
        removed: dict[tuple[str, str], TaskItem] = {}
        stale: set[tuple[str, str]] = set()
        for proposal_id, item in previous.plan.removed:
            key = (proposal_id, text_key(item.text))
            if (proposal_id, item.line_number) in applied_lines:
                removed[key] = item
            elif (proposal_id, item.line_number) in stale_lines:
                stale.add(key)
        for skipped in previous.plan.skipped:
            if skipped.reason == "origin not found":
                stale.add((skipped.source_proposal_id, text_key(skipped.text)))

        carried: list[PlacementSelection] = []
        for selection in selections:
            if selection.source_proposal_id not in removals:
                carried.append(selection)
                continue
            key = (selection.source_proposal_id, text_key(selection.final_text))
            if key in stale:
                LOGGER.warning("Not archiving '%s': its removal was not applied", selection.final_text)
                continue
            item = removed.get(key)
            if item is None:
                carried.append(selection)
                continue
            carried.append(
                replace(
                    selection,
                    slice_link=selection.slice_link or item.slice_link,
                    sub_items=item.sub_items,
                    extra_markers=item.markers,
                )
            )
        return carried

    def _run(self, normalized: NormalizationResult, outcome: ReconcileOutcome, *, write: bool) -> ReconcileOutcome:
        removals: dict[str, list[PlacementSelection]] = {}
        for selection in normalized.selections:
            if selection.remove:
                removals.setdefault(selection.source_proposal_id, []).append(selection)

        tasks_change: DocumentChange | None = None
        for document in self._ordered_documents(normalized):
            selections = normalized.for_document(document)
            if document != self.settings.documents.tasks:
                selections = self._carry_removed(selections, removals, tasks_change)
            path = self.path_for(document)
            if write:
                with document_lock(path):
                    change = self._plan_document(document, read_document(path), selections)
                    if change.changed:
                        write_atomic(path, change.result.text)
                        change.written = True
                        change.final_text = change.result.text
                        emit_event("document_written", path=path, applied=len(change.result.applied))
            else:
                change = self._plan_document(document, read_document(path), selections)
            if document == self.settings.documents.tasks:
                tasks_change = change
            outcome.changes.append(change)
        return outcome

    def preview(
        self,
        proposals: Iterable[Any],
        overrides: Iterable[SelectionOverride] | Mapping[str, SelectionOverride] | None = None,
    ) -> ReconcileOutcome:
        """Plan every affected document without writing anything."""
        outcome, normalized = self.normalize(proposals, overrides)
        return self._run(normalized, outcome, write=False)

    def apply(
        self,
        proposals: Iterable[Any],
        overrides: Iterable[SelectionOverride] | Mapping[str, SelectionOverride] | None = None,
    ) -> ReconcileOutcome:
        """Plan and write every affected document, one locked read/modify/write each."""
        outcome, normalized = self.normalize(proposals, overrides)
        return self._run(normalized, outcome, write=True)

    def commit(self, outcome: ReconcileOutcome) -> list[Path]:
        """Write the accepted hunks of a previewed outcome.

        Each document is re-read under its lock; if it changed since the
        preview, accepted hunks are relocated against the current text.
        """
        written: list[Path] = []
        for change in outcome.changes:
            accepted = [hunk for hunk in change.block.hunks if hunk.status is HunkStatus.ACCEPTED]
            if not accepted:
                continue
            with document_lock(change.path):
                current = read_document(change.path)
                final = self.engine.apply_accepted(change.block, current)
                for hunk in change.block.hunks:
                    if hunk.error:
                        LOGGER.warning("Hunk %s in %s not applied: %s", hunk.header(), change.document, hunk.error)
                if final == current:
                    continue
                write_atomic(change.path, final)
            change.written = True
            change.final_text = final
            written.append(change.path)
            emit_event("document_written", path=change.path, hunks=len(accepted))
        return written


__all__ = [
    "DocumentChange",
    "ReconcileOutcome",
    "ReconcileSession",
    "document_lock",
    "read_document",
    "write_atomic",
]

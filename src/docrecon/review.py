"""Persist review sessions as JSON logs and reopen them to show history."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from .document.model import Document
from .errors import MalformedProposal
from .proposals.schema import parse_proposal
from .provenance import HistoryEntry, history
from .reconcile.pipeline import ReconcileOutcome
from .structured import PlacementSelection
from .telemetry import serialise_event_value

LOGGER = logging.getLogger(__name__)

__all__ = ["ReviewSession", "load_review_session", "new_session_id", "save_review_session", "session_payload"]


def new_session_id() -> str:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    return f"review__{timestamp}__{uuid.uuid4().hex[:8]}"


def _selection_payload(selection: PlacementSelection) -> dict[str, Any]:
    return {
        "source_proposal_id": selection.source_proposal_id,
        "final_text": selection.final_text,
        "destination_section": selection.destination_section,
        "slice_link": selection.slice_link.render() if selection.slice_link else None,
        "discard": selection.discard,
        "document": selection.document,
        "checked": selection.checked,
        "remove": selection.remove,
        "subsection": selection.subsection,
        "provenance": selection.provenance.render() if selection.provenance else None,
    }


def session_payload(outcome: ReconcileOutcome, *, session_id: str) -> dict[str, Any]:
    """Return the JSON-safe record of a reconciliation run."""
    changes = []
    for change in outcome.changes:
        changes.append(
            {
                "document": change.document,
                "path": change.path.as_posix(),
                "written": change.written,
                "hunks": [
                    {
                        "header": hunk.header(),
                        "status": hunk.status.value,
                        "added": hunk.added,
                        "removed": hunk.removed,
                        "error": hunk.error,
                        "groups": list(hunk.groups),
                    }
                    for hunk in change.block.hunks
                ],
                "skipped": [
                    {"id": item.source_proposal_id, "text": item.text, "reason": item.reason}
                    for item in change.plan.skipped
                ],
                "stale": [
                    {
                        "action": problem.directive.action,
                        "start_line": problem.directive.start_line,
                        "reason": problem.reason,
                    }
                    for problem in change.result.stale
                ],
                "created_sections": list(change.plan.created_sections),
            }
        )
    return {
        "session_id": session_id,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "proposals": [proposal.model_dump(mode="json") for proposal in outcome.proposals],
        "selections": [_selection_payload(selection) for selection in outcome.selections],
        "suppressed": [
            {"id": getattr(proposal, "id", ""), "section": item.section, "line": item.line_number + 1}
            for proposal, item in outcome.suppressed
        ],
        "rejected": [
            {"id": item.proposal_id, "reason": item.reason, "details": serialise_event_value(item.details)}
            for item in outcome.rejected
        ],
        "changes": changes,
        "unresolved_links": [
            {"id": proposal_id, "link": link.render()} for proposal_id, link in outcome.unresolved_links
        ],
    }


def save_review_session(outcome: ReconcileOutcome, directory: Path, *, session_id: str | None = None) -> Path:
    """Write ``outcome`` to ``directory`` and return the log path."""
    identifier = session_id or new_session_id()
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / f"{identifier}.json"
    with log_path.open("w", encoding="utf-8") as handle:
        json.dump(session_payload(outcome, session_id=identifier), handle, indent=2, sort_keys=True, ensure_ascii=False)
    return log_path


@dataclass(slots=True)
class ReviewSession:
    """In-memory representation of a stored review session log."""

    path: Path
    session_id: str
    payload: Mapping[str, Any]

    @property
    def created_at(self) -> str | None:
        value = self.payload.get("created_at")
        return value if isinstance(value, str) else None

    @property
    def proposal_payloads(self) -> list[Mapping[str, Any]]:
        value = self.payload.get("proposals")
        if isinstance(value, list):
            return [item for item in value if isinstance(item, Mapping)]
        return []

    @property
    def changes(self) -> list[Mapping[str, Any]]:
        value = self.payload.get("changes")
        if isinstance(value, list):
            return [item for item in value if isinstance(item, Mapping)]
        return []

    def proposals(self) -> list[Any]:
        """Re-validate the stored proposals; entries that no longer validate are skipped."""
        models = []
        for payload in self.proposal_payloads:
            try:
                models.append(parse_proposal(payload))
            except MalformedProposal as error:
                LOGGER.debug("Skipping stored proposal in %s: %s", self.path.name, error)
        return models

    def history(self, document: Document) -> list[HistoryEntry]:
        """Annotate each stored proposal with where it lives in ``document`` now."""
        return history(document, self.proposals())


def load_review_session(path: Path | str) -> ReviewSession:
    """Load a stored review session log from disk."""
    log_path = Path(path).resolve()
    with log_path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    session_id = str(payload.get("session_id") or log_path.stem).strip()
    return ReviewSession(path=log_path, session_id=session_id, payload=payload)

from __future__ import annotations

from docrecon.document import parse
from docrecon.proposals import parse_proposal
from docrecon.provenance import ProvenanceTracker, find_existing, history, partition


def test_find_existing_matches_legacy_marker(tasks_text: str) -> None:
    document = parse(tasks_text)
    proposal = parse_proposal(
        {"kind": "harvest", "text": "Fix the bug", "sourceFile": "log.md", "sourceContext": " 2024-01-15 "}
    )

    found = find_existing(document, proposal)

    assert found is not None
    assert found.text == "Fix bug"
    assert found.section == "Later"


def test_partition_splits_fresh_and_applied(tasks_text: str) -> None:
    document = parse(tasks_text)
    applied = parse_proposal({"kind": "harvest", "text": "Draft schema", "sourceFile": "Log.md", "sourceDate": "2024-01-10"})
    fresh = parse_proposal({"kind": "harvest", "text": "Add CLI", "sourceFile": "Log.md", "sourceDate": "2024-02-01"})
    unmarked = parse_proposal({"kind": "promotion", "text": "Ship v1"})

    result = partition(document, [applied, fresh, unmarked])

    assert result.fresh == [fresh, unmarked]
    assert [(proposal, item.text) for proposal, item in result.applied] == [(applied, "Draft schema")]


def test_history_falls_back_to_text(tasks_text: str) -> None:
    document = parse(tasks_text)
    proposals = [
        parse_proposal({"kind": "harvest", "id": "a", "text": "Draft schema", "sourceFile": "Log.md", "sourceDate": "2024-01-10"}),
        parse_proposal({"kind": "promotion", "id": "b", "text": "Ship v1"}),
        parse_proposal({"kind": "idea", "id": "c", "text": "Never applied"}),
    ]

    entries = history(document, proposals)

    assert [(entry.proposal_id, entry.section, entry.matched_by) for entry in entries] == [
        ("a", "Active Vertical Slices", "provenance"),
        ("b", "Later", "text"),
        ("c", None, None),
    ]
    assert entries[0].checked is True
    assert not entries[2].present


def test_tracker_exposes_marker_keys(tasks_text: str) -> None:
    tracker = ProvenanceTracker(parse(tasks_text))

    assert tracker.keys() == frozenset({("log.md", "2024-01-10"), ("log.md", "2024-01-15")})
    assert ("log.md", "2024-01-15") in tracker

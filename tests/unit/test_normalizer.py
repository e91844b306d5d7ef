from __future__ import annotations

from docrecon.document.model import ProvenanceMarker
from docrecon.proposals import ProposalNormalizer, SelectionOverride, normalize
from docrecon.proposals.normalizer import resolve_destination


def test_destination_slugs_map_to_section_names() -> None:
    assert resolve_destination("future-tasks") == "Future Tasks"
    assert resolve_destination("next_actions") == "Next"
    assert resolve_destination("active-vs") == "Active Vertical Slices"
    assert resolve_destination("## Blocked") == "Blocked"
    assert resolve_destination("Discard") == "discard"
    assert resolve_destination(None) == "Later"
    assert resolve_destination("Someday Maybe") == "Someday Maybe"


def test_harvest_becomes_insertion_with_marker() -> None:
    result = normalize(
        [
            {
                "kind": "harvest",
                "id": "h1",
                "text": "Add CLI",
                "sourceFile": "Log.md",
                "sourceDate": "2024-02-01",
                "suggestedDestination": "active-vs",
                "suggestedSliceLink": "[[Roadmap#VS2 — Tooling]]",
            }
        ]
    )

    (selection,) = result.selections
    assert selection.destination_section == "Active Vertical Slices"
    assert selection.subsection == "VS2"
    assert selection.slice_link.label == "Tooling"
    assert selection.provenance == ProvenanceMarker("Log.md", "2024-02-01")
    assert selection.document == "Tasks.md"
    assert not selection.discard


def test_overrides_replace_destination_text_and_slice() -> None:
    proposals = [{"kind": "idea", "id": "i1", "text": "Index notes", "ideaHeading": "Search"}]
    overrides = [
        SelectionOverride.from_mapping(
            {"proposalId": "i1", "destination": "planned-slice", "customText": "Index all notes", "targetVS": "PS4"}
        )
    ]

    (selection,) = normalize(proposals, overrides).selections

    assert selection.final_text == "Index all notes"
    assert selection.destination_section == "Planned Slices"
    assert selection.subsection == "PS4"


def test_discard_by_override_or_destination() -> None:
    proposals = [
        {"kind": "harvest", "id": "a", "text": "Keep"},
        {"kind": "harvest", "id": "b", "text": "Drop", "suggestedDestination": "discard"},
    ]

    result = normalize(proposals, {"a": SelectionOverride(proposal_id="a", discard=True)})

    assert [selection.discard for selection in result.selections] == [True, True]
    assert result.active == []


def test_malformed_proposals_are_rejected_not_raised() -> None:
    result = normalize([{"kind": "harvest", "id": "bad"}, {"kind": "harvest", "text": "Fine"}])

    assert [item.proposal_id for item in result.rejected] == ["bad"]
    assert [selection.final_text for selection in result.selections] == ["Fine"]
    assert result.selections[0].source_proposal_id == "harvest-2"


def test_commit_mark_archive_fans_out_to_archive_document() -> None:
    result = normalize(
        [
            {
                "kind": "commit",
                "id": "c1",
                "taskText": "Write docs",
                "taskSection": "Current",
                "commitSha": "abcdef123",
                "action": "mark-archive",
                "suggestedSliceLink": "VS1 — Core Flow",
            }
        ]
    )

    complete, archived = result.selections
    assert complete.document == "Tasks.md"
    assert complete.in_place and complete.checked
    assert complete.origin.section == "Current"
    assert archived.document == "Archive.md"
    assert archived.destination_section == "Completed Work"
    assert archived.subsection == "VS1 — Core Flow"
    assert archived.provenance == complete.provenance
    assert result.documents() == ["Tasks.md", "Archive.md"]


def test_commit_skip_is_discarded() -> None:
    result = normalize([{"kind": "commit", "id": "c2", "text": "Nope", "commitSha": "1234abcd", "action": "skip"}])

    assert result.selections[0].discard is True


def test_archive_group_removes_and_inserts_each_task() -> None:
    normalizer = ProposalNormalizer(archive_document="History.md", archive_section="Shipped")
    result = normalizer.normalize(
        [
            {
                "kind": "archive",
                "id": "g1",
                "sliceRef": "VS1 — Core Flow",
                "tasks": [{"text": "Draft schema", "lineNumber": 6}, {"text": "Build parser"}],
            },
            {"kind": "archive", "id": "g2", "tasks": [{"text": "Loose end"}]},
        ]
    )

    removals = [selection for selection in result.selections if selection.remove]
    inserts = result.for_document("History.md")
    assert [selection.final_text for selection in removals] == ["Draft schema", "Build parser", "Loose end"]
    assert removals[0].origin.line_number == 6
    assert [selection.subsection for selection in inserts] == ["VS1 — Core Flow", "VS1 — Core Flow", "Completed Tasks"]
    assert {selection.destination_section for selection in inserts} == {"Shipped"}


def test_promotion_targets_now_by_default() -> None:
    result = normalize([{"kind": "promotion", "id": "p1", "text": "Ship v1", "sourceSection": "later"}])

    (selection,) = result.selections
    assert selection.destination_section == "Now"
    assert selection.origin.section == "Later"
    assert selection.provenance is None
    assert not selection.in_place

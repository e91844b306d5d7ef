from __future__ import annotations

import threading

from docrecon.config import ReconcileSettings
from docrecon.document import parse
from docrecon.document.model import SliceReference
from docrecon.proposals import SelectionOverride, decode_proposals
from docrecon.reconcile import ReconcileSession
from docrecon.reconcile.pipeline import document_lock


def _session(plan_project) -> ReconcileSession:
    return ReconcileSession(ReconcileSettings.load(plan_project.config_path))


HARVEST = {
    "kind": "harvest",
    "id": "h1",
    "text": "Add CLI",
    "sourceFile": "Log.md",
    "sourceDate": "2024-02-01",
    "suggestedDestination": "later",
}


def test_scenario_a_inserts_into_named_empty_section(tmp_path) -> None:
    (tmp_path / "Tasks.md").write_text("## Later\n\n## Current\n", encoding="utf-8")
    session = ReconcileSession(root=tmp_path)

    outcome = session.apply([{"kind": "harvest", "id": "a", "text": "Write README", "suggestedDestination": "Current"}])

    assert (tmp_path / "Tasks.md").read_text(encoding="utf-8") == "## Later\n\n## Current\n- [ ] Write README\n"
    assert [change.written for change in outcome.changes] == [True]


def test_scenario_b_already_applied_proposal_is_suppressed(plan_project) -> None:
    before = plan_project.read("Tasks.md")
    session = _session(plan_project)

    outcome = session.apply(
        [{"kind": "harvest", "id": "b", "text": "Fix bug", "sourceFile": "Log.md", "sourceContext": "2024-01-15"}]
    )

    assert plan_project.read("Tasks.md") == before
    assert [proposal.id for proposal, _ in outcome.suppressed] == ["b"]
    assert outcome.changes == []


def test_scenario_c_promotion_moves_the_task(plan_project) -> None:
    session = _session(plan_project)

    session.apply([{"kind": "promotion", "id": "c", "text": "Ship v1", "sourceSection": "Later", "suggestedDestination": "Current"}])

    text = plan_project.read("Tasks.md")
    document = parse(text)
    assert text.count("Ship v1") == 1
    assert [item.text for item in document.section("Current").tasks] == ["Write docs", "Ship v1"]
    assert "Ship v1" not in [item.text for item in document.section("Later").tasks]


def test_reapplying_a_batch_is_idempotent(plan_project) -> None:
    session = _session(plan_project)
    batch = [
        HARVEST,
        {"kind": "idea", "id": "i1", "text": "Index notes", "ideaHeading": "## Better search", "suggestedDestination": "future-tasks"},
    ]

    session.apply(batch)
    once = plan_project.read("Tasks.md")
    outcome = session.apply(batch)

    assert plan_project.read("Tasks.md") == once
    assert len(outcome.suppressed) == 2
    assert once.count("Add CLI") == 1
    assert "- [ ] Index notes <!-- from Ideas.md: Better search -->" in once.splitlines()


def test_every_accepted_selection_lands_exactly_once(plan_project) -> None:
    session = _session(plan_project)
    batch = [
        {"kind": "harvest", "id": f"h{index}", "text": f"Task {index}", "sourceFile": "Log.md", "sourceDate": "2024-03-01"}
        for index in range(3)
    ]

    outcome = session.apply(batch)

    later = parse(plan_project.read("Tasks.md")).section("Later")
    texts = [item.text for item in later.tasks]
    for selection in outcome.selections:
        assert texts.count(selection.final_text) == 1


def test_preview_does_not_write_and_commit_applies_selected_hunks(plan_project) -> None:
    before = plan_project.read("Tasks.md")
    session = _session(plan_project)
    proposals = [
        HARVEST,
        {"kind": "harvest", "id": "h2", "text": "Plan spike", "sourceFile": "Log.md", "sourceDate": "2024-02-02", "suggestedDestination": "future-tasks"},
    ]

    outcome = session.preview(proposals)
    assert plan_project.read("Tasks.md") == before
    (change,) = outcome.changes
    assert len(change.block) == 2

    outcome.accept([2])
    written = session.commit(outcome)

    after = plan_project.read("Tasks.md")
    assert written == [change.path]
    assert "Plan spike" in after
    assert "Add CLI" not in after


def test_commit_relocates_hunks_after_external_edit(plan_project) -> None:
    session = _session(plan_project)
    outcome = session.preview([HARVEST])
    outcome.accept_all()

    plan_project.write("Tasks.md", "<!-- edited elsewhere -->\n" + plan_project.read("Tasks.md"))
    session.commit(outcome)

    after = plan_project.read("Tasks.md")
    assert after.startswith("<!-- edited elsewhere -->\n# Tasks\n")
    assert "- [ ] Add CLI <!-- from Log.md: 2024-02-01 -->" in after.splitlines()


def test_overrides_and_malformed_proposals(plan_project) -> None:
    session = _session(plan_project)

    outcome = session.preview(
        [HARVEST, {"kind": "harvest", "id": "broken"}],
        [SelectionOverride(proposal_id="h1", destination="Current", text="Add a CLI")],
    )

    assert [item.proposal_id for item in outcome.rejected] == ["broken"]
    (change,) = outcome.changes
    current = parse(change.proposed).section("Current")
    assert [item.text for item in current.tasks] == ["Write docs", "Add a CLI"]


def test_archive_group_moves_tasks_into_archive(plan_project) -> None:
    session = _session(plan_project)

    outcome = session.apply(
        [
            {
                "kind": "archive",
                "id": "g1",
                "sliceRef": "VS1 — Core Flow",
                "tasks": [{"text": "Draft schema", "lineNumber": 6}],
            }
        ]
    )

    assert [change.document for change in outcome.changes] == ["Tasks.md", "Archive.md"]
    tasks = plan_project.read("Tasks.md")
    assert "Draft schema" not in tasks
    assert "note on schema" not in tasks
    assert plan_project.read("Archive.md") == (
        "# Archive\n"
        "\n"
        "## Completed Work\n"
        "\n"
        "### VS1 — Core Flow\n"
        "- [x] Draft schema [[Roadmap#VS1 — Core Flow]] <!-- from Log.md: 2024-01-10 -->\n"
        "  - note on schema\n"
    )


def test_archive_is_not_written_when_removal_is_missing(plan_project) -> None:
    session = _session(plan_project)

    outcome = session.apply([{"kind": "archive", "id": "g2", "tasks": [{"text": "Never existed anywhere"}]}])

    assert [item.reason for item in outcome.skipped] == ["origin not found"]
    assert plan_project.read("Archive.md") == "# Archive\n\n## Completed Work\n"


def test_commit_match_marks_task_complete_once(plan_project) -> None:
    session = _session(plan_project)
    match = {"matches": [{"taskText": "Write docs", "taskSection": "Current", "commitSha": "abcdef123456"}]}

    proposals = decode_proposals(match).proposals
    session.apply(proposals)
    first = plan_project.read("Tasks.md")
    session.apply(proposals)

    assert "- [x] Write docs <!-- from git: abcdef1 -->" in first.splitlines()
    assert plan_project.read("Tasks.md") == first


def test_missing_documents_are_created(tmp_path) -> None:
    session = ReconcileSession(root=tmp_path)

    session.apply([{"kind": "idea", "id": "i", "text": "First idea", "ideaHeading": "Seed"}])

    assert (tmp_path / "Tasks.md").read_text(encoding="utf-8") == "## Later\n- [ ] First idea <!-- from Ideas.md: Seed -->\n"


def test_concurrent_applies_to_one_document_are_serialized(plan_project) -> None:
    session = _session(plan_project)
    errors: list[BaseException] = []

    def worker(index: int) -> None:
        try:
            session.apply(
                [{"kind": "harvest", "id": f"t{index}", "text": f"Parallel {index}", "sourceFile": "Log.md", "sourceDate": f"2024-04-{index + 1:02d}"}]
            )
        except BaseException as error:  # pragma: no cover - surfaced by the assertion below
            errors.append(error)

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    text = plan_project.read("Tasks.md")
    for index in range(6):
        assert text.count(f"Parallel {index}") == 1
    assert document_lock(plan_project.root / "Tasks.md") is document_lock(plan_project.root / "." / "Tasks.md")


def test_rerunning_an_archive_group_leaves_similar_tasks_alone(plan_project) -> None:
    session = _session(plan_project)
    archive = {"kind": "archive", "id": "g1", "sliceRef": "VS1 — Core Flow", "tasks": [{"text": "Draft schema", "lineNumber": 6}]}

    session.apply([archive])
    plan_project.write("Tasks.md", plan_project.read("Tasks.md").replace("- [ ] Ship v1", "- [ ] Ship v1\n- [ ] Draft schema review"))
    tasks_before = plan_project.read("Tasks.md")
    archive_before = plan_project.read("Archive.md")
    outcome = session.apply([archive])

    assert plan_project.read("Tasks.md") == tasks_before
    assert plan_project.read("Archive.md") == archive_before
    assert archive_before.count("Draft schema") == 1
    assert [change.written for change in outcome.changes if change.written] == []


def test_promoting_a_missing_task_changes_nothing(plan_project) -> None:
    before = plan_project.read("Tasks.md")
    session = _session(plan_project)

    outcome = session.apply([{"kind": "promotion", "id": "p", "text": "Ship", "suggestedDestination": "Current"}])

    assert plan_project.read("Tasks.md") == before
    assert [item.reason for item in outcome.skipped] == ["origin not found"]


def test_harvest_from_spaced_file_name_is_applied_once(plan_project) -> None:
    session = _session(plan_project)
    harvest = {**HARVEST, "sourceFile": "Daily Log.md"}

    session.apply([harvest])
    once = plan_project.read("Tasks.md")
    outcome = session.apply([harvest])

    assert plan_project.read("Tasks.md") == once
    assert once.count("Add CLI") == 1
    assert "- [ ] Add CLI <!-- from Daily Log.md: 2024-02-01 -->" in once.splitlines()
    assert [proposal.id for proposal, _ in outcome.suppressed] == ["h1"]


SPREAD_TASKS = "## Current\n- [ ] Write docs\n\n## Notes\nOne\nTwo\nThree\n\n## Later\n- [ ] Ship v1\n- [ ] Other\n"
PROMOTION = {"kind": "promotion", "id": "c", "text": "Ship v1", "sourceSection": "Later", "suggestedDestination": "Current"}


def test_commit_skips_whole_move_when_its_origin_drifted(tmp_path) -> None:
    (tmp_path / "Tasks.md").write_text(SPREAD_TASKS, encoding="utf-8")
    session = ReconcileSession(root=tmp_path)
    outcome = session.preview([PROMOTION])
    (change,) = outcome.changes
    assert len(change.block) == 2
    outcome.accept_all()

    drifted = SPREAD_TASKS.replace("- [ ] Other", "- [ ] Other work")
    (tmp_path / "Tasks.md").write_text(drifted, encoding="utf-8")
    written = session.commit(outcome)

    assert written == []
    assert (tmp_path / "Tasks.md").read_text(encoding="utf-8") == drifted
    errors = [hunk.error for hunk in change.block.hunks]
    assert errors[1] == "old lines not found in current text"
    assert errors[0].startswith("move group move:c:")


def test_accepting_one_side_of_a_move_writes_nothing(tmp_path) -> None:
    (tmp_path / "Tasks.md").write_text(SPREAD_TASKS, encoding="utf-8")
    session = ReconcileSession(root=tmp_path)
    outcome = session.preview([PROMOTION])

    outcome.accept([1])
    written = session.commit(outcome)

    assert written == []
    assert (tmp_path / "Tasks.md").read_text(encoding="utf-8") == SPREAD_TASKS
    assert outcome.changes[0].block.hunks[0].error.startswith("move group move:c:")


def test_root_override_leaves_shared_settings_untouched(plan_project, tmp_path) -> None:
    settings = ReconcileSettings.load(plan_project.config_path)
    original_root = settings.root

    session = ReconcileSession(settings, root=tmp_path)

    assert session.settings.root == tmp_path
    assert settings.root == original_root
    assert session.settings.documents == settings.documents


def test_slice_links_are_checked_against_the_roadmap(plan_project) -> None:
    plan_project.write("Roadmap.md", "## Milestones\n\n### M1 — Core\n**Status:** active\n\n#### VS1 — Core Flow\n")
    session = _session(plan_project)

    outcome = session.preview(
        [
            {**HARVEST, "suggestedSliceLink": "VS7 — Ghost"},
            {**HARVEST, "id": "h2", "text": "Wire parser", "sourceDate": "2024-02-02", "suggestedSliceLink": "VS1 — Core Flow"},
        ]
    )

    assert outcome.unresolved_links == [("h1", SliceReference("Roadmap", "VS7", "Ghost"))]
    later = parse(outcome.changes[0].proposed).section("Later")
    assert "Add CLI" in [item.text for item in later.tasks]


def test_slice_links_are_not_checked_without_a_roadmap(plan_project) -> None:
    outcome = _session(plan_project).preview([{**HARVEST, "suggestedSliceLink": "VS7 — Ghost"}])

    assert outcome.unresolved_links == []


def test_archive_rerun_keeps_task_with_longer_name(tmp_path) -> None:
    (tmp_path / "Tasks.md").write_text("## Current\n- [x] Draft schema\n- [ ] Draft schema migration\n", encoding="utf-8")
    session = ReconcileSession(root=tmp_path)
    group = {"kind": "archive", "id": "g1", "tasks": [{"text": "Draft schema", "section": "Current"}]}

    session.apply([group])
    session.apply([group])

    assert (tmp_path / "Tasks.md").read_text(encoding="utf-8") == "## Current\n- [ ] Draft schema migration\n"
    assert (tmp_path / "Archive.md").read_text(encoding="utf-8").count("Draft schema") == 1

from __future__ import annotations

import pytest

from docrecon.document.model import ProvenanceMarker
from docrecon.errors import StaleApplyTarget
from docrecon.reconcile.applier import PatchApplier, apply_plan
from docrecon.reconcile.resolver import InsertionPlan
from docrecon.structured import EditDirective, PlannedLine


def _lines(count: int) -> list[str]:
    return [f"L{index}" for index in range(count)]


def _insert(at: int, *contents: str, group: str | None = None) -> EditDirective:
    return EditDirective(
        action="insert",
        start_line=at,
        end_line=at,
        lines=tuple(PlannedLine(content) for content in contents),
        group=group,
    )


def _delete(lines: list[str], start: int, end: int, group: str | None = None) -> EditDirective:
    return EditDirective(
        action="delete",
        start_line=start,
        end_line=end,
        fingerprint=tuple(lines[start:end]),
        group=group,
    )


def _reference(lines: list[str], directives: list[EditDirective]) -> list[str]:
    """Build the expected output by walking the original lines once."""
    deleted = {
        index
        for directive in directives
        if directive.action == "delete"
        for index in range(directive.start_line, directive.end_line)
    }
    output: list[str] = []
    for index in range(len(lines) + 1):
        for directive in directives:
            if directive.action == "insert" and directive.start_line == index:
                output.extend(planned.stamped() for planned in directive.lines)
        if index < len(lines) and index not in deleted:
            output.append(lines[index])
    return output


def test_descending_application_matches_reference_model() -> None:
    lines = _lines(15)
    directives = [
        _insert(3, "A"),
        _insert(10, "B"),
        _insert(10, "C"),
        _delete(lines, 7, 8),
    ]
    text = "\n".join(lines) + "\n"

    result = apply_plan(text, InsertionPlan(directives=directives))

    expected = _reference(lines, directives)
    assert result.text == "\n".join(expected) + "\n"
    assert expected[:4] == ["L0", "L1", "L2", "A"]
    assert "L7" not in expected
    assert expected[expected.index("L9") + 1 : expected.index("L10")] == ["B", "C"]
    assert result.stale == []
    assert len(result.applied) == 4


def test_insert_and_delete_at_same_line() -> None:
    lines = _lines(5)
    directives = [_delete(lines, 2, 3), _insert(2, "X")]

    result = apply_plan("\n".join(lines), InsertionPlan(directives=directives))

    assert result.text == "L0\nL1\nX\nL3\nL4"


def test_planned_lines_are_stamped_once() -> None:
    marker = ProvenanceMarker("Log.md", "2024-02-01")
    directives = [
        EditDirective(
            action="insert",
            start_line=1,
            end_line=1,
            lines=(
                PlannedLine("- [ ] New", marker),
                PlannedLine("- [ ] Old <!-- from Log.md: 2024-02-01 -->", marker),
            ),
        )
    ]

    result = apply_plan("## Later\n", InsertionPlan(directives=directives))

    assert result.text == (
        "## Later\n"
        "- [ ] New <!-- from Log.md: 2024-02-01 -->\n"
        "- [ ] Old <!-- from Log.md: 2024-02-01 -->\n"
    )


def test_stale_delete_skips_its_move_group_only() -> None:
    lines = _lines(8)
    stale_delete = EditDirective(
        action="delete",
        start_line=5,
        end_line=6,
        fingerprint=("something else",),
        group="move:p1:5",
    )
    directives = [
        stale_delete,
        _insert(2, "L5", group="move:p1:5"),
        _insert(0, "HEAD"),
    ]

    result = PatchApplier().apply("\n".join(lines) + "\n", InsertionPlan(directives=directives))

    assert result.partial
    assert [problem.reason for problem in result.stale] == ["fingerprint mismatch", "move group stale"]
    assert result.text == "\n".join(["HEAD", *lines]) + "\n"
    assert result.stale[0].actual == ("L5",)


def test_fingerprint_compares_prefix_only() -> None:
    long_line = "x" * 80
    directive = EditDirective(
        action="replace",
        start_line=0,
        end_line=1,
        lines=(PlannedLine("short"),),
        fingerprint=(long_line[:10] + "y" * 70,),
    )

    narrow = PatchApplier(fingerprint_width=10).apply(long_line, InsertionPlan(directives=[directive]))
    wide = PatchApplier().apply(long_line, InsertionPlan(directives=[directive]))

    assert narrow.text == "short"
    assert wide.text == long_line
    assert wide.stale[0].reason == "fingerprint mismatch"


def test_out_of_range_directives_are_reported() -> None:
    directives = [_insert(10, "late"), EditDirective(action="delete", start_line=3, end_line=9)]

    result = apply_plan("one\ntwo\n", InsertionPlan(directives=directives))

    assert result.text == "one\ntwo\n"
    assert [problem.reason for problem in result.stale] == ["out of range", "out of range"]


def test_empty_document_uses_plan_conventions() -> None:
    plan = InsertionPlan(directives=[_insert(0, "## Later", "- [ ] First")], newline="\r\n")

    result = apply_plan("", plan)

    assert result.text == "## Later\r\n- [ ] First\r\n"


def test_raise_for_stale_reports_first_problem() -> None:
    lines = _lines(3)
    directive = EditDirective(action="delete", start_line=1, end_line=2, fingerprint=("changed",))

    result = apply_plan("\n".join(lines), InsertionPlan(directives=[directive]))

    with pytest.raises(StaleApplyTarget) as excinfo:
        result.raise_for_stale()
    assert excinfo.value.details["actual"] == ["L1"]
    apply_plan("\n".join(lines), InsertionPlan()).raise_for_stale()

"""Apply an insertion plan to document text in descending line order."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..document.parser import split_text
from ..errors import StaleApplyTarget
from ..structured import DEFAULT_FINGERPRINT_WIDTH, EditDirective
from ..telemetry import emit_event
from .resolver import InsertionPlan

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class StaleDirective:
    """Directive skipped because the text it targets has changed."""

    directive: EditDirective
    reason: str
    expected: tuple[str, ...] = ()
    actual: tuple[str, ...] = ()


@dataclass(slots=True)
class ApplyResult:
    """Patched text plus the directives that were applied or skipped."""

    text: str
    applied: list[EditDirective] = field(default_factory=list)
    stale: list[StaleDirective] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.stale)

    def raise_for_stale(self) -> None:
        """Raise :class:`StaleApplyTarget` when any directive was skipped."""
        if not self.stale:
            return
        first = self.stale[0]
        raise StaleApplyTarget(
            f"{len(self.stale)} directive(s) no longer match the document",
            details={
                "start_line": first.directive.start_line,
                "reason": first.reason,
                "expected": list(first.expected),
                "actual": list(first.actual),
            },
        )


@dataclass(slots=True)
class PatchApplier:
    """Pure ``(text, plan) -> text`` transformation with fingerprint checks."""

    fingerprint_width: int = DEFAULT_FINGERPRINT_WIDTH

    def _check(self, lines: list[str], directive: EditDirective) -> StaleDirective | None:
        if directive.start_line < 0 or directive.end_line > len(lines) or directive.end_line < directive.start_line:
            return StaleDirective(directive, "out of range", directive.fingerprint)
        actual = tuple(line[: self.fingerprint_width] for line in lines[directive.start_line : directive.end_line])
        expected = tuple(value[: self.fingerprint_width] for value in directive.fingerprint)
        if actual != expected:
            return StaleDirective(directive, "fingerprint mismatch", expected, actual)
        return None

    def apply(self, text: str, plan: InsertionPlan) -> ApplyResult:
        lines, newline, trailing = split_text(text)
        if not text:
            newline = plan.newline
            trailing = True

        # Validate every removal against the untouched text before editing anything.
        stale: list[StaleDirective] = []
        stale_indexes: set[int] = set()
        stale_groups: set[str] = set()
        for index, directive in enumerate(plan.directives):
            if directive.action == "insert":
                if directive.start_line > len(lines) or directive.start_line < 0:
                    stale.append(StaleDirective(directive, "out of range"))
                    stale_indexes.add(index)
                    if directive.group:
                        stale_groups.add(directive.group)
                continue
            problem = self._check(lines, directive)
            if problem is None:
                continue
            stale.append(problem)
            stale_indexes.add(index)
            if directive.group:
                stale_groups.add(directive.group)

        runnable: list[tuple[int, EditDirective]] = []
        for index, directive in enumerate(plan.directives):
            if index in stale_indexes:
                continue
            if directive.group and directive.group in stale_groups:
                stale.append(StaleDirective(directive, "move group stale"))
                continue
            runnable.append((index, directive))

        for problem in stale:
            LOGGER.warning(
                "Skipping stale %s directive at line %d: %s",
                problem.directive.action,
                problem.directive.start_line,
                problem.reason,
            )
            emit_event(
                "directive_stale",
                action=problem.directive.action,
                start_line=problem.directive.start_line,
                end_line=problem.directive.end_line,
                group=problem.directive.group,
                proposal=problem.directive.source_proposal_id,
                reason=problem.reason,
            )

        # Highest line first; removals before inserts at the same line, and
        # inserts at one line in reverse input order so they read in input order.
        ordered = sorted(
            runnable,
            key=lambda pair: (-pair[1].start_line, pair[1].action == "insert", -pair[0]),
        )

        working = list(lines)
        applied: list[EditDirective] = []
        for _, directive in ordered:
            rendered = [planned.stamped() for planned in directive.lines]
            if directive.action == "insert":
                working[directive.start_line : directive.start_line] = rendered
            elif directive.action == "delete":
                del working[directive.start_line : directive.end_line]
            else:
                working[directive.start_line : directive.end_line] = rendered
            applied.append(directive)

        body = newline.join(working)
        if trailing and working:
            body += newline
        emit_event("plan_applied", applied=len(applied), stale=len(stale), lines=len(working))
        return ApplyResult(text=body, applied=applied, stale=stale)


def apply_plan(text: str, plan: InsertionPlan, *, fingerprint_width: int = DEFAULT_FINGERPRINT_WIDTH) -> ApplyResult:
    """Apply ``plan`` to ``text`` with the default applier."""
    return PatchApplier(fingerprint_width=fingerprint_width).apply(text, plan)


__all__ = ["ApplyResult", "PatchApplier", "StaleDirective", "apply_plan"]

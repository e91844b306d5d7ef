"""Placement resolution, patch application, diffing and the apply pipeline."""

from .applier import ApplyResult, PatchApplier, StaleDirective, apply_plan
from .diff import DiffBlock, DiffEngine, DiffHunk, HunkStatus, apply_accepted, diff
from .resolver import InsertionPlan, PlacementResolver, SkippedSelection, resolve
from .pipeline import DocumentChange, ReconcileOutcome, ReconcileSession

__all__ = [
    "ApplyResult",
    "DiffBlock",
    "DiffEngine",
    "DiffHunk",
    "DocumentChange",
    "HunkStatus",
    "InsertionPlan",
    "PatchApplier",
    "PlacementResolver",
    "ReconcileOutcome",
    "ReconcileSession",
    "SkippedSelection",
    "StaleDirective",
    "apply_accepted",
    "apply_plan",
    "diff",
    "resolve",
]

"""Exception and report types shared by the reconciliation engine."""

from __future__ import annotations

from typing import Any, Mapping


class ReconcileError(RuntimeError):
    """Base error for reconciliation failures that carry structured details."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class MalformedProposal(ReconcileError):
    """Raised when a producer payload cannot be validated as a proposal."""


class StaleApplyTarget(ReconcileError):
    """Raised when a directive no longer matches the text it targets."""


class DiffApplyError(ReconcileError):
    """Raised when a diff hunk cannot be located in the original text."""


class ConfigError(ReconcileError):
    """Raised when the project configuration cannot be loaded."""


__all__ = [
    "ConfigError",
    "DiffApplyError",
    "MalformedProposal",
    "ReconcileError",
    "StaleApplyTarget",
]

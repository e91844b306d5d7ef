"""Reconcile machine-proposed changes into Markdown plan documents."""

from .config import ReconcileSettings, load_config
from .document import Document, parse
from .errors import ConfigError, DiffApplyError, MalformedProposal, ReconcileError, StaleApplyTarget
from .proposals import decode_proposals, parse_proposal
from .reconcile import ReconcileOutcome, ReconcileSession

__version__ = "0.1.0"

__all__ = [
    "ConfigError",
    "DiffApplyError",
    "Document",
    "MalformedProposal",
    "ReconcileError",
    "ReconcileOutcome",
    "ReconcileSession",
    "ReconcileSettings",
    "StaleApplyTarget",
    "decode_proposals",
    "load_config",
    "parse",
    "parse_proposal",
]

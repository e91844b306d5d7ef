"""Producer proposals: schema, payload decoding and normalization."""

from .normalizer import NormalizationResult, ProposalNormalizer, SelectionOverride, normalize
from .producers import DecodedBatch, decode_proposals
from .schema import (
    ArchiveProposal,
    ChangeProposal,
    CommitProposal,
    HarvestProposal,
    IdeaProposal,
    ProducerKind,
    PromotionProposal,
    RejectedProposal,
    parse_proposal,
)

__all__ = [
    "ArchiveProposal",
    "ChangeProposal",
    "CommitProposal",
    "DecodedBatch",
    "HarvestProposal",
    "IdeaProposal",
    "NormalizationResult",
    "ProducerKind",
    "PromotionProposal",
    "ProposalNormalizer",
    "RejectedProposal",
    "SelectionOverride",
    "decode_proposals",
    "normalize",
    "parse_proposal",
]

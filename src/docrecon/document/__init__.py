"""Document model, inline token grammar and parser."""

from .model import (
    Document,
    ProvenanceMarker,
    Section,
    SectionKind,
    SliceReference,
    Subsection,
    TaskItem,
    section_key,
)
from .parser import DocumentParser, parse
from .roadmap import Milestone, MilestoneStatus, Roadmap, RoadmapSlice, parse_roadmap

__all__ = [
    "Document",
    "DocumentParser",
    "Milestone",
    "MilestoneStatus",
    "ProvenanceMarker",
    "Roadmap",
    "RoadmapSlice",
    "Section",
    "SectionKind",
    "SliceReference",
    "Subsection",
    "TaskItem",
    "parse",
    "parse_roadmap",
    "section_key",
]

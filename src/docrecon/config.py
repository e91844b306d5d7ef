"""Project configuration loaded from the YAML config file."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Sequence

import yaml

from .document.parser import DocumentParser
from .errors import ConfigError
from .proposals.normalizer import DEFAULT_ARCHIVE_SECTION, DEFAULT_DESTINATION
from .structured import DEFAULT_CONTEXT_LINES, DEFAULT_FINGERPRINT_WIDTH

DEFAULT_CONFIG_NAME = "docrecon.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "project": {
        "name": "",
        "root": ".",
    },
    "documents": {
        "tasks": "Tasks.md",
        "roadmap": "Roadmap.md",
        "archive": "Archive.md",
        "ideas": "Ideas.md",
        "log": "Log.md",
    },
    "reconcile": {
        "fingerprint_width": DEFAULT_FINGERPRINT_WIDTH,
        "context_lines": DEFAULT_CONTEXT_LINES,
        "task_sections": [],
        "slice_sections": [],
        "default_destination": DEFAULT_DESTINATION,
        "archive_section": DEFAULT_ARCHIVE_SECTION,
    },
    "paths": {
        "data": "data",
        "reviews": "data/reviews",
    },
}


def copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration from disk and return it as a dictionary."""
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}", details={"path": config_path.as_posix()})
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config: {error}", details={"path": config_path.as_posix()}) from error
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.", details={"path": config_path.as_posix()})
    return data


def write_config(config_path: Path, config_data: Mapping[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(dict(config_data), handle, sort_keys=False, allow_unicode=True)


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = config.get(name)
    return value if isinstance(value, Mapping) else {}


def _string(mapping: Mapping[str, Any], key: str, default: str) -> str:
    value = mapping.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _positive_int(mapping: Mapping[str, Any], key: str, default: int) -> int:
    value = mapping.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return default
    return value


def _names(mapping: Mapping[str, Any], key: str) -> tuple[str, ...]:
    raw = mapping.get(key)
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, Sequence):
        return ()
    return tuple(item.strip() for item in raw if isinstance(item, str) and item.strip())


@dataclass(slots=True, frozen=True)
class DocumentNames:
    """File names of the plan documents, relative to the project root."""

    tasks: str = "Tasks.md"
    roadmap: str = "Roadmap.md"
    archive: str = "Archive.md"
    ideas: str = "Ideas.md"
    log: str = "Log.md"

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "DocumentNames":
        documents = _section(config, "documents")
        defaults = cls()
        return cls(
            tasks=_string(documents, "tasks", defaults.tasks),
            roadmap=_string(documents, "roadmap", defaults.roadmap),
            archive=_string(documents, "archive", defaults.archive),
            ideas=_string(documents, "ideas", defaults.ideas),
            log=_string(documents, "log", defaults.log),
        )


@dataclass(slots=True)
class ReconcileSettings:
    """Typed view of the ``reconcile`` configuration and project paths."""

    root: Path = field(default_factory=lambda: Path("."))
    project_name: str = ""
    documents: DocumentNames = field(default_factory=DocumentNames)
    fingerprint_width: int = DEFAULT_FINGERPRINT_WIDTH
    context_lines: int = DEFAULT_CONTEXT_LINES
    task_sections: tuple[str, ...] = ()
    slice_sections: tuple[str, ...] = ()
    default_destination: str = DEFAULT_DESTINATION
    archive_section: str = DEFAULT_ARCHIVE_SECTION
    data_root: Path | None = None
    reviews_root: Path | None = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any], *, base_path: Path | None = None) -> "ReconcileSettings":
        """Build settings from a loaded config, falling back to defaults for bad values."""
        base = (base_path or Path(".")).resolve()
        project = _section(config, "project")
        reconcile = _section(config, "reconcile")
        paths = _section(config, "paths")

        root = Path(_string(project, "root", "."))
        if not root.is_absolute():
            root = (base / root).resolve()

        def _path(key: str, default: str) -> Path:
            candidate = Path(_string(paths, key, default))
            if not candidate.is_absolute():
                candidate = (root / candidate).resolve()
            return candidate

        return cls(
            root=root,
            project_name=_string(project, "name", ""),
            documents=DocumentNames.from_config(config),
            fingerprint_width=_positive_int(reconcile, "fingerprint_width", DEFAULT_FINGERPRINT_WIDTH),
            context_lines=_positive_int(reconcile, "context_lines", DEFAULT_CONTEXT_LINES),
            task_sections=_names(reconcile, "task_sections"),
            slice_sections=_names(reconcile, "slice_sections"),
            default_destination=_string(reconcile, "default_destination", DEFAULT_DESTINATION),
            archive_section=_string(reconcile, "archive_section", DEFAULT_ARCHIVE_SECTION),
            data_root=_path("data", "data"),
            reviews_root=_path("reviews", "data/reviews"),
        )

    @classmethod
    def load(cls, config_path: Path) -> "ReconcileSettings":
        return cls.from_config(load_config(config_path), base_path=config_path.parent)

    def parser(self) -> DocumentParser:
        return DocumentParser.with_extra_sections(self.task_sections, self.slice_sections)

    def document_path(self, name: str) -> Path:
        candidate = Path(name)
        if candidate.is_absolute():
            return candidate
        return self.root / candidate

    @property
    def reviews_path(self) -> Path:
        return self.reviews_root or (self.root / "data" / "reviews")


__all__ = [
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "DocumentNames",
    "ReconcileSettings",
    "copy_config_template",
    "load_config",
    "write_config",
]

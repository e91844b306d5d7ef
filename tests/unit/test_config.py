from __future__ import annotations

from pathlib import Path

import pytest

from docrecon.config import (
    DEFAULT_CONFIG_TEMPLATE,
    ReconcileSettings,
    copy_config_template,
    load_config,
    write_config,
)
from docrecon.document.model import SectionKind
from docrecon.errors import ConfigError


def test_template_round_trips_through_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "docrecon.yaml"
    template = copy_config_template()
    template["project"]["name"] = "demo"

    write_config(config_path, template)

    assert load_config(config_path) == template
    assert DEFAULT_CONFIG_TEMPLATE["project"]["name"] == ""


def test_load_config_errors(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.yaml")

    broken = tmp_path / "broken.yaml"
    broken.write_text("project: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(broken)

    scalar = tmp_path / "scalar.yaml"
    scalar.write_text("just a string\n", encoding="utf-8")
    with pytest.raises(ConfigError) as excinfo:
        load_config(scalar)
    assert excinfo.value.details["path"] == scalar.as_posix()


def test_settings_fall_back_to_defaults_for_bad_values(tmp_path: Path) -> None:
    config = {
        "project": {"root": "plans"},
        "documents": {"tasks": "Backlog.md", "archive": 12},
        "reconcile": {
            "fingerprint_width": -3,
            "context_lines": True,
            "task_sections": "Someday",
            "slice_sections": ["Epics", 5, " "],
            "default_destination": "Next",
        },
        "paths": "not a mapping",
    }

    settings = ReconcileSettings.from_config(config, base_path=tmp_path)

    assert settings.root == (tmp_path / "plans").resolve()
    assert settings.documents.tasks == "Backlog.md"
    assert settings.documents.archive == "Archive.md"
    assert settings.fingerprint_width == 60
    assert settings.context_lines == 2
    assert settings.task_sections == ("Someday",)
    assert settings.slice_sections == ("Epics",)
    assert settings.default_destination == "Next"
    assert settings.reviews_path == (tmp_path / "plans" / "data" / "reviews").resolve()
    assert settings.document_path("Tasks.md") == settings.root / "Tasks.md"

    parser = settings.parser()
    assert parser.classify("Someday") is SectionKind.TASK_LIST
    assert parser.classify("Epics") is SectionKind.SLICE_LIST


def test_settings_load_resolves_relative_to_config(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "docrecon.yaml"
    write_config(config_path, copy_config_template())

    settings = ReconcileSettings.load(config_path)

    assert settings.root == config_path.parent.resolve()
    assert settings.data_root == (config_path.parent / "data").resolve()

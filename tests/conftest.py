from __future__ import annotations

import os
import subprocess
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


TASKS_TEXT = textwrap.dedent(
    """
    # Tasks

    ## Active Vertical Slices

    ### VS1 — Core Flow
    - [ ] Build parser [[Roadmap#VS1 — Core Flow]]
    - [x] Draft schema [[Roadmap#VS1 — Core Flow]] <!-- from Log.md: 2024-01-10 -->
      - note on schema

    ## Current
    - [ ] Write docs

    ## Later
    - [ ] Ship v1
    - [ ] Fix bug <!-- from Log.md 2024-01-15 -->

    ## Notes
    Some freeform text.
    - [ ] not a task
    """
).lstrip()

ARCHIVE_TEXT = "# Archive\n\n## Completed Work\n"


@dataclass(slots=True)
class PlanProject:
    """Fixture payload representing a project directory with plan documents."""

    root: Path
    config_path: Path

    def write(self, name: str, text: str) -> Path:
        path = self.root / name
        path.write_text(text, encoding="utf-8")
        return path

    def read(self, name: str) -> str:
        return (self.root / name).read_text(encoding="utf-8")

    def run_cli(self, *args: str) -> subprocess.CompletedProcess[str]:
        """Invoke ``python -m docrecon.cli`` with the provided arguments."""

        env = os.environ.copy()
        pythonpath = str(SRC)
        if env.get("PYTHONPATH"):
            pythonpath = os.pathsep.join([pythonpath, env["PYTHONPATH"]])
        env["PYTHONPATH"] = pythonpath

        command = [sys.executable, "-m", "docrecon.cli", *args]
        return subprocess.run(  # noqa: S603 - command constructed from known values
            command,
            cwd=self.root,
            env=env,
            capture_output=True,
            text=True,
            check=False,
        )


@pytest.fixture()
def tasks_text() -> str:
    return TASKS_TEXT


@pytest.fixture()
def plan_project(tmp_path: Path) -> PlanProject:
    """Create a project root with a config, a task list and an archive."""

    root = tmp_path / "plan"
    root.mkdir()
    config_path = root / "docrecon.yaml"
    config_path.write_text(
        textwrap.dedent(
            """
            project:
              name: fixture-plan
              root: .
            documents:
              tasks: Tasks.md
              archive: Archive.md
            paths:
              data: data
              reviews: data/reviews
            """
        ).lstrip(),
        encoding="utf-8",
    )
    (root / "Tasks.md").write_text(TASKS_TEXT, encoding="utf-8")
    (root / "Archive.md").write_text(ARCHIVE_TEXT, encoding="utf-8")
    return PlanProject(root=root, config_path=config_path)

"""CLI commands for reconciling producer proposals into plan documents."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Optional

import typer
import yaml

from .config import DEFAULT_CONFIG_NAME, ReconcileSettings, copy_config_template, write_config
from .document.model import SectionKind
from .errors import ConfigError, MalformedProposal
from .proposals.normalizer import SelectionOverride
from .proposals.producers import decode_many
from .proposals.schema import ProducerKind
from .reconcile.pipeline import ReconcileOutcome, ReconcileSession, read_document
from .review import load_review_session, save_review_session

APP_HELP = "Reconcile producer proposals into Markdown plan documents."

app = typer.Typer(help=APP_HELP)

_CONFIG_HELP = "Path to the docrecon configuration file."


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output and telemetry events."),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _session(config: str) -> ReconcileSession:
    config_path = Path(config)
    if not config_path.exists():
        raise typer.BadParameter(f"Config file not found: {config_path}", param_hint="--config")
    try:
        settings = ReconcileSettings.load(config_path)
    except ConfigError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error
    return ReconcileSession(settings)


def _read_proposals(paths: List[Path], kind: Optional[str]) -> tuple[list[Any], list[Any]]:
    producer_kind: Optional[ProducerKind] = None
    if kind:
        try:
            producer_kind = ProducerKind(kind.strip().lower())
        except ValueError as error:
            choices = ", ".join(item.value for item in ProducerKind)
            raise typer.BadParameter(f"Unknown producer kind '{kind}'. Choose from: {choices}", param_hint="--kind") from error

    payloads = []
    for path in paths:
        if not path.exists():
            raise typer.BadParameter(f"Proposal file not found: {path}")
        payloads.append(path.read_text(encoding="utf-8"))
    batch = decode_many(payloads, kind=producer_kind)
    return batch.proposals, batch.rejected


def _read_overrides(path: Optional[Path]) -> list[SelectionOverride]:
    if path is None:
        return []
    if not path.exists():
        raise typer.BadParameter(f"Overrides file not found: {path}", param_hint="--overrides")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or []
    except yaml.YAMLError as error:
        typer.echo(f"Failed to parse overrides: {error}")
        raise typer.Exit(code=1) from error
    if isinstance(data, dict):
        data = data.get("overrides") or []
    if not isinstance(data, list):
        typer.echo("Overrides must be a list of mappings.")
        raise typer.Exit(code=1)

    overrides: list[SelectionOverride] = []
    for entry in data:
        if not isinstance(entry, dict):
            continue
        try:
            overrides.append(SelectionOverride.from_mapping(entry))
        except MalformedProposal as error:
            typer.echo(f"Ignoring override: {error}")
    return overrides


def _parse_hunk_numbers(value: str) -> list[int]:
    numbers: list[int] = []
    for token in value.split(","):
        token = token.strip()
        if not token:
            continue
        if "-" in token:
            start, _, end = token.partition("-")
            try:
                numbers.extend(range(int(start), int(end) + 1))
            except ValueError as error:
                raise typer.BadParameter(f"Invalid hunk range '{token}'", param_hint="--accept") from error
            continue
        try:
            numbers.append(int(token))
        except ValueError as error:
            raise typer.BadParameter(f"Invalid hunk number '{token}'", param_hint="--accept") from error
    return numbers


def _render_outcome(outcome: ReconcileOutcome) -> None:
    """Echo numbered hunks followed by everything that was not planned."""
    number = 0
    for change in outcome.changes:
        if change.block.is_empty:
            continue
        typer.echo(f"--- a/{change.document}")
        typer.echo(f"+++ b/{change.document}")
        for hunk in change.block.hunks:
            number += 1
            label = f"[{number}] ({hunk.status.value})"
            if hunk.groups:
                label += f" moves with: {', '.join(hunk.groups)}"
            typer.echo(label)
            typer.echo(hunk.render())
            if hunk.error:
                typer.echo(f"    ! {hunk.error}")
        for section in change.plan.created_sections:
            typer.echo(f"  new section: {section}")
        for problem in change.result.stale:
            typer.echo(f"  stale: line {problem.directive.start_line + 1}: {problem.reason}")

    if number == 0:
        typer.echo("No changes proposed.")

    if outcome.suppressed:
        typer.echo("Already applied:")
        for proposal, item in outcome.suppressed:
            typer.echo(f"  - {proposal.id}: {item.text} ({item.section}, line {item.line_number + 1})")
    skipped = outcome.skipped
    if skipped:
        typer.echo("Skipped:")
        for entry in skipped:
            typer.echo(f"  - {entry.source_proposal_id}: {entry.text} [{entry.reason}]")
    if outcome.rejected:
        typer.echo("Rejected:")
        for rejected in outcome.rejected:
            typer.echo(f"  - {rejected.proposal_id or '(payload)'}: {rejected.reason}")
    if outcome.unresolved_links:
        typer.echo("Unresolved slice links:")
        for proposal_id, link in outcome.unresolved_links:
            typer.echo(f"  - {proposal_id}: {link.render()}")


@app.command()
def init(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_HELP),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Project name stored in the config."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write the default configuration file."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"Configuration already exists at {config_path}; use --force to overwrite.")
        raise typer.Exit(code=1)
    config_data = copy_config_template()
    if name:
        config_data["project"]["name"] = name.strip()
    write_config(config_path, config_data)
    typer.echo(f"Created configuration at {config_path}.")


@app.command()
def status(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_HELP),
    document: Optional[str] = typer.Option(
        None,
        "--document",
        "-d",
        help="Document to inspect (defaults to the configured tasks document).",
    ),
) -> None:
    """Parse a plan document and report its sections and task counts."""
    session = _session(config)
    name = document or session.settings.documents.tasks
    path = session.path_for(name)
    if not path.exists():
        typer.echo(f"Document not found: {path}")
        raise typer.Exit(code=1)

    parsed = session.parser.parse(read_document(path))
    project = session.settings.project_name or "unnamed"
    typer.echo(f"Project: {project}")
    typer.echo(f"Document: {path} ({parsed.line_count} lines)")
    for section in parsed.sections:
        if section.is_preamble:
            continue
        if section.kind is SectionKind.FREEFORM:
            typer.echo(f"- {section.name} [{section.kind.value}]")
            continue
        done = sum(1 for task in section.tasks if task.checked)
        open_count = len(section.tasks) - done
        typer.echo(f"- {section.name} [{section.kind.value}] open {open_count} | done {done}")
        for subsection in section.subsections:
            typer.echo(f"    ### {subsection.title}")

    roadmap = session.roadmap()
    if roadmap is None:
        return
    milestone = roadmap.current_milestone()
    if milestone is None:
        typer.echo("Current milestone: none")
        return
    typer.echo(f"Current milestone: {milestone.milestone_id} {milestone.title} ({milestone.status.value})")
    active = roadmap.active_slice()
    if active is not None:
        typer.echo(f"Active slice: {active.slice_id} {active.name}")


@app.command()
def preview(
    proposals: List[Path] = typer.Argument(..., help="Producer output files (JSON, optionally fenced)."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_HELP),
    kind: Optional[str] = typer.Option(None, "--kind", "-k", help="Producer kind for payloads that do not declare one."),
    overrides: Optional[Path] = typer.Option(None, "--overrides", help="YAML/JSON list of selection overrides."),
) -> None:
    """Show the hunks the proposals would produce without writing anything."""
    session = _session(config)
    models, rejected = _read_proposals(proposals, kind)
    outcome = session.preview(models, _read_overrides(overrides))
    outcome.rejected[:0] = rejected
    _render_outcome(outcome)


@app.command()
def apply(
    proposals: List[Path] = typer.Argument(..., help="Producer output files (JSON, optionally fenced)."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_HELP),
    kind: Optional[str] = typer.Option(None, "--kind", "-k", help="Producer kind for payloads that do not declare one."),
    overrides: Optional[Path] = typer.Option(None, "--overrides", help="YAML/JSON list of selection overrides."),
    accept: Optional[str] = typer.Option(None, "--accept", "-a", help="Hunk numbers to accept, e.g. 1,3 or 2-4."),
    accept_all: bool = typer.Option(False, "--all", help="Accept every proposed hunk."),
) -> None:
    """Accept hunks, write the documents and store a review session log."""
    session = _session(config)
    models, rejected = _read_proposals(proposals, kind)
    outcome = session.preview(models, _read_overrides(overrides))
    outcome.rejected[:0] = rejected

    if accept_all:
        outcome.accept_all()
    elif accept:
        try:
            outcome.accept(_parse_hunk_numbers(accept))
        except IndexError as error:
            raise typer.BadParameter(str(error), param_hint="--accept") from error

    written = session.commit(outcome)
    _render_outcome(outcome)
    for path in written:
        typer.echo(f"Wrote {path}")
    if not written:
        typer.echo("No documents written.")

    log_path = save_review_session(outcome, session.settings.reviews_path)
    typer.echo(f"Review session saved to {log_path}")


@app.command()
def review(
    session_log: Path = typer.Argument(..., help="Stored review session log."),
) -> None:
    """Summarize a stored review session."""
    if not session_log.exists():
        raise typer.BadParameter(f"Review session not found: {session_log}")
    stored = load_review_session(session_log)
    typer.echo(f"Session: {stored.session_id}")
    if stored.created_at:
        typer.echo(f"Created: {stored.created_at}")
    typer.echo(f"Proposals: {len(stored.proposal_payloads)}")
    for change in stored.changes:
        state = "written" if change.get("written") else "not written"
        typer.echo(f"- {change.get('document')} ({state})")
        for hunk in change.get("hunks") or []:
            line = f"    {hunk.get('header')} {hunk.get('status')} +{hunk.get('added', 0)} -{hunk.get('removed', 0)}"
            if hunk.get("error"):
                line += f" ! {hunk['error']}"
            typer.echo(line)
        for skipped in change.get("skipped") or []:
            typer.echo(f"    skipped {skipped.get('id')}: {skipped.get('reason')}")
    for entry in stored.payload.get("unresolved_links") or []:
        typer.echo(f"Unresolved link {entry.get('id')}: {entry.get('link')}")


@app.command()
def history(
    session_log: Path = typer.Argument(..., help="Stored review session log."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_HELP),
    document: Optional[str] = typer.Option(None, "--document", "-d", help="Document to look the proposals up in."),
) -> None:
    """Show where each proposal of a stored session lives now."""
    if not session_log.exists():
        raise typer.BadParameter(f"Review session not found: {session_log}")
    session = _session(config)
    stored = load_review_session(session_log)
    name = document or session.settings.documents.tasks
    parsed = session.parser.parse(session.read(name))

    typer.echo(f"Session: {stored.session_id}")
    entries = stored.history(parsed)
    if not entries:
        typer.echo("Session has no proposals.")
        return
    for entry in entries:
        if entry.present:
            mark = "x" if entry.checked else " "
            typer.echo(
                f"- {entry.proposal_id}: [{mark}] {entry.text} -> {entry.section} "
                f"(line {entry.line_number + 1}, by {entry.matched_by})"
            )
        else:
            typer.echo(f"- {entry.proposal_id}: {entry.text} -> not in {name}")


if __name__ == "__main__":
    app()

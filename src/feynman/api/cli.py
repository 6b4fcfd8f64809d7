"""Feynman Command Line Interface.

Walks one concept through the seven explanation fields. State lives in
the local SQLite store between invocations, so each command picks up
where the last one left off.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from feynman.context.compression import (
    CompressionLevel,
    CompressionThresholds,
    ContextCompressor,
)
from feynman.core.config import get_llm_client, get_settings
from feynman.core.logging import configure_logging
from feynman.session.continuation import (
    ContinuationCodeError,
    build_continuation_url,
    code_size,
    parse_continuation_url,
)
from feynman.session.engine import LearningSession
from feynman.session.models import FIELD_ORDER, FieldName, FieldStatus, InvalidTransitionError
from feynman.storage.state_store import StateStore
from feynman.storage.store import KeyValueStore
from feynman.validation.gateway import GatewayConfig, ModelGateway
from feynman.validation.orchestrator import OutcomeKind, ValidationOrchestrator

app = typer.Typer(
    name="feynman",
    help="Feynman - learn a concept by explaining it simply, one field at a time",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)

_STATUS_STYLES = {
    FieldStatus.LOCKED: "dim",
    FieldStatus.PENDING: "white",
    FieldStatus.ANALYZING: "cyan",
    FieldStatus.NEEDS_REVISION: "yellow",
    FieldStatus.APPROVED: "green",
}

_LEVEL_STYLES = {
    CompressionLevel.NORMAL: "green",
    CompressionLevel.SOFT: "yellow",
    CompressionLevel.HARD: "orange3",
    CompressionLevel.EMERGENCY: "red",
}


def _open_session(with_model: bool = False) -> LearningSession:
    """Open the saved session, wiring up the model only when needed."""
    settings = get_settings()
    store = StateStore(
        KeyValueStore(settings.db_path),
        history_limit=settings.saved_history_limit,
    )
    compressor = ContextCompressor(CompressionThresholds.from_settings(settings))

    validator = None
    if with_model:
        gateway = ModelGateway(get_llm_client(settings), GatewayConfig.from_settings(settings))
        validator = ValidationOrchestrator(gateway, compressor)

    session = LearningSession.open(store, compressor=compressor, validator=validator)
    if session.was_reset:
        console.print(
            "[yellow]Saved progress was from another version and has been reset.[/yellow]"
        )
    return session


def _parse_field(name: str) -> FieldName:
    try:
        return FieldName(name.lower().replace("-", "_"))
    except ValueError:
        valid = ", ".join(f.value for f in FIELD_ORDER)
        console.print(f"[red]Unknown field '{name}'. Choose one of: {valid}[/red]")
        raise typer.Exit(1)


def _format_timestamp(ts: Optional[datetime]) -> str:
    """Format timestamp for display."""
    if not ts:
        return "Never"
    return ts.strftime("%Y-%m-%d %H:%M")


def _warn_if_unsaved(session: LearningSession) -> None:
    if session.last_save is not None and not session.last_save.ok:
        console.print(
            f"[yellow]Progress could not be saved locally: {session.last_save.error}[/yellow]"
        )


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only show warnings and errors"),
):
    """Feynman learning sessions from the command line."""
    configure_logging(level=logging.DEBUG if verbose else None, quiet=quiet)


@app.command()
def start(
    concept: str = typer.Argument(..., help="The concept to learn"),
    no_modules: bool = typer.Option(
        False, "--no-modules", help="Skip asking the model to split the concept"
    ),
):
    """Start learning a new concept, replacing the current session.

    Examples:
        feynman start "photosynthesis"
        feynman start "recursion" --no-modules
    """
    try:
        session = _open_session(with_model=not no_modules)
        state = asyncio.run(session.start_concept(concept, decompose=not no_modules))
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    body = f"[bold]{state.concept}[/bold]\n\nStart with the definition: what is it, in plain words?"
    if len(state.modules) > 1:
        names = "\n".join(f"  {m.order}. {m.name}" for m in state.modules)
        body += f"\n\n[dim]Modules:[/dim]\n{names}"
    console.print(Panel(body, title="New Concept", border_style="blue"))
    _warn_if_unsaved(session)


@app.command()
def status():
    """Show field progress, context budget and save state."""
    session = _open_session()
    state = session.state

    if not state.concept:
        console.print("[dim]No concept in progress. Run 'feynman start CONCEPT'.[/dim]")
        return

    console.print(
        Panel(
            f"[bold]{state.concept}[/bold]",
            title=f"{state.approved_count}/{len(FIELD_ORDER)} fields approved",
            border_style="green" if state.is_complete() else "blue",
        )
    )

    table = Table(show_header=True, header_style="bold")
    table.add_column("Field")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Text")
    for name in FIELD_ORDER:
        record = state.fields[name]
        style = _STATUS_STYLES[record.status]
        text = record.value if len(record.value) <= 50 else record.value[:47] + "..."
        table.add_row(
            name.value,
            f"[{style}]{record.status.value}[/{style}]",
            str(len(record.attempts)),
            text,
        )
    console.print(table)

    advice = session.advice()
    style = _LEVEL_STYLES[advice.level]
    stats = Table(show_header=False, box=None, padding=(0, 2))
    stats.add_column("Label", style="dim")
    stats.add_column("Value")
    stats.add_row("Context", f"~{state.token_estimate:,} tokens")
    stats.add_row("Budget", f"[{style}]{advice.message}[/{style}]")
    stats.add_row("Tokens used", f"{state.token_usage:,}")
    stats.add_row("Started", _format_timestamp(state.start_time))
    stats.add_row("Last update", _format_timestamp(state.last_update_time))
    console.print(stats)


@app.command()
def write(
    field: str = typer.Argument(..., help="Field to write, e.g. definition"),
    text: str = typer.Argument(..., help="Your explanation"),
):
    """Write (or rewrite) the text for an unlocked field."""
    name = _parse_field(field)
    session = _open_session()
    try:
        session.edit_field(name, text)
    except InvalidTransitionError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]Saved {name.value}.[/green] Run 'feynman submit {name.value}' when ready.")
    _warn_if_unsaved(session)


@app.command()
def submit(field: str = typer.Argument(..., help="Field to submit for validation")):
    """Submit a field's text to the tutor for validation."""
    name = _parse_field(field)
    try:
        session = _open_session(with_model=True)
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1)

    with console.status("[dim]Checking your explanation...[/dim]"):
        outcome = asyncio.run(session.submit(name)).final

    if outcome.kind == OutcomeKind.REJECTED:
        console.print(f"[red]{outcome.message}[/red]")
        raise typer.Exit(1)
    if outcome.kind == OutcomeKind.FAILED:
        console.print(f"[red]{outcome.message}[/red]")
        _warn_if_unsaved(session)
        raise typer.Exit(1)
    if outcome.kind == OutcomeKind.INCONCLUSIVE:
        console.print(f"[yellow]{outcome.message}[/yellow]")
        _warn_if_unsaved(session)
        return

    verdict = outcome.verdict
    if outcome.status == FieldStatus.APPROVED:
        lines = [f"[bold green]{name.value} approved![/bold green]"]
    else:
        lines = [f"[bold yellow]{name.value} needs revision[/bold yellow]"]
    lines += [f"[green]+[/green] {s}" for s in verdict.strengths]
    lines += [f"[yellow]-[/yellow] {i}" for i in verdict.issues]
    if verdict.suggestion:
        lines.append(f"\n[dim]Suggestion:[/dim] {verdict.suggestion}")
    console.print(Panel("\n".join(lines), border_style=_STATUS_STYLES[outcome.status]))

    if session.state.is_complete():
        console.print("[bold green]Every field approved. You can explain this simply.[/bold green]")
    elif outcome.compression_level != CompressionLevel.NORMAL:
        console.print(f"[dim]{session.advice().message}[/dim]")
    _warn_if_unsaved(session)


@app.command()
def teach(field: str = typer.Argument(..., help="Field to get guidance on")):
    """Ask the tutor for guidance on a draft without submitting it."""
    name = _parse_field(field)
    try:
        session = _open_session(with_model=True)
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1)

    try:
        with console.status("[dim]Asking the tutor...[/dim]"):
            feedback = asyncio.run(session.ask_tutor(name))
    except (InvalidTransitionError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if feedback is None:
        console.print("[red]The tutor could not be reached. Try again in a moment.[/red]")
        raise typer.Exit(1)

    console.print(Panel(feedback.content, title=f"Guidance on {name.value}", border_style="cyan"))
    _warn_if_unsaved(session)


@app.command()
def code(
    base_url: Optional[str] = typer.Option(
        None, "--url", "-u", help="Also print a continuation link on this base URL"
    ),
):
    """Print a continuation code for the current session."""
    session = _open_session()
    if not session.state.concept:
        console.print("[yellow]No concept in progress; nothing to continue.[/yellow]")
        raise typer.Exit(1)

    continuation = session.continuation_code()
    console.print(continuation, soft_wrap=True)
    if base_url:
        console.print(build_continuation_url(continuation, base_url), soft_wrap=True)
    logger.debug(f"Continuation code is {code_size(session.state)} characters")


@app.command()
def resume(code: str = typer.Argument(..., help="Continuation code or link")):
    """Resume a session from a continuation code, replacing the current one."""
    code = parse_continuation_url(code) or code
    session = _open_session()
    try:
        state = session.resume_from_code(code)
    except ContinuationCodeError as e:
        console.print(f"[red]Invalid continuation code: {e}[/red]")
        raise typer.Exit(1)

    console.print(
        f"[green]Resumed '{state.concept}'[/green] "
        f"({state.approved_count}/{len(FIELD_ORDER)} fields approved)"
    )
    _warn_if_unsaved(session)


@app.command()
def checkpoint():
    """Save a rollback point for the current session."""
    session = _open_session()
    written = session.checkpoint()
    if written is None:
        console.print("[red]Checkpoint could not be written.[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Checkpoint saved[/green] at {_format_timestamp(written.timestamp)}")


@app.command()
def rollback():
    """Restore the last checkpoint."""
    session = _open_session()
    if not session.rollback():
        console.print("[yellow]No checkpoint to roll back to.[/yellow]")
        raise typer.Exit(1)
    console.print(
        f"[green]Rolled back[/green] to {session.state.approved_count} approved field(s)."
    )


@app.command()
def reset(
    all_slots: bool = typer.Option(
        False, "--all", help="Also delete the checkpoint"
    ),
):
    """Discard the current session and start empty."""
    session = _open_session()
    if all_slots:
        cleared = session.store.clear()
        if not cleared.ok:
            console.print(f"[yellow]Could not delete saved data: {cleared.error}[/yellow]")
    session.new_concept()
    console.print("[dim]Session cleared.[/dim]")


@app.command()
def export():
    """Print the full session state as JSON."""
    session = _open_session()
    console.print_json(session.state.export_json())


if __name__ == "__main__":
    app()

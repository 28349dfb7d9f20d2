"""Command line interface for tt."""

import contextlib
import logging
from datetime import datetime, timedelta
from typing import List, Optional

import click
from rich.console import Console
from rich.table import Table

from tt_tracker.config import ensure_data_dir, load_config
from tt_tracker.core.chains import ChainSummary
from tt_tracker.core.importer import (
    find_conflicts,
    parse_file,
    resolve_and_import,
    validate_no_self_overlaps,
)
from tt_tracker.core.store import SessionStore
from tt_tracker.core.tracker import TimeTracker, TrackResult, split_tags
from tt_tracker.core.validation import parse_at_time
from tt_tracker.errors import ImportConflictError, TTError
from tt_tracker.logging_config import setup_logging
from tt_tracker.models.session import Session, SessionState
from tt_tracker.parser.duration import format_duration, parse_duration
from tt_tracker.parser.formatter import format_session, format_time

console = Console()
logger = logging.getLogger(__name__)

STATE_STYLES = {
    SessionState.WORKING: "green",
    SessionState.PAUSED: "yellow",
    SessionState.COMPLETED: "blue",
    SessionState.ABANDONED: "red",
}

ERROR_HEADER = "# PARSING ERRORS - Fix these issues and save the file"


@contextlib.contextmanager
def handle_errors():
    """Print tt errors in red and abort with a non-zero exit code."""
    try:
        yield
    except TTError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.Abort() from e


def _get_tracker(ctx: click.Context) -> TimeTracker:
    data_dir = ctx.obj["data_dir"]
    return TimeTracker(SessionStore(data_dir), ctx.obj["config"])


def _format_elapsed(session: Session, now: Optional[datetime] = None) -> str:
    end = session.end_time or now or datetime.now()
    minutes = int((end - session.start_time).total_seconds() // 60)
    return format_duration(minutes) if minutes > 0 else "0m"


def _print_details(session: Session, label: str = "Task ID") -> None:
    console.print(f"[dim]  {label}: {session.id}[/dim]")
    if session.project:
        console.print(f"[dim]  Project: @{session.project}[/dim]")
    if session.tags:
        console.print(f"[dim]  Tags: {', '.join('+' + t for t in session.tags)}[/dim]")
    if session.estimate_minutes:
        console.print(f"[dim]  Estimate: ~{format_duration(session.estimate_minutes)}[/dim]")


def _print_warnings(warnings) -> None:
    for warning in warnings:
        console.print(f"[yellow]Note: {warning}[/yellow]")


def _print_started(result: TrackResult, label: str = "Started tracking") -> None:
    _print_warnings(result.warnings)
    if result.continued_from is not None:
        console.print(f"[green]▶ Resumed: {result.session.description}[/green]")
        console.print(f"[dim]  Continuing from session {result.continued_from.id}[/dim]")
    else:
        console.print(f"[green]✓ {label}: [bold]{result.session.description}[/bold][/green]")
    _print_details(result.session)
    console.print(f"[dim]  Start time: {result.session.start_time:%Y-%m-%d %H:%M:%S}[/dim]")


def task_options(func):
    """Options shared by commands that begin a task."""
    func = click.option("--at", help="Start time: 15:51, 2025-12-29 15:51 or -30m")(func)
    func = click.option("--estimate", "-e", help="Estimated duration, e.g. 1h30m")(func)
    func = click.option("--tags", "-t", help="Comma-separated tags")(func)
    func = click.option("--project", "-p", help="Project name")(func)
    func = click.argument("description", nargs=-1, required=True)(func)
    return func


@click.group()
@click.version_option(package_name="tt-time-tracker")
@click.option("--verbose", "-v", is_flag=True, help="Show debug output")
@click.pass_context
def main(ctx: click.Context, verbose: bool):
    """tt - track work sessions from the command line or from log files."""
    data_dir = ensure_data_dir()
    with handle_errors():
        config = load_config(data_dir)
    setup_logging(verbose, data_dir if config.debug_log else None)
    ctx.obj = {"data_dir": data_dir, "config": config}
    logger.debug("Using data directory %s", data_dir)


@main.command()
@task_options
@click.pass_context
def start(ctx, description, project, tags, estimate, at):
    """Start tracking a task.

    DESCRIPTION may use log notation: "09:30 Review PR @web +code ~1h",
    "@prev", "@2" or "@resume Review PR". A session id starts a copy of that
    session.
    """
    with handle_errors():
        result = _get_tracker(ctx).start(" ".join(description), project, tags, estimate, at)
    _print_started(result)


@main.command()
@click.option("--at", help="Stop time")
@click.option("--remark", "-r", help="Remark to attach")
@click.pass_context
def stop(ctx, at, remark):
    """Stop the active task and mark it completed."""
    with handle_errors():
        result = _get_tracker(ctx).stop(at, remark)
    session = result.session
    console.print(f"[green]✓ Stopped tracking: [bold]{session.description}[/bold][/green]")
    console.print(f"[dim]  Duration: {_format_elapsed(session)}[/dim]")
    if result.previous is not None:
        console.print(f"[green]▶ Resumed: {result.previous.description}[/green]")


@main.command()
@click.option("--at", help="Pause time")
@click.option("--reason", help="Why the task was paused")
@click.pass_context
def pause(ctx, at, reason):
    """Pause the active task so it can be resumed later."""
    with handle_errors():
        result = _get_tracker(ctx).pause(at, reason)
    console.print(f"[yellow]⏸ Paused: {result.session.description}[/yellow]")
    console.print(f"[dim]  Duration: {_format_elapsed(result.session)}[/dim]")
    if reason:
        console.print(f"[dim]  Reason: {reason}[/dim]")


@main.command()
@click.option("--at", help="Resume time")
@click.option("--remark", "-r", help="Remark for the finished interruption")
@click.pass_context
def resume(ctx, at, remark):
    """End the current interruption and return to the interrupted task."""
    with handle_errors():
        result = _get_tracker(ctx).resume(at, remark)
    console.print(f"[green]✓ Completed interruption: {result.previous.description}[/green]")
    console.print(f"[green]▶ Resumed: {result.session.description}[/green]")


@main.command()
@task_options
@click.pass_context
def interrupt(ctx, description, project, tags, estimate, at):
    """Interrupt the active task with another one."""
    with handle_errors():
        result = _get_tracker(ctx).interrupt(
            " ".join(description), project, tags, estimate, at
        )
    _print_warnings(result.warnings)
    console.print(f"[yellow]⏸ Paused: {result.previous.description}[/yellow]")
    console.print(f"[green]✓ Started interruption: {result.session.description}[/green]")
    _print_details(result.session, "Interruption ID")


@main.command()
@click.option("--at", help="Abandon time")
@click.option("--reason", help="Why the task was abandoned")
@click.pass_context
def abandon(ctx, at, reason):
    """Stop the active task and mark it abandoned."""
    with handle_errors():
        result = _get_tracker(ctx).abandon(at, reason)
    console.print(f"[yellow]⚠ Abandoned: {result.session.description}[/yellow]")
    if result.previous is not None:
        console.print(f"[green]▶ Resumed: {result.previous.description}[/green]")


@main.command(name="next")
@task_options
@click.pass_context
def next_task(ctx, description, project, tags, estimate, at):
    """Complete the active task and start another."""
    with handle_errors():
        result = _get_tracker(ctx).next(" ".join(description), project, tags, estimate, at)
    if result.previous is not None:
        console.print(f"[blue]✓ Completed: {result.previous.description}[/blue]")
    _print_started(result)


@main.command()
@task_options
@click.pass_context
def switch(ctx, description, project, tags, estimate, at):
    """Pause the active task and start another."""
    with handle_errors():
        result = _get_tracker(ctx).switch(" ".join(description), project, tags, estimate, at)
    if result.previous is not None:
        console.print(f"[yellow]⏸ Paused: {result.previous.description}[/yellow]")
    _print_started(result)


@main.command()
@click.pass_context
def status(ctx):
    """Show what is being tracked right now."""
    with handle_errors():
        report = _get_tracker(ctx).status()

    if report.active is None:
        console.print("[yellow]Not tracking anything[/yellow]")
        return

    for depth, ancestor in enumerate(report.ancestors):
        console.print(f"{'  ' * depth}[yellow]⏸ {ancestor.description}[/yellow]")
    active = report.active
    indent = "  " * len(report.ancestors)
    console.print(f"{indent}[green]▶ [bold]{active.description}[/bold][/green]")
    console.print(f"[dim]  Started: {active.start_time:%Y-%m-%d %H:%M:%S}[/dim]")
    console.print(f"[dim]  Elapsed: {_format_elapsed(active)}[/dim]")
    _print_details(active)
    if report.chain:
        console.print(f"[dim]  Part {len(report.chain)} of a continued task[/dim]")
    if report.summary is not None:
        console.print(f"[dim]  {_chain_progress(report.summary)}[/dim]")


def _chain_progress(summary: ChainSummary) -> str:
    spent = format_duration(summary.total_minutes) if summary.total_minutes else "0m"
    if summary.estimate_minutes is None:
        return f"Chain total: {spent}"
    return f"Chain total: {spent} of ~{format_duration(summary.estimate_minutes)}"


def _parse_day(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError as e:
        raise click.BadParameter(f"Expected YYYY-MM-DD, got {value}") from e


def _depths(sessions: List[Session]) -> dict:
    by_id = {s.id: s for s in sessions}
    depths = {}
    for session in sessions:
        depth = 0
        parent_id = session.parent_session_id
        while parent_id is not None and parent_id in by_id and depth < len(sessions):
            depth += 1
            parent_id = by_id[parent_id].parent_session_id
        depths[session.id] = depth
    return depths


def _print_sessions(sessions: List[Session], title: str, as_log: bool = False) -> None:
    if not sessions:
        console.print("[yellow]No sessions found[/yellow]")
        return

    depths = _depths(sessions)
    if as_log:
        last_day = None
        for session in sessions:
            day = session.start_time.date()
            console.print(
                format_session(session, depths[session.id], with_date=day != last_day),
                markup=False,
                highlight=False,
            )
            last_day = day
        return

    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Date", style="magenta")
    table.add_column("Start", style="magenta")
    table.add_column("End", style="magenta")
    table.add_column("Duration", style="blue")
    table.add_column("Description")
    table.add_column("Project", style="green")
    table.add_column("Tags", style="green")
    table.add_column("State")

    for session in sessions:
        prefix = "  " * depths[session.id] + ("↳ " if depths[session.id] else "")
        style = STATE_STYLES[session.state]
        table.add_row(
            str(session.id),
            session.start_time.strftime("%Y-%m-%d"),
            format_time(session.start_time),
            format_time(session.end_time),
            _format_elapsed(session),
            prefix + session.description,
            session.project or "",
            ", ".join(session.tags),
            f"[{style}]{session.state.value}[/{style}]",
        )

    console.print(table)


@main.command(name="list")
@click.option("--from", "from_day", help="First day to include (YYYY-MM-DD)")
@click.option("--to", "to_day", help="Last day to include (YYYY-MM-DD)")
@click.option("--project", "-p", help="Only this project")
@click.option("--tag", "-t", help="Only sessions with this tag")
@click.option(
    "--state",
    type=click.Choice([s.value for s in SessionState]),
    help="Only sessions in this state",
)
@click.option("--log", "as_log", is_flag=True, help="Print as log notation")
@click.pass_context
def list_command(ctx, from_day, to_day, project, tag, state, as_log):
    """List tracked sessions."""
    start = _parse_day(from_day)
    end = _parse_day(to_day)
    if end is not None:
        end += timedelta(days=1)
    if start is None and end is None:
        start = datetime.combine(datetime.now().date() - timedelta(days=6), datetime.min.time())

    with handle_errors():
        sessions = _get_tracker(ctx).list_sessions(
            start=start,
            end=end,
            project=project,
            tag=tag,
            state=SessionState(state) if state else None,
        )
    _print_sessions(sessions, "Sessions", as_log)


@main.command()
@click.argument("terms", nargs=-1, required=True)
@click.option("--project", "-p", help="Only this project")
@click.option("--tag", "-t", help="Only sessions with this tag")
@click.pass_context
def find(ctx, terms, project, tag):
    """Search session descriptions."""
    with handle_errors():
        sessions = _get_tracker(ctx).find(list(terms), project=project, tag=tag)
    _print_sessions(sessions, f"Sessions matching {' '.join(terms)!r}")


INCOMPLETE_ACTIONS = {
    "c": SessionState.COMPLETED,
    "complete": SessionState.COMPLETED,
    "a": SessionState.ABANDONED,
    "abandon": SessionState.ABANDONED,
}


@main.command()
@click.option("--from", "from_day", help="First day to include (YYYY-MM-DD)")
@click.option("--to", "to_day", help="Last day to include (YYYY-MM-DD)")
@click.option("--all", "all_time", is_flag=True, help="Look at every session ever tracked")
@click.pass_context
def incomplete(ctx, from_day, to_day, all_time):
    """Complete or abandon paused tasks that were never finished.

    Looks at the last 30 days unless --from, --to or --all is given.
    """
    start = None
    end = None
    if not all_time:
        start = _parse_day(from_day)
        end = _parse_day(to_day)
        if end is not None:
            end += timedelta(days=1)
        if from_day is None and to_day is None:
            start = datetime.combine(
                datetime.now().date() - timedelta(days=30), datetime.min.time()
            )

    tracker = _get_tracker(ctx)
    with handle_errors():
        chains = tracker.incomplete(start, end)

    if not chains:
        console.print("[yellow]No incomplete (paused) sessions found.[/yellow]")
        return

    console.print(f"\n[bold]Found {len(chains)} incomplete session(s):[/bold]\n")
    counts = {SessionState.COMPLETED: 0, SessionState.ABANDONED: 0, None: 0}
    for chain in chains:
        latest = chain.latest
        console.print(format_session(latest, with_date=True), markup=False, highlight=False)
        console.print(f"[dim]  Task ID: {latest.id}[/dim]")
        if len(chain.sessions) > 1:
            console.print(f"[dim]  Part {len(chain.sessions)} of a continued task[/dim]")
        console.print(f"[dim]  {_chain_progress(chain)}[/dim]")

        answer = click.prompt(
            "Action? [c]omplete / [a]bandon / [s]kip", default="s", show_default=False
        )
        state = INCOMPLETE_ACTIONS.get(answer.strip().lower())
        if state is not None:
            with handle_errors():
                tracker.close_chain(latest.id, state)
        if state == SessionState.COMPLETED:
            console.print("[green]✓ Marked as completed[/green]\n")
        elif state == SessionState.ABANDONED:
            console.print("[red]✗ Marked as abandoned[/red]\n")
        else:
            console.print("[dim]⊘ Skipped[/dim]\n")
        counts[state] += 1

    console.print("[bold]Summary:[/bold]")
    console.print(f"[green]  Completed: {counts[SessionState.COMPLETED]}[/green]")
    console.print(f"[red]  Abandoned: {counts[SessionState.ABANDONED]}[/red]")
    console.print(f"[dim]  Skipped: {counts[None]}[/dim]")


@main.command()
@click.argument("session_id", type=int)
@click.option("--description", "-d", help="New description")
@click.option("--project", "-p", help="New project (empty to clear)")
@click.option("--tags", "-t", help="New comma-separated tags (empty to clear)")
@click.option("--estimate", "-e", help="New estimate (empty to clear)")
@click.option("--remark", "-r", help="New remark (empty to clear)")
@click.option("--start", "start_time", help="New start time")
@click.option("--end", "end_time", help="New end time (empty to reopen)")
@click.option("--state", type=click.Choice([s.value for s in SessionState]))
@click.pass_context
def edit(ctx, session_id, description, project, tags, estimate, remark, start_time, end_time, state):
    """Correct a stored session."""
    changes = {}
    if description is not None:
        changes["description"] = description
    if project is not None:
        changes["project"] = project or None
    if tags is not None:
        changes["tags"] = split_tags(tags)
    if remark is not None:
        changes["remark"] = remark or None
    if state is not None:
        changes["state"] = SessionState(state)

    with handle_errors():
        if estimate is not None:
            changes["estimate_minutes"] = parse_duration(estimate) if estimate else None
        if start_time is not None:
            changes["start_time"] = parse_at_time(start_time)
        if end_time is not None:
            changes["end_time"] = parse_at_time(end_time) if end_time else None
        if not changes:
            console.print("[red]Error: No updates provided. Use --help to see available options.[/red]")
            raise click.Abort()
        session = _get_tracker(ctx).edit(session_id, **changes)

    console.print(f"[green]✓ Updated session {session.id}[/green]")
    console.print(format_session(session, with_date=True), markup=False, highlight=False)


@main.command()
@click.argument("session_id", type=int)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete(ctx, session_id, yes):
    """Delete a session and its interruptions."""
    tracker = _get_tracker(ctx)
    with handle_errors():
        session = tracker.store.get_by_id(session_id)
        if session is None:
            console.print(f"[red]Error: Session {session_id} not found[/red]")
            raise click.Abort()
        descendants = tracker.store.get_descendant_ids(session_id)
        console.print(format_session(session, with_date=True), markup=False, highlight=False)
        if descendants:
            console.print(f"[dim]  (includes {len(descendants)} interruption(s))[/dim]")
        if not yes and not click.confirm("Delete this session?"):
            console.print("[dim]Cancelled.[/dim]")
            return
        deleted = tracker.delete(session_id)
    console.print(f"[green]✓ Deleted {len(deleted)} session(s)[/green]")


def _with_error_comments(content: str, errors) -> str:
    lines = [ERROR_HEADER, "# Remove these comment lines when done", "#"]
    lines.extend(f"# ERROR: {error}" for error in errors)
    lines.extend(["#", ""])
    return "\n".join(lines) + content


@main.command()
@click.argument("file", type=click.File("r"), default="-")
@click.option("--overwrite", is_flag=True, help="Replace overlapping stored sessions")
@click.option("--edit", "edit_errors", is_flag=True, help="Open an editor to fix parse errors")
@click.option("--date", "initial_date", help="Date for time-only lines (YYYY-MM-DD)")
@click.pass_context
def log(ctx, file, overwrite, edit_errors, initial_date):
    """Import sessions from a log notation FILE (or stdin)."""
    config = ctx.obj["config"]
    content = file.read()
    day = _parse_day(initial_date)
    day = day.date() if day else None

    result = parse_file(content, day, config.large_gap_hours)
    while result.errors:
        console.print(f"[red bold]✗ Found {len(result.errors)} error(s):[/red bold]")
        for error in result.errors:
            console.print(f"[red]  {error}[/red]")
        if not edit_errors:
            raise click.Abort()

        edited = click.edit(_with_error_comments(content, result.errors), extension=".log")
        if edited is None:
            console.print("[dim]No changes made. Aborting.[/dim]")
            raise click.Abort()
        content = edited
        result = parse_file(content, day, config.large_gap_hours)

    _print_warnings(result.warnings)

    self_overlaps = validate_no_self_overlaps(result.entries)
    if self_overlaps:
        console.print("[red bold]✗ Found overlapping sessions in import file:[/red bold]")
        for message in self_overlaps:
            console.print(f"[red]  {message}[/red]")
        raise click.Abort()

    tracker = _get_tracker(ctx)
    with handle_errors():
        conflicts = find_conflicts(result.entries, tracker.store)
        if conflicts:
            console.print(f"[yellow bold]⚠ Found {len(conflicts)} overlapping session(s):[/yellow bold]")
            total = 0
            for session in conflicts:
                descendants = tracker.store.get_descendant_ids(session.id)
                total += 1 + len(descendants)
                end = f"-{session.end_time:%H:%M}" if session.end_time else ""
                console.print(
                    f"  [yellow]#{session.id}[/yellow] {session.description} - "
                    f"{session.start_time:%b %d, %H:%M}{end}"
                )
            if not overwrite:
                console.print(
                    "[red]Cannot import: sessions would overlap with existing sessions.\n"
                    "Use --overwrite flag to replace overlapping sessions.[/red]"
                )
                raise click.Abort()
            if not click.confirm(
                f"This will delete {total} session(s) and replace them with the imported data. Continue?"
            ):
                console.print("[dim]Import cancelled.[/dim]")
                return

        try:
            summary = resolve_and_import(result.entries, tracker.store, overwrite=overwrite)
        except ImportConflictError as e:
            for conflict in e.conflicts:
                console.print(f"[red]  {conflict}[/red]")
            raise

    _print_warnings(summary.warnings)
    if summary.deleted_ids:
        console.print(f"[green]✓ Deleted {len(summary.deleted_ids)} session(s)[/green]")
    message = f"✓ Logged {summary.sessions} session(s)"
    if summary.interruptions:
        message += f", {summary.interruptions} interruption(s)"
    console.print(f"[green]{message}[/green]")


if __name__ == "__main__":
    main()

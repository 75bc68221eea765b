"""Command line interface for mistakebook."""

from __future__ import annotations

import difflib
import json
import re
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator

import click
import yaml
from click.core import ParameterSource
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from mistakebook.config import (
    ConfigError,
    ConfigManager,
    MistakebookConfig,
    assign_nested,
    resolve_with_precedence,
)
from mistakebook.exams import ExamManager
from mistakebook.log_setup import configure_logging
from mistakebook.members import MemberError, MemberManager
from mistakebook.state import DuplicateContentError, MetadataStore, StateError, TrackedItem
from mistakebook.state.hashing import HashComputer
from mistakebook.state.queries import due_items, training_history
from mistakebook.timeutils import parse_datetime, utcnow
from mistakebook.training import TrainingConfigError, TrainingEngine

console = Console()

_DOMAIN_ERRORS = (StateError, MemberError, ConfigError, TrainingConfigError)
_ITEM_TYPES = click.Choice(["mistake", "answer"])
_RESULTS = click.Choice(["success", "fail"])


@dataclass
class _Session:
    """Settings and collaborators shared by a single command invocation."""

    config: MistakebookConfig
    members: MemberManager

    @property
    def store(self) -> MetadataStore:
        return self.members.store

    @property
    def exams(self) -> ExamManager:
        return self.members.exams

    @property
    def training_config_path(self) -> Path:
        return Path(self.config.training.config_path).expanduser()

    def engine(self) -> TrainingEngine:
        return TrainingEngine.from_file(self.training_config_path)


def _open_session() -> _Session:
    """Load settings, configure logging, and open the member registry.

    Raises:
        ConfigError: If settings cannot be loaded.
        MemberError: If the member registry is unreadable.
    """
    manager = ConfigManager()
    manager.ensure_exists()
    config = manager.load()
    configure_logging(config.logging)
    storage = config.storage
    members = MemberManager(
        Path(storage.root),
        default_member=storage.default_member,
        metadata_filename=storage.metadata_filename,
        hasher=HashComputer(chunk_size=storage.hash_chunk_size),
        answer_time_limit=config.review.answer_time_limit,
    )
    return _Session(config=config, members=members)


def _error_code(exc: Exception) -> str:
    name = re.sub(r"(?<!^)(?=[A-Z])", "_", type(exc).__name__).lower()
    return name.removesuffix("_error") or "error"


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    details: Any | None = None,
    original: Exception | None = None,
) -> None:
    """Emit a standardized error and terminate the command appropriately.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Indicates whether JSON mode is active.
        details: Optional structured details to include in the payload.
        original: Original exception for chaining when not using JSON.

    Raises:
        SystemExit: When emitting JSON output to terminate the command.
        click.ClickException: For non-JSON flows to surface the error.
    """
    if json_output:
        payload: dict[str, Any] = {"error": {"code": code, "message": message}}
        if details is not None:
            payload["error"]["details"] = details
        console.print_json(data=payload)
        raise SystemExit(1)

    if isinstance(original, click.ClickException):
        raise original

    raise click.ClickException(message) from original


@contextmanager
def _cli_errors(json_output: bool = False) -> Iterator[None]:
    """Translate domain exceptions raised inside the block into CLI errors."""
    try:
        yield
    except click.ClickException:
        raise
    except _DOMAIN_ERRORS as exc:
        _handle_cli_error(str(exc), code=_error_code(exc), json_output=json_output, original=exc)


def _emit_message(message: Any, *, mode: str, quiet: bool) -> None:
    """Print ``message`` unless quiet mode hides it.

    Args:
        message: Renderable or string to emit.
        mode: Output mode identifier (`detail`, `summary`, `warning`, or `error`).
        quiet: Whether quiet mode is active.
    """
    if quiet and mode != "error":
        return
    console.print(message)


def _resolve_quiet(ctx: click.Context, quiet: bool, session: _Session) -> bool:
    if ctx.get_parameter_source("quiet") == ParameterSource.COMMANDLINE:
        return quiet
    return session.config.cli.quiet_default


def _format_date(value: Any) -> str:
    return value.date().isoformat() if value is not None else "-"


def _items_table(title: str, items: Iterable[TrackedItem]) -> Table:
    table = Table(title=title)
    table.add_column("ID", no_wrap=True)
    table.add_column("Type")
    table.add_column("File")
    table.add_column("Proficiency", justify="right")
    table.add_column("Interval", justify="right")
    table.add_column("Next review")
    table.add_column("Flags")
    for item in items:
        flags = []
        if item.is_paired:
            flags.append("paired")
        if item.is_frozen:
            flags.append("frozen")
        table.add_row(
            item.id,
            item.item_type,
            item.relative_path,
            str(item.proficiency),
            f"{item.training_interval}d",
            _format_date(item.next_training_date),
            ", ".join(flags),
        )
    return table


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="mistakebook")
def cli() -> None:
    """Track mistake images and schedule them for spaced-repetition review."""


# Members ------------------------------------------------------------------


@cli.group()
def member() -> None:
    """Manage members, each with a separate collection."""


@member.command("create")
@click.argument("name")
def member_create(name: str) -> None:
    """Create member NAME with an empty collection."""
    with _cli_errors():
        session = _open_session()
        info = session.members.create(name)
    console.print(f"[green]Created member {info.name}.[/green]")


@member.command("switch")
@click.argument("name")
def member_switch(name: str) -> None:
    """Make NAME the current member."""
    with _cli_errors():
        session = _open_session()
        store = session.members.switch(name)
    console.print(f"[green]Now using {name} ({len(store)} item(s)).[/green]")


@member.command("delete")
@click.argument("name")
@click.option("--keep-files", is_flag=True, help="Unregister the member but keep its files.")
def member_delete(name: str, keep_files: bool) -> None:
    """Delete member NAME and its collection."""
    with _cli_errors():
        session = _open_session()
        session.members.delete(name, purge=not keep_files)
    console.print(f"[green]Deleted member {name}.[/green]")


@member.command("list")
@click.option("--json", "json_output", is_flag=True, help="Emit members as JSON.")
def member_list(json_output: bool) -> None:
    """List members and their item counts."""
    with _cli_errors(json_output):
        session = _open_session()
        current = session.members.get_current().name
        rows = [
            (info, len(session.members.store_for(info.name))) for info in session.members.list()
        ]

    if json_output:
        payload = [
            {**info.to_json_dict(), "items": count, "current": info.name == current}
            for info, count in rows
        ]
        console.print_json(data={"members": payload})
        return

    table = Table(title="Members")
    table.add_column("Name")
    table.add_column("Created")
    table.add_column("Items", justify="right")
    table.add_column("Current")
    for info, count in rows:
        table.add_row(
            info.name,
            _format_date(info.created_at),
            str(count),
            "*" if info.name == current else "",
        )
    console.print(table)


@member.command("current")
def member_current() -> None:
    """Show the current member."""
    with _cli_errors():
        session = _open_session()
        info = session.members.get_current()
        location = session.store.base_dir
    console.print(f"{info.name} ({location})")


# Items --------------------------------------------------------------------


@cli.command()
@click.argument(
    "paths", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@click.option("--type", "item_type", type=_ITEM_TYPES, help="Item type for the added files.")
@click.option("--subject", type=str, help="Subject assigned to the added files.")
@click.option("--tag", "tags", multiple=True, help="Tag assigned to the added files.")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON describing added files.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def add(
    ctx: click.Context,
    paths: tuple[Path, ...],
    item_type: str | None,
    subject: str | None,
    tags: tuple[str, ...],
    json_output: bool,
    quiet: bool,
) -> None:
    """Copy PATHS into the current collection and start tracking them.

    Files whose content is already tracked are reported and skipped.
    """
    with _cli_errors(json_output):
        session = _open_session()
        quiet_enabled = True if json_output else _resolve_quiet(ctx, quiet, session)
        store = session.store
        added: list[dict[str, str]] = []
        duplicates: list[dict[str, str]] = []
        errors: list[str] = []

        for path in paths:
            try:
                item_id = store.import_file(path)
            except DuplicateContentError as exc:
                duplicates.append({"path": str(path), "existingId": exc.existing_id})
                _emit_message(
                    f"[yellow]Skipped {path}: already tracked as {exc.existing_id}.[/yellow]",
                    mode="warning",
                    quiet=quiet_enabled,
                )
                continue
            except StateError as exc:
                errors.append(str(exc))
                continue

            if item_type is not None:
                store.set_type(item_id, item_type)  # type: ignore[arg-type]
            if subject is not None or tags:
                store.update_details(item_id, subject=subject, tags=list(tags) or None)
            added.append({"id": item_id, "path": str(path)})
            _emit_message(f"Added {path} as {item_id}.", mode="detail", quiet=quiet_enabled)

    if json_output:
        console.print_json(data={"added": added, "duplicates": duplicates, "errors": errors})
    else:
        for message in errors:
            _emit_message(f"[red]- {message}[/red]", mode="error", quiet=quiet_enabled)
        _emit_message(
            f"[green]Add summary: added={len(added)}, duplicates={len(duplicates)}, "
            f"errors={len(errors)}.[/green]",
            mode="summary",
            quiet=quiet_enabled,
        )
    if errors:
        raise SystemExit(1)


@cli.command("list")
@click.option("--type", "item_type", type=_ITEM_TYPES, help="Only list items of this type.")
@click.option("--json", "json_output", is_flag=True, help="Emit items as JSON.")
def list_items(item_type: str | None, json_output: bool) -> None:
    """List every tracked item in the current collection."""
    with _cli_errors(json_output):
        session = _open_session()
        items = session.store.get_metadata().files.values()
        selected = [item for item in items if item_type is None or item.item_type == item_type]

    if json_output:
        console.print_json(data={"items": [item.to_json_dict() for item in selected]})
        return
    console.print(_items_table(f"Items ({len(selected)})", selected))


@cli.command()
@click.argument("item_id")
@click.option("--json", "json_output", is_flag=True, help="Emit the item as JSON.")
def show(item_id: str, json_output: bool) -> None:
    """Show the full record for ITEM_ID."""
    with _cli_errors(json_output):
        session = _open_session()
        store = session.store
        item = store.get_item(item_id)
        partners = [partner.id for partner in store.partners(item_id)]
        path = store.resolve_path(item_id)

    if json_output:
        console.print_json(data={**item.to_json_dict(), "path": str(path), "partners": partners})
        return

    table = Table(title=f"Item {item.id}", show_header=False)
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("File", str(path))
    table.add_row("Type", item.item_type)
    table.add_row("Subject", item.subject or "-")
    table.add_row("Tags", ", ".join(item.tags))
    table.add_row("Notes", item.notes or "-")
    table.add_row("Proficiency", str(item.proficiency))
    table.add_row("Interval", f"{item.training_interval} day(s)")
    table.add_row("Last review", item.last_training_date.isoformat())
    table.add_row("Next review", item.next_training_date.isoformat())
    table.add_row("Reviews", str(len(item.training_records)))
    table.add_row("Answer time limit", f"{item.answer_time_limit}s")
    table.add_row("Frozen", "yes" if item.is_frozen else "no")
    table.add_row("Paired with", ", ".join(partners) or "-")
    console.print(table)


@cli.command()
@click.option("--include-frozen", is_flag=True, help="List frozen items as well.")
@click.option("--all-types", is_flag=True, help="Include answer items as well as mistakes.")
@click.option("--limit", type=click.IntRange(min=1), help="Maximum number of items to list.")
@click.option("--json", "json_output", is_flag=True, help="Emit due items as JSON.")
def due(
    include_frozen: bool, all_types: bool, limit: int | None, json_output: bool
) -> None:
    """List items due for review, earliest first."""
    with _cli_errors(json_output):
        session = _open_session()
        frozen = include_frozen or session.config.review.include_frozen
        items = due_items(
            session.store.get_metadata().files.values(),
            utcnow(),
            include_frozen=frozen,
            item_type=None if all_types else "mistake",
        )
    if limit is not None:
        items = items[:limit]

    if json_output:
        console.print_json(data={"due": [item.to_json_dict() for item in items]})
        return
    if not items:
        console.print("[green]Nothing is due for review.[/green]")
        return
    console.print(_items_table(f"Due for review ({len(items)})", items))


@cli.command()
@click.argument("item_id")
@click.argument("result", type=_RESULTS)
@click.option("--date", "training_date", type=str, help="When the review happened (ISO 8601).")
@click.option(
    "--answer-time", type=click.IntRange(min=0), help="Milliseconds spent answering."
)
@click.option("--json", "json_output", is_flag=True, help="Emit the updated item as JSON.")
def train(
    item_id: str,
    result: str,
    training_date: str | None,
    answer_time: int | None,
    json_output: bool,
) -> None:
    """Record a review of ITEM_ID with RESULT (success or fail)."""
    with _cli_errors(json_output):
        session = _open_session()
        store = session.store
        item = store.get_item(item_id)
        patch = session.engine().process_training(
            item, result == "success", training_date, answer_time=answer_time
        )
        updated = store.record_training(item_id, patch)

    if json_output:
        console.print_json(data=updated.to_json_dict())
        return
    console.print(
        f"[green]{item_id}: proficiency {item.proficiency} -> {updated.proficiency}, "
        f"next review in {updated.training_interval} day(s) "
        f"({_format_date(updated.next_training_date)}).[/green]"
    )


@cli.command()
@click.option("--limit", type=click.IntRange(min=0), help="Maximum number of items to show.")
@click.option("--json", "json_output", is_flag=True, help="Emit history as JSON.")
def history(limit: int | None, json_output: bool) -> None:
    """Show recently reviewed items with their latest outcome."""
    with _cli_errors(json_output):
        session = _open_session()
        effective_limit = session.config.cli.history_limit if limit is None else limit
        items = training_history(session.store.get_metadata().files.values())[:effective_limit]

    if json_output:
        payload = [
            {
                "id": item.id,
                "relativePath": item.relative_path,
                "proficiency": item.proficiency,
                "records": [record.to_json_dict() for record in item.training_records],
            }
            for item in items
        ]
        console.print_json(data={"history": payload})
        return

    table = Table(title="Training history")
    table.add_column("ID", no_wrap=True)
    table.add_column("File")
    table.add_column("Last review")
    table.add_column("Result")
    table.add_column("On time")
    table.add_column("Proficiency", justify="right")
    table.add_column("Reviews", justify="right")
    for item in items:
        last = item.training_records[-1]
        table.add_row(
            item.id,
            item.relative_path,
            _format_date(last.date),
            last.result,
            "yes" if last.is_on_time else "no",
            f"{last.proficiency_before} -> {last.proficiency_after}",
            str(len(item.training_records)),
        )
    console.print(table)


@cli.command()
@click.argument("first_id")
@click.argument("second_id")
def pair(first_id: str, second_id: str) -> None:
    """Pair a mistake with its answer (or any two items)."""
    with _cli_errors():
        pair_id = _open_session().store.pair(first_id, second_id)
    console.print(f"[green]Paired {first_id} and {second_id} ({pair_id}).[/green]")


@cli.command()
@click.argument("first_id")
@click.argument("second_id")
def unpair(first_id: str, second_id: str) -> None:
    """Remove the pairing between two items."""
    with _cli_errors():
        _open_session().store.unpair(first_id, second_id)
    console.print(f"[green]Unpaired {first_id} and {second_id}.[/green]")


@cli.command("set-type")
@click.argument("item_id")
@click.argument("item_type", type=_ITEM_TYPES)
def set_type(item_id: str, item_type: str) -> None:
    """Mark ITEM_ID as a mistake or an answer."""
    with _cli_errors():
        _open_session().store.set_type(item_id, item_type)  # type: ignore[arg-type]
    console.print(f"[green]{item_id} is now of type {item_type}.[/green]")


@cli.command()
@click.argument("item_id")
@click.option("--unfreeze", is_flag=True, help="Return the item to the review queue.")
def freeze(item_id: str, unfreeze: bool) -> None:
    """Exclude ITEM_ID from review queues (or include it again)."""
    with _cli_errors():
        _open_session().store.set_frozen(item_id, not unfreeze)
    state = "unfrozen" if unfreeze else "frozen"
    console.print(f"[green]{item_id} {state}.[/green]")


@cli.command()
@click.argument("item_id")
@click.option("--subject", type=str, help="Replace the subject.")
@click.option("--tag", "tags", multiple=True, help="Replace the tags (repeatable).")
@click.option("--notes", type=str, help="Replace the notes.")
@click.option("--time-limit", type=click.IntRange(min=1), help="Answer time limit in seconds.")
@click.option("--next-date", type=str, help="Reschedule the next review (ISO 8601).")
def edit(
    item_id: str,
    subject: str | None,
    tags: tuple[str, ...],
    notes: str | None,
    time_limit: int | None,
    next_date: str | None,
) -> None:
    """Update descriptive fields or the schedule of ITEM_ID."""
    when = None
    if next_date is not None:
        when = parse_datetime(next_date)
        if when is None:
            raise click.BadParameter(
                f"{next_date!r} is not a valid date.", param_hint="--next-date"
            )

    with _cli_errors():
        store = _open_session().store
        store.get_item(item_id)
        if subject is not None or tags or notes is not None:
            store.update_details(item_id, subject=subject, tags=list(tags) or None, notes=notes)
        if time_limit is not None:
            store.set_answer_time_limit(item_id, time_limit)
        if when is not None:
            store.set_next_training_date(item_id, when)
    console.print(f"[green]Updated {item_id}.[/green]")


@cli.command()
@click.argument("item_id")
@click.option("--cascade", is_flag=True, help="Also delete items paired with ITEM_ID.")
@click.option("--keep-file", is_flag=True, help="Stop tracking but leave files on disk.")
def delete(item_id: str, cascade: bool, keep_file: bool) -> None:
    """Stop tracking ITEM_ID and remove its stored file."""
    with _cli_errors():
        removed = _open_session().store.delete_file(
            item_id, cascade=cascade, remove_files=not keep_file
        )
    console.print(f"[green]Deleted {len(removed)} item(s): {', '.join(removed)}.[/green]")


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit pruned ids as JSON.")
def validate(json_output: bool) -> None:
    """Drop tracked items whose stored file has disappeared."""
    with _cli_errors(json_output):
        pruned = _open_session().store.validate_metadata()

    if json_output:
        console.print_json(data={"pruned": pruned})
        return
    if not pruned:
        console.print("[green]All tracked files are present.[/green]")
        return
    console.print(f"[yellow]Removed {len(pruned)} item(s) with missing files:[/yellow]")
    for item_id in pruned:
        console.print(f"- {item_id}")


@cli.command()
@click.argument("destination", type=click.Path(file_okay=False, path_type=Path))
@click.option("--json", "json_output", is_flag=True, help="Emit the migration result as JSON.")
def migrate(destination: Path, json_output: bool) -> None:
    """Move the current collection to DESTINATION, all or nothing."""
    with _cli_errors(json_output):
        session = _open_session()
        name = session.members.get_current().name
        outcome = session.members.migrate(name, destination)

    if json_output:
        console.print_json(
            data={
                "success": outcome.success,
                "migrated": outcome.migrated,
                "absorbed": outcome.absorbed,
                "errors": outcome.errors,
                "warnings": outcome.warnings,
            }
        )
        if not outcome.success:
            raise SystemExit(1)
        return

    for warning in outcome.warnings:
        console.print(f"[yellow]- {warning}[/yellow]")
    if not outcome.success:
        for error in outcome.errors:
            console.print(f"[red]- {error}[/red]")
        raise click.ClickException("Migration failed; the collection was left unchanged.")
    console.print(
        f"[green]Migrated {outcome.migrated} item(s) to {destination} "
        f"(absorbed {outcome.absorbed}).[/green]"
    )


# Scheduling configuration -------------------------------------------------


@cli.group()
def schedule() -> None:
    """Inspect or replace the review scheduling configuration."""


@schedule.command("show")
@click.option("--json", "json_output", is_flag=True, help="Emit raw JSON.")
def schedule_show(json_output: bool) -> None:
    """Display the active scheduling configuration."""
    with _cli_errors(json_output):
        engine = _open_session().engine()
    data = engine.config.to_json_dict()
    if json_output:
        console.print_json(data=data)
        return
    console.print(Syntax(json.dumps(data, indent=2, ensure_ascii=False), "json", word_wrap=True))


@schedule.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def schedule_import(path: Path) -> None:
    """Validate the JSON configuration at PATH and make it active."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"{path} is not valid JSON: {exc}") from exc

    with _cli_errors():
        session = _open_session()
        engine = session.engine()
        engine.update_config(data)
        engine.save_config(session.training_config_path)
    console.print(f"[green]Scheduling configuration imported from {path}.[/green]")


@schedule.command("policy")
@click.argument("name", type=click.Choice(["band", "deviation"]))
def schedule_policy(name: str) -> None:
    """Select the scheduling policy NAME."""
    with _cli_errors():
        session = _open_session()
        engine = session.engine()
        data = engine.config.to_json_dict()
        data["policy"] = name
        engine.update_config(data)
        engine.save_config(session.training_config_path)
    console.print(f"[green]Scheduling policy set to {name}.[/green]")


@schedule.command("reset")
def schedule_reset() -> None:
    """Restore the default scheduling configuration."""
    with _cli_errors():
        session = _open_session()
        TrainingEngine().save_config(session.training_config_path)
    console.print("[green]Scheduling configuration reset to defaults.[/green]")


# Exams --------------------------------------------------------------------


@cli.group()
def exam() -> None:
    """Run timed exams over tracked items."""


@exam.command("start")
@click.option("--limit", type=click.IntRange(min=1), help="Maximum number of questions.")
@click.option("--all", "use_all", is_flag=True, help="Use every mistake, not only due ones.")
@click.option("--item", "item_ids", multiple=True, help="Use these item ids instead.")
@click.option("--json", "json_output", is_flag=True, help="Emit the exam as JSON.")
def exam_start(
    limit: int | None, use_all: bool, item_ids: tuple[str, ...], json_output: bool
) -> None:
    """Start an exam from due mistakes (or the given items)."""
    with _cli_errors(json_output):
        session = _open_session()
        store = session.store
        if item_ids:
            items = [store.get_item(item_id) for item_id in item_ids]
        else:
            candidates = store.get_metadata().files.values()
            if use_all:
                items = sorted(
                    (item for item in candidates if item.item_type == "mistake"),
                    key=lambda item: item.next_training_date,
                )
            else:
                items = due_items(
                    candidates,
                    utcnow(),
                    include_frozen=session.config.review.include_frozen,
                )
        if limit is not None:
            items = items[:limit]
        if not items:
            raise click.ClickException("No items available for an exam.")
        record = session.exams.create_exam(items)

    if json_output:
        console.print_json(data=record.to_json_dict())
        return
    minutes, seconds = divmod(record.total_time, 60)
    console.print(
        f"[green]Started exam {record.id} with {len(record.items)} question(s), "
        f"{minutes}m{seconds:02d}s in total.[/green]"
    )


@exam.command("list")
@click.option("--json", "json_output", is_flag=True, help="Emit exams as JSON.")
def exam_list(json_output: bool) -> None:
    """List exams, newest first."""
    with _cli_errors(json_output):
        exams = _open_session().exams.list_exams()

    if json_output:
        console.print_json(data={"exams": [record.to_json_dict() for record in exams]})
        return
    table = Table(title="Exams")
    table.add_column("ID", no_wrap=True)
    table.add_column("Started")
    table.add_column("Status")
    table.add_column("Questions", justify="right")
    table.add_column("Graded", justify="right")
    for record in exams:
        graded = sum(1 for entry in record.items if entry.result is not None)
        table.add_row(
            record.id,
            record.start_time.isoformat(timespec="minutes"),
            record.status,
            str(len(record.items)),
            str(graded),
        )
    console.print(table)


@exam.command("show")
@click.argument("exam_id")
@click.option("--json", "json_output", is_flag=True, help="Emit the exam as JSON.")
def exam_show(exam_id: str, json_output: bool) -> None:
    """Show the questions of EXAM_ID."""
    with _cli_errors(json_output):
        record = _open_session().exams.get_exam(exam_id)
    if record is None:
        _handle_cli_error(
            f"No exam with id {exam_id!r}.", code="exam_not_found", json_output=json_output
        )
        return

    if json_output:
        console.print_json(data=record.to_json_dict())
        return
    table = Table(title=f"Exam {record.id} ({record.status})")
    table.add_column("#", justify="right")
    table.add_column("Item", no_wrap=True)
    table.add_column("Status")
    table.add_column("Time", justify="right")
    table.add_column("Result")
    for index, entry in enumerate(record.items):
        table.add_row(
            str(index),
            entry.file_id,
            entry.status,
            f"{entry.time_spent}/{entry.time_limit}s",
            entry.result or "-",
        )
    console.print(table)


@exam.command("answer")
@click.argument("exam_id")
@click.argument("index", type=click.IntRange(min=0))
@click.option("--time-spent", type=click.IntRange(min=0), required=True, help="Seconds used.")
@click.option(
    "--status",
    type=click.Choice(["answered", "timeout", "skipped"]),
    default="answered",
    show_default=True,
)
def exam_answer(exam_id: str, index: int, time_spent: int, status: str) -> None:
    """Record how question INDEX of EXAM_ID was answered."""
    with _cli_errors():
        exams = _open_session().exams
        record = exams.get_exam(exam_id)
        if record is None or not exams.update_exam_item(
            exam_id, index, {"time_spent": time_spent, "status": status}
        ):
            raise click.ClickException(f"No question {index} in exam {exam_id!r}.")
        exams.update_exam(
            exam_id,
            {"current_index": index + 1, "used_time": record.used_time + time_spent},
        )
    console.print(f"[green]Question {index} marked {status}.[/green]")


@exam.command("complete")
@click.argument("exam_id")
def exam_complete(exam_id: str) -> None:
    """Finish EXAM_ID and start grading."""
    with _cli_errors():
        completed = _open_session().exams.complete_exam(exam_id)
    if not completed:
        raise click.ClickException(f"No exam with id {exam_id!r}.")
    console.print(f"[green]Exam {exam_id} completed; grading starts at question 0.[/green]")


@exam.command("grade")
@click.argument("exam_id")
@click.argument("index", type=click.IntRange(min=0))
@click.argument("result", type=_RESULTS)
def exam_grade(exam_id: str, index: int, result: str) -> None:
    """Grade question INDEX of EXAM_ID and record the review."""
    with _cli_errors():
        session = _open_session()
        exams = session.exams
        record = exams.get_exam(exam_id)
        if record is None or index >= len(record.items):
            raise click.ClickException(f"No question {index} in exam {exam_id!r}.")
        if not record.is_grading:
            raise click.ClickException(f"Complete exam {exam_id} before grading it.")

        entry = record.items[index]
        store = session.store
        item = store.get_item(entry.file_id)
        answer_ms = entry.time_spent * 1000 if entry.time_spent else None
        patch = session.engine().process_training(
            item, result == "success", record.end_time, answer_time=answer_ms
        )
        updated = store.record_training(item.id, patch)
        exams.update_exam_item(exam_id, index, {"result": result})
        next_index = index + 1
        exams.update_exam(
            exam_id,
            {"grading_index": next_index, "is_grading": next_index < len(record.items)},
        )
    console.print(
        f"[green]{item.id}: proficiency {item.proficiency} -> {updated.proficiency}, "
        f"next review in {updated.training_interval} day(s).[/green]"
    )


@exam.command("delete")
@click.argument("exam_id")
def exam_delete(exam_id: str) -> None:
    """Delete EXAM_ID."""
    with _cli_errors():
        deleted = _open_session().exams.delete_exam(exam_id)
    if not deleted:
        raise click.ClickException(f"No exam with id {exam_id!r}.")
    console.print(f"[green]Deleted exam {exam_id}.[/green]")


# Settings -----------------------------------------------------------------


def _checked_overrides(data: dict[str, Any], *, origin: str) -> dict[str, Any]:
    """Validate file-level settings before they are written.

    Args:
        data: Nested settings destined for ``config.yaml``.
        origin: Short label naming where the values came from, used in errors.

    Returns:
        dict[str, Any]: ``data`` unchanged.

    Raises:
        click.ClickException: If the merged settings would be invalid.
    """
    try:
        resolve_with_precedence(defaults=MistakebookConfig(), file_overrides=data)
    except ConfigError as exc:
        raise click.ClickException(f"Rejected {origin}: {exc}") from exc
    return data


def _settings_diff(before: str, after: str) -> list[str]:
    """Unified diff of two settings files, ignoring the timestamp header."""
    lines = difflib.unified_diff(
        before.splitlines(),
        after.splitlines(),
        fromfile="config.yaml (old)",
        tofile="config.yaml (new)",
        lineterm="",
    )
    return [line for line in lines if not line[1:].startswith("# Last updated:")]


@cli.group()
def config() -> None:
    """Manage mistakebook settings and overrides."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Show settings without MISTAKEBOOK__ variables.")
def config_view(no_env: bool) -> None:
    """Print the settings mistakebook runs with.

    Keys decided by ``MISTAKEBOOK__`` variables are listed after the YAML.
    """
    manager = ConfigManager()
    with _cli_errors():
        manager.ensure_exists()
        settings = manager.load(include_env=not no_env)
        from_env = [
            key
            for key, source in manager.sources(include_env=not no_env).items()
            if source == "environment"
        ]

    console.print(f"[dim]# {manager.config_path}[/dim]")
    rendered = yaml.safe_dump(settings.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(rendered, "yaml", word_wrap=True))
    if from_env:
        console.print("[yellow]Overridden by environment:[/yellow] " + ", ".join(from_env))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="YAML literal stored at KEY.")
def config_set(key: str, value: str) -> None:
    """Store VALUE at the dotted KEY, for example review.include_frozen."""
    path = [part.strip() for part in key.split(".") if part.strip()]
    if not path:
        raise click.ClickException(f"{key!r} is not a dotted settings key.")
    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"--value is not a YAML literal: {exc}") from exc

    manager = ConfigManager()
    with _cli_errors():
        manager.ensure_exists()
        before = manager.read_text()
        overrides = manager.load_file_overrides()
        assign_nested(overrides, path, parsed)
    manager.save(_checked_overrides(overrides, origin=".".join(path)))

    diff = _settings_diff(before, manager.read_text())
    if not any(line[:1] in "+-" and line[:3] not in ("+++", "---") for line in diff):
        console.print(f"[yellow]{'.'.join(path)} already holds that value.[/yellow]")
        return
    console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    console.print(f"[green]Updated {'.'.join(path)}.[/green]")


@config.command("edit")
def config_edit() -> None:
    """Edit config.yaml in $EDITOR and save it once it validates."""
    manager = ConfigManager()
    with _cli_errors():
        manager.ensure_exists()
        original = manager.read_text()

    edited = click.edit(original, extension=".yaml")
    if edited is None or edited == original:
        console.print("[yellow]config.yaml left unchanged.[/yellow]")
        return

    try:
        parsed = yaml.safe_load(edited)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Edited config.yaml is not valid YAML: {exc}") from exc
    if parsed is None:
        parsed = {}
    if not isinstance(parsed, dict):
        raise click.ClickException("Edited config.yaml must map section names to settings.")

    manager.save(_checked_overrides(parsed, origin="edited config.yaml"))
    console.print(f"[green]Settings updated in {manager.config_path}.[/green]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point."""
    cli()


if __name__ == "__main__":
    main()

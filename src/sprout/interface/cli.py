"""Sprout CLI: sync, scheduling, maintenance and the HTTP daemon."""

import asyncio
import json
import logging
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Annotated, Any

import typer

from sprout.application.config import AppConfig, resolve_config
from sprout.application.factory import get_service
from sprout.application.logging_setup import setup_logging
from sprout.application.reconciler import format_sync_notice
from sprout.domain.errors import SproutError
from sprout.domain.scheduling import Grade

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="sprout: flashcards in your Markdown notes, scheduled for you.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

config_app = typer.Typer(help="Manage sprout configuration.")
app.add_typer(config_app, name="config")

backup_app = typer.Typer(help="Create, list and restore data file backups.", no_args_is_help=True)
app.add_typer(backup_app, name="backup")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 1,
    vault: Annotated[
        Path | None, typer.Option("--vault", help="Vault root. Defaults to config, or CWD.")
    ] = None,
):
    """Global settings for sprout."""
    ctx.ensure_object(dict)
    ctx.obj["verbose_bonus"] = verbose
    ctx.obj["vault_root"] = vault


def _config(ctx: typer.Context, **overrides: Any) -> AppConfig:
    obj = ctx.obj or {}
    overrides.setdefault("vault_root", obj.get("vault_root"))
    overrides.setdefault("verbose", obj.get("verbose_bonus", 1))
    config = resolve_config(overrides)
    try:
        _, log_path, run_id = setup_logging(config.log_dir, config.verbose)
        logger.debug(f"Run {run_id} logging to {log_path}")
    except OSError as e:
        logger.warning(f"File logging disabled: {e}")
    return config


def _run(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run a coroutine, turning sprout errors into a red message and exit code 1."""
    try:
        return asyncio.run(coro)
    except SproutError as e:
        typer.secho(f"Error: {e}", fg="red")
        raise typer.Exit(1) from e


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


@app.command()
def sync(
    ctx: typer.Context,
    path: Annotated[
        Path | None,
        typer.Argument(help="Vault directory or a single note. Defaults to 'vault_root' or CWD."),
    ] = None,
    allow_mass_delete: Annotated[
        bool,
        typer.Option(
            "--allow-mass-delete", help="Accept a sync that deletes nearly every card."
        ),
    ] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """[bold green]Sync[/bold green] card blocks from your notes into the data file."""
    config = _config(ctx, root_input=path)

    async def run():
        service = await get_service(config)
        if config.root_input.is_file():
            rel = config.root_input.relative_to(config.vault_root).as_posix()
            return await service.sync_file(rel)
        return await service.sync_all(allow_mass_delete=allow_mass_delete)

    result = _run(run())
    if json_output:
        typer.echo(json.dumps(result.__dict__, indent=2))
        return
    typer.secho(format_sync_notice("Sync complete", result), fg="green")
    if result.quarantined_ids:
        typer.secho(
            f"Quarantined: {', '.join(result.quarantined_ids)} (see 'sprout quarantine')",
            fg="yellow",
        )


@app.command("format")
def format_note(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="Note to rewrite in canonical block form.")],
):
    """Rewrite every card block in a note in canonical form."""
    config = _config(ctx, root_input=path)
    if not config.root_input.is_file():
        typer.secho(f"File not found: {path}", fg="red")
        raise typer.Exit(1)

    async def run():
        service = await get_service(config)
        return await service.rewrite_note(config.root_input.relative_to(config.vault_root).as_posix())

    changed = _run(run())
    typer.echo(f"Rewrote {changed} block(s).")


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@app.command()
def status(
    ctx: typer.Context,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show card, state and quarantine counts."""
    config = _config(ctx)

    async def run():
        service = await get_service(config)
        return service.status()

    st = _run(run())
    if json_output:
        typer.echo(json.dumps(st.as_dict(), indent=2))
        return
    typer.echo(
        f"Cards: {st.cards}  Due: {st.due}  Suspended: {st.suspended}  "
        f"Quarantined: {st.quarantined}  Reviews: {st.reviews}  Groups: {st.groups}"
    )


@app.command()
def due(
    ctx: typer.Context,
    limit: Annotated[int | None, typer.Option(help="Show at most this many cards.")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """List cards that are due now."""
    config = _config(ctx)

    async def run():
        service = await get_service(config)
        return service.due(limit)

    rows = _run(run())
    if json_output:
        typer.echo(json.dumps(rows, indent=2))
        return
    if not rows:
        typer.secho("Nothing due.", fg="green")
        return
    for row in rows:
        typer.echo(f"{row['id']}  {row['type']}  {row['stage']}")


@app.command()
def quarantine(
    ctx: typer.Context,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """List blocks that failed to parse."""
    config = _config(ctx)

    async def run():
        service = await get_service(config)
        return service.store.get_quarantine()

    entries = _run(run())
    if json_output:
        typer.echo(json.dumps({k: v.model_dump() for k, v in entries.items()}, indent=2))
        return
    if not entries:
        typer.secho("No quarantined cards.", fg="green")
        return
    for entry in entries.values():
        typer.secho(f"{entry.id}  {entry.note_path}", fg="yellow")
        typer.echo(f"  {entry.reason}")


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


@app.command()
def review(
    ctx: typer.Context,
    card_id: Annotated[str, typer.Argument(help="Card id (the part after ^sprout-).")],
    grade: Annotated[Grade, typer.Argument(help="again, hard, good or easy.")],
):
    """Grade one card."""
    config = _config(ctx)

    async def run():
        service = await get_service(config)
        return await service.grade(card_id, grade)

    result = _run(run())
    st = result.next_state
    typer.echo(
        json.dumps(
            {"id": st.id, "stage": st.stage.value, "due": st.due, "scheduled_days": st.scheduled_days}
        )
    )


@app.command()
def suspend(
    ctx: typer.Context,
    card_ids: Annotated[list[str], typer.Argument(help="Card ids.")],
):
    """Suspend cards; their scheduling is frozen until unsuspended."""
    config = _config(ctx)

    async def run():
        service = await get_service(config)
        return await service.suspend(card_ids)

    states = _run(run())
    typer.echo(json.dumps({"ok": True, "suspended": [s.id for s in states]}))


@app.command()
def unsuspend(
    ctx: typer.Context,
    card_ids: Annotated[list[str], typer.Argument(help="Card ids.")],
):
    """Unsuspend cards, restoring exactly the state they had."""
    config = _config(ctx)

    async def run():
        service = await get_service(config)
        return await service.unsuspend(card_ids)

    states = _run(run())
    typer.echo(json.dumps({"ok": True, "unsuspended": [s.id for s in states]}))


@app.command()
def reset(
    ctx: typer.Context,
    card_ids: Annotated[list[str] | None, typer.Argument(help="Card ids.")] = None,
    all_cards: Annotated[bool, typer.Option("--all", help="Reset every scheduled card.")] = False,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation.")] = False,
):
    """Reset scheduling back to new. Review history stays in the log."""
    if not card_ids and not all_cards:
        typer.secho("Give card ids or --all.", fg="red")
        raise typer.Exit(2)
    if all_cards and not yes:
        typer.confirm("Reset scheduling for every card?", abort=True)

    config = _config(ctx)

    async def run():
        service = await get_service(config)
        return await service.reset_scheduling(None if all_cards else card_ids)

    states = _run(run())
    typer.secho(f"Reset {len(states)} card(s).", fg="green")


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------


@backup_app.command("create")
def backup_create(ctx: typer.Context):
    """Back up the data file now."""
    config = _config(ctx)

    async def run():
        service = await get_service(config)
        return await service.create_backup("manual")

    path = _run(run())
    if path is None:
        typer.secho("Nothing to back up yet.", fg="yellow")
        return
    typer.secho(f"Backup written: {path}", fg="green")


@backup_app.command("list")
def backup_list(ctx: typer.Context):
    """List backups, newest first."""
    from sprout.application.backup import BackupService

    config = _config(ctx)
    for path in BackupService(config.backup_dir, config.max_backups).list():
        typer.echo(path.name)


@backup_app.command("restore")
def backup_restore(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="Backup file (name or path).")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation.")] = False,
):
    """Replace the store with a backup. The current file is backed up first."""
    if not yes:
        typer.confirm(f"Restore {path.name}? Current scheduling data will be replaced.", abort=True)
    config = _config(ctx)

    async def run():
        service = await get_service(config)
        return await service.restore_backup(path)

    _run(run())
    typer.secho(f"Restored {path.name}.", fg="green")


# ---------------------------------------------------------------------------
# Config / server
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show():
    """Display final resolved configuration."""
    config = resolve_config()
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    typer.echo(json.dumps(d, indent=2))


@app.command()
def serve(
    host: Annotated[str, typer.Option(help="Interface to bind.")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Port to listen on.")] = 8777,
    reload: Annotated[bool, typer.Option(help="Reload on code changes.")] = False,
):
    """Run the sprout HTTP daemon."""
    import uvicorn

    uvicorn.run("sprout.server:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()

"""hifz CLI: training sessions, progress reports, content import and saved learnings."""

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Literal, TypeVar

import typer

from hifz.application.config import AppConfig, resolve_config
from hifz.domain.exceptions import HifzError

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="hifz: spaced-repetition training for memorizing long texts.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

LOG_LEVELS = {0: logging.ERROR, 1: logging.WARNING, 2: logging.INFO}

# ---------------------------------------------------------------------------
# Subgroups
# ---------------------------------------------------------------------------

learnings_app = typer.Typer(help="Manage saved learnings (named item ranges).")
app.add_typer(learnings_app, name="learnings")

config_app = typer.Typer(help="Inspect hifz configuration.")
app.add_typer(config_app, name="config")


# ---------------------------------------------------------------------------
# Global callback
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
    db_path: Annotated[Path | None, typer.Option(help="SQLite database file.")] = None,
    backend: Annotated[
        str | None, typer.Option(help="Storage backend: sqlite, memory.")
    ] = None,
):
    """Global settings for hifz."""
    ctx.ensure_object(dict)
    ctx.obj["overrides"] = {"verbose": verbose, "db_path": db_path, "backend": backend}
    logging.getLogger("hifz").setLevel(LOG_LEVELS.get(verbose, logging.DEBUG))


def _config(ctx: typer.Context) -> AppConfig:
    overrides = (ctx.obj or {}).get("overrides", {})
    try:
        return resolve_config(overrides)
    except ValueError as e:
        typer.secho(f"Invalid configuration: {e}", fg="red")
        raise typer.Exit(1) from None


def _run(config: AppConfig, work: Callable[..., Awaitable[T]]) -> T:
    """Open the configured stores, run `work(stores)` and close them again."""
    from hifz.application.factory import get_stores

    try:
        stores = get_stores(config)
        try:
            return asyncio.run(work(stores))
        finally:
            stores.close()
    except HifzError as e:
        typer.secho(f"Error: {e}", fg="red")
        raise typer.Exit(1) from None


# ---------------------------------------------------------------------------
# Root commands
# ---------------------------------------------------------------------------


@app.command("import")
def import_cmd(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="YAML or JSON content file.")],
):
    """[bold green]Import[/bold green] content items into the database."""
    from hifz.infrastructure.adapters.item_import import load_items

    config = _config(ctx)

    async def run(stores):
        items = load_items(path)
        return stores.import_items(items)

    count = _run(config, run)
    typer.secho(f"Imported {count} items.", fg="green")


@app.command()
def train(
    ctx: typer.Context,
    start: Annotated[int, typer.Argument(help="First item id of the range.")],
    end: Annotated[int, typer.Argument(help="Last item id of the range.")],
    batch_size: Annotated[int | None, typer.Option(help="Items per page.")] = None,
):
    """Run an interactive [bold]training session[/bold] over an item range.

    Grade each item 1-5 (3 and above is a pass). Commands:
    r = jump to the next due review, m = back to memorization,
    t = free training, l = jump to latest saved, s = restart, q = quit.
    """
    from hifz.application.session_orchestrator import SessionOrchestrator

    config = _config(ctx)

    async def run(stores):
        orchestrator = SessionOrchestrator(stores.items, stores.progress, config)
        session = await orchestrator.start_session(start, end, batch_size=batch_size)
        async with session:
            if session.current_item is None:
                typer.secho("No items in this range.", fg="yellow")
                return session.stats
            await _training_loop(session)
            return session.stats

    stats = _run(config, run)
    typer.echo(
        f"Reviewed {stats.items_reviewed}, memorized {stats.items_memorized}, "
        f"accuracy {stats.accuracy}%"
    )


async def _training_loop(session) -> None:
    while True:
        if session.is_finished:
            typer.secho("Range complete.", fg="green")
            return

        item = session.current_item
        if item is None:
            typer.secho("Waiting for more items...", fg="yellow")
            return

        if session.should_prompt_review:
            typer.secho(
                f"{session.due_count} review(s) due. Press 'r' to review.", fg="yellow"
            )
        section = f"{item.item.section_name} " if item.item.section_name else ""
        typer.echo(f"[{session.mode.value}] {section}{item.item.group_id}:{item.id}  {item.text}")

        choice = (await asyncio.to_thread(typer.prompt, "Grade (1-5) or command")).strip()
        if choice == "q":
            return
        if choice == "r":
            if not await session.jump_to_due_review():
                typer.echo("Nothing due.")
            continue
        if choice == "m":
            session.return_to_memorization()
            continue
        if choice == "t":
            session.switch_to_training()
            continue
        if choice == "l":
            if not await session.jump_to_latest_saved():
                typer.echo("No saved progress in this range.")
            continue
        if choice == "s":
            await session.restart()
            continue

        try:
            quality = float(choice)
        except ValueError:
            typer.secho(f"Unknown input: {choice}", fg="red")
            continue
        await session.answer(quality)


@app.command()
def stats(
    ctx: typer.Context,
    start: Annotated[int, typer.Argument(help="First item id.")],
    end: Annotated[int, typer.Argument(help="Last item id.")],
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show the mastery tier distribution of a range."""
    from hifz.application.progress_service import ProgressService

    config = _config(ctx)

    async def run(stores):
        return await ProgressService(stores.progress).get_tier_counts(start, end)

    counts = _run(config, run)
    percentages = counts.percentages()

    if json_output:
        typer.echo(
            json.dumps(
                {
                    "total": counts.total,
                    "learned": counts.learned,
                    "tiers": {str(t): n for t, n in counts.per_tier.items()},
                    "percentages": {str(t): p for t, p in percentages.items()},
                },
                indent=2,
            )
        )
        return

    typer.echo(f"Items: {counts.total}  Learned: {counts.learned}")
    for tier, count in counts.per_tier.items():
        typer.echo(f"  Tier {tier}: {count:>6}  ({percentages[tier]:.2f}%)")


@app.command()
def due(
    ctx: typer.Context,
    start: Annotated[int, typer.Argument(help="First item id.")],
    end: Annotated[int, typer.Argument(help="Last item id.")],
    limit: Annotated[int | None, typer.Option(help="Maximum entries to show.")] = None,
):
    """List items in a range whose review is due."""
    from hifz.application.progress_service import ProgressService

    config = _config(ctx)

    async def run(stores):
        return await ProgressService(stores.progress).get_due_reviews(
            start, end, limit or config.due_limit
        )

    entries = _run(config, run)
    if not entries:
        typer.secho("Nothing due.", fg="green")
        return

    typer.echo(f"Due reviews: {len(entries)}")
    for entry in entries:
        section = f"{entry.section_name} " if entry.section_name else ""
        typer.echo(f"  {entry.item_id:>6}  {section}{entry.group_id}  {entry.text}")


@app.command()
def serve(
    host: Annotated[str, typer.Option(help="Bind address.")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Bind port.")] = 8777,
    reload: Annotated[bool, typer.Option(help="Reload on code changes.")] = False,
):
    """Start the read-only HTTP API."""
    import uvicorn

    typer.secho(f"Serving on http://{host}:{port}", fg="green")
    uvicorn.run("hifz.server:app", host=host, port=port, reload=reload)


# ---------------------------------------------------------------------------
# Learnings subgroup
# ---------------------------------------------------------------------------


@learnings_app.command("list")
def learnings_list(
    ctx: typer.Context,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """List saved learnings, newest first."""
    config = _config(ctx)

    async def run(stores):
        return await stores.learnings.list_learnings()

    learnings = _run(config, run)
    if json_output:
        typer.echo(
            json.dumps(
                [
                    {
                        "id": learning.id,
                        "title": learning.title,
                        "first_item_id": learning.first_item_id,
                        "last_item_id": learning.last_item_id,
                        "created_at": learning.created_at.isoformat()
                        if learning.created_at
                        else None,
                    }
                    for learning in learnings
                ],
                indent=2,
            )
        )
        return

    if not learnings:
        typer.echo("No saved learnings.")
        return
    for learning in learnings:
        typer.echo(
            f"  [{learning.id}] {learning.title}  "
            f"({learning.first_item_id}..{learning.last_item_id})"
        )


@learnings_app.command("add")
def learnings_add(
    ctx: typer.Context,
    title: Annotated[str, typer.Argument(help="Name of the learning.")],
    first: Annotated[int, typer.Argument(help="First item id.")],
    last: Annotated[int, typer.Argument(help="Last item id.")],
):
    """Save a named item range."""
    from hifz.domain.exceptions import InvalidRangeError
    from hifz.domain.models import is_valid_range

    config = _config(ctx)

    async def run(stores):
        if not is_valid_range(first, last):
            raise InvalidRangeError(first, last)
        return await stores.learnings.add_learning(title, first, last)

    learning = _run(config, run)
    typer.secho(f"Saved learning {learning.id}: {learning.title}", fg="green")


@learnings_app.command("delete")
def learnings_delete(
    ctx: typer.Context,
    learning_id: Annotated[int, typer.Argument(help="Id of the learning to delete.")],
):
    """Delete a saved learning."""
    config = _config(ctx)

    async def run(stores):
        return await stores.learnings.delete_learning(learning_id)

    if not _run(config, run):
        typer.secho(f"Learning {learning_id} not found.", fg="yellow")
        raise typer.Exit(1)
    typer.secho(f"Deleted learning {learning_id}.", fg="green")


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    fmt: Annotated[
        Literal["json", "yaml"], typer.Option("--format", help="Output format.")
    ] = "json",
):
    """Display final resolved configuration."""
    config = _config(ctx)
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    if fmt == "yaml":
        import yaml

        typer.echo(yaml.safe_dump(d, sort_keys=False).rstrip())
    else:
        typer.echo(json.dumps(d, indent=2))

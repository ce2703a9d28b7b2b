"""Command-line entry point for wallcycle."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from .app_context import AppContext, Runtime, build_favorites, build_runtime, determine_paths, load_context
from .config import ConfigError, ConfigPaths, bootstrap, normalize_pack_name
from .errors import PackNotFound, WallcycleError
from .logging import configure_logging, get_logger
from .outputs import detect_outputs
from .state import MODES
from .supervisor import Supervisor

app = typer.Typer(help="wallcycle: rotate wallpapers per output from local and remote packs.")
favorites_app = typer.Typer(help="Manage favorite wallpapers (never pruned).")
app.add_typer(favorites_app, name="favorites")
console = Console()


def _determine_default_log_level(config_dir: Optional[Path]) -> str:
    paths = determine_paths(config_dir)

    config_path = paths.global_config
    if not config_path.exists():
        return "INFO"

    try:
        import yaml

        with config_path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle) or {}
        runtime = payload.get("runtime", {})
        log_level = runtime.get("log_level")
        if isinstance(log_level, str) and log_level.strip():
            return log_level.upper()
    except Exception:
        return "INFO"

    return "INFO"


def _bootstrap_logging(
    ctx: typer.Context,
    verbose: bool,
    json_logs: bool,
    log_file: Optional[Path],
    config_dir: Optional[Path],
) -> None:
    """Initialise logging once per CLI invocation."""

    if ctx.obj is None:
        ctx.obj = {}

    if ctx.obj.get("_logging_configured"):
        return

    level = "DEBUG" if verbose else _determine_default_log_level(config_dir)
    configure_logging(level=level, json_output=json_logs, log_file=log_file)
    ctx.obj["logger"] = get_logger("wallcycle.cli")
    ctx.obj["log_level"] = level
    ctx.obj["json_logs"] = json_logs
    ctx.obj["log_file_path"] = log_file
    ctx.obj["force_log_level"] = verbose
    ctx.obj["_logging_configured"] = True


@app.callback(invoke_without_command=True)
def cli(  # noqa: D401 - Typer generates help text.
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON-formatted logs."),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        dir_okay=True,
        file_okay=True,
        writable=True,
        resolve_path=True,
        help="Optional file to append structured logs to.",
    ),
) -> None:
    """wallcycle command group."""

    _bootstrap_logging(ctx, verbose, json_logs, log_file, None)

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


def _logger(ctx: typer.Context):
    return ctx.obj.get("logger", get_logger("wallcycle.cli"))


def _maybe_update_log_level(ctx: typer.Context, config_dir: Optional[Path]) -> None:
    if ctx.obj.get("force_log_level"):
        return

    desired = _determine_default_log_level(config_dir)
    current = ctx.obj.get("log_level")
    if desired != current:
        configure_logging(
            level=desired,
            json_output=ctx.obj.get("json_logs", False),
            log_file=ctx.obj.get("log_file_path"),
        )
        ctx.obj["logger"] = get_logger("wallcycle.cli")
        ctx.obj["log_level"] = desired


def _config_dir_option() -> Any:
    return typer.Option(
        None,
        "--config-dir",
        dir_okay=True,
        file_okay=False,
        resolve_path=True,
        help="Base directory for config files (defaults to ~/.wallcycle).",
    )


def _emit(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2))


def _load(ctx: typer.Context, config_dir: Optional[Path], command: str) -> AppContext:
    log = _logger(ctx)
    _maybe_update_log_level(ctx, config_dir)
    try:
        return load_context(determine_paths(config_dir))
    except ConfigError as exc:
        log.error(f"{command}.failed", error=str(exc))
        typer.echo(f"Error loading configuration: {exc}")
        raise typer.Exit(code=1) from exc


def _runtime(ctx: typer.Context, config_dir: Optional[Path], command: str) -> Runtime:
    context = _load(ctx, config_dir, command)
    try:
        return build_runtime(context)
    except WallcycleError as exc:
        _fail(ctx, command, exc)


def _fail(ctx: typer.Context, command: str, exc: WallcycleError) -> NoReturn:
    _logger(ctx).error(f"{command}.failed", error=exc.code, message=exc.message)
    _emit(exc.to_dict())
    raise typer.Exit(code=1) from exc


@app.command()
def init(
    ctx: typer.Context,
    config_dir: Optional[Path] = typer.Option(
        None,
        "--config-dir",
        dir_okay=True,
        file_okay=False,
        writable=True,
        resolve_path=True,
        help="Base directory for config files (defaults to ~/.wallcycle).",
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite existing config.yml"),
) -> None:
    """Write a starter configuration."""

    log = _logger(ctx)

    try:
        paths = ConfigPaths.from_base_dir(config_dir) if config_dir else ConfigPaths.default()
        report = bootstrap(paths, overwrite=force)
    except ConfigError as exc:
        log.error("init.failed", error=str(exc))
        raise typer.Exit(code=1) from exc

    typer.echo(f"Configuration directory: {paths.base_dir}")
    typer.echo(f"State directory: {paths.state_dir}")

    if report.global_config_created:
        if report.global_config_overwritten:
            typer.echo(f"Global config overwritten at: {paths.global_config}")
        else:
            typer.echo(f"Global config created at: {paths.global_config}")
            typer.echo("Add packs to config.yml, then run 'wallcycle rotate'.")
    else:
        typer.echo(f"Global config already exists at: {paths.global_config}")
        typer.echo("Use --force to regenerate with default values.")

    log.info(
        "init.completed",
        base_dir=str(paths.base_dir),
        state_dir=str(paths.state_dir),
        global_config=str(paths.global_config),
        force=force,
        base_created=report.base_created,
        state_dir_created=report.state_dir_created,
        global_config_created=report.global_config_created,
        global_config_overwritten=report.global_config_overwritten,
    )


@app.command()
def rotate(
    ctx: typer.Context,
    pack: Optional[str] = typer.Option(None, "--pack", "-p", help="Pack to use, or 'pool' for the aggregated pool."),
    config_dir: Optional[Path] = _config_dir_option(),
) -> None:
    """Apply a new wallpaper to every connected output."""

    runtime = _runtime(ctx, config_dir, "rotate")
    try:
        result = runtime.orchestrator.rotate(pack)
    except WallcycleError as exc:
        _fail(ctx, "rotate", exc)
    _emit(result.to_dict())


@app.command()
def prune(ctx: typer.Context, config_dir: Optional[Path] = _config_dir_option()) -> None:
    """Drop expired cache entries and evict the oldest until under budget."""

    runtime = _runtime(ctx, config_dir, "prune")
    try:
        result = runtime.ledger.prune()
    except WallcycleError as exc:
        _fail(ctx, "prune", exc)
    _emit(result.to_dict())


@app.command("prune-pack")
def prune_pack(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Pack whose cached images should be pruned."),
    config_dir: Optional[Path] = _config_dir_option(),
) -> None:
    """Prune only the cache entries of one pack."""

    runtime = _runtime(ctx, config_dir, "prune_pack")
    try:
        result = runtime.ledger.prune_pack(normalize_pack_name(name))
    except WallcycleError as exc:
        _fail(ctx, "prune_pack", exc)
    _emit({"pack": normalize_pack_name(name), **result.to_dict()})


@app.command("prune-hard")
def prune_hard(ctx: typer.Context, config_dir: Optional[Path] = _config_dir_option()) -> None:
    """Delete every downloaded image that is not a favorite."""

    runtime = _runtime(ctx, config_dir, "prune_hard")
    try:
        result = runtime.ledger.hard_prune_all()
    except WallcycleError as exc:
        _fail(ctx, "prune_hard", exc)
    _emit(result.to_dict())


@app.command("prune-pack-hard")
def prune_pack_hard(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Pack whose downloaded images should be deleted."),
    config_dir: Optional[Path] = _config_dir_option(),
) -> None:
    """Delete every non-favorite image of one pack."""

    runtime = _runtime(ctx, config_dir, "prune_pack_hard")
    try:
        result = runtime.ledger.hard_prune_pack(name)
    except WallcycleError as exc:
        _fail(ctx, "prune_pack_hard", exc)
    _emit({"pack": normalize_pack_name(name), **result.to_dict()})


@app.command("pool-status")
def pool_status(
    ctx: typer.Context,
    refresh: bool = typer.Option(False, "--refresh", help="Refresh every source index first."),
    table: bool = typer.Option(False, "--table", help="Render a table instead of JSON."),
    config_dir: Optional[Path] = _config_dir_option(),
) -> None:
    """Show how many candidates each pool source contributes."""

    runtime = _runtime(ctx, config_dir, "pool_status")
    stats = runtime.aggregator.status(refresh=refresh)
    if not table:
        _emit({"enabled": runtime.aggregator.enabled, "sources": stats})
        return

    if not runtime.aggregator.enabled:
        console.print("[yellow]Pool is not enabled.[/yellow]")
        return
    rendered = Table(title="Pool Sources")
    rendered.add_column("Source", style="cyan", no_wrap=True)
    rendered.add_column("Weight", justify="right")
    rendered.add_column("Candidates", justify="right")
    for entry in runtime.aggregator.settings.sources:
        rendered.add_row(entry.name, str(entry.weight), str(stats.get(entry.name, 0)))
    console.print(rendered)


@app.command("pack-status")
def pack_status(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Pack to inspect."),
    config_dir: Optional[Path] = _config_dir_option(),
) -> None:
    """Show index freshness and cache usage of one pack."""

    runtime = _runtime(ctx, config_dir, "pack_status")
    source = runtime.sources.get(normalize_pack_name(name))
    if source is None:
        _fail(ctx, "pack_status", PackNotFound(name))
    _emit(source.status().to_dict())


@app.command("hydrate-pack")
def hydrate_pack(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Pack to download images for."),
    count: int = typer.Option(10, "--count", "-n", min=1, help="Maximum number of images to download."),
    config_dir: Optional[Path] = _config_dir_option(),
) -> None:
    """Download images of a pack ahead of time without applying them."""

    runtime = _runtime(ctx, config_dir, "hydrate_pack")
    try:
        result = runtime.orchestrator.hydrate_pack(name, count)
    except WallcycleError as exc:
        _fail(ctx, "hydrate_pack", exc)
    _emit(result.to_dict())


@app.command()
def status(ctx: typer.Context, config_dir: Optional[Path] = _config_dir_option()) -> None:
    """Show rotation state, configured packs and cache usage."""

    runtime = _runtime(ctx, config_dir, "status")
    try:
        with runtime.state_store.lock():
            state = runtime.state_store.load()
    except WallcycleError as exc:
        _fail(ctx, "status", exc)
    _emit(
        {
            "state": state.to_dict(),
            "packs": sorted(runtime.sources),
            "poolEnabled": runtime.aggregator.enabled,
            "cache": {
                "entries": len(runtime.ledger.load_entries()),
                "bytes": runtime.ledger.total_bytes(),
                "maxBytes": runtime.ledger.max_bytes,
            },
        }
    )


@app.command()
def mode(
    ctx: typer.Context,
    value: str = typer.Argument(..., help="Either 'manual' or 'rotate'."),
    config_dir: Optional[Path] = _config_dir_option(),
) -> None:
    """Switch between manual mode and scheduled rotation."""

    value = value.strip().lower()
    if value not in MODES:
        raise typer.BadParameter(f"Mode must be one of: {', '.join(MODES)}")

    runtime = _runtime(ctx, config_dir, "mode")
    try:
        with runtime.state_store.lock():
            state = runtime.state_store.load()
            state.set_mode(value)
            runtime.state_store.save(state)
    except WallcycleError as exc:
        _fail(ctx, "mode", exc)
    _logger(ctx).info("mode.changed", mode=value)
    _emit({"mode": value})


@app.command()
def outputs(ctx: typer.Context) -> None:
    """List connected outputs."""

    names = detect_outputs(logger=_logger(ctx))
    _emit({"outputs": names})


@app.command()
def history(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-n", min=0, help="Number of recent entries to show."),
    clear: bool = typer.Option(False, "--clear", help="Delete the stored history."),
    table: bool = typer.Option(False, "--table", help="Render a table instead of JSON."),
    config_dir: Optional[Path] = _config_dir_option(),
) -> None:
    """Show recently applied wallpapers."""

    runtime = _runtime(ctx, config_dir, "history")
    if clear:
        _emit({"removed": runtime.history.clear()})
        return

    entries = runtime.history.entries(limit)
    if not table:
        _emit({"entries": [entry.to_dict() for entry in entries]})
        return

    if not entries:
        console.print("[yellow]No wallpapers applied yet.[/yellow]")
        return
    rendered = Table(title="Wallpaper History")
    rendered.add_column("Timestamp", no_wrap=True)
    rendered.add_column("Pack", style="cyan")
    rendered.add_column("Output")
    rendered.add_column("Path")
    for entry in entries:
        rendered.add_row(str(entry.timestamp), entry.pack, entry.output, entry.path)
    console.print(rendered)


def _favorite_path(value: str) -> str:
    return os.path.abspath(os.path.expanduser(value))


@favorites_app.command("list")
def favorites_list(ctx: typer.Context, config_dir: Optional[Path] = _config_dir_option()) -> None:
    """List favorite wallpapers."""

    context = _load(ctx, config_dir, "favorites_list")
    _emit({"favorites": build_favorites(context).list()})


@favorites_app.command("add")
def favorites_add(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Image file to protect from pruning."),
    config_dir: Optional[Path] = _config_dir_option(),
) -> None:
    """Mark an image as favorite."""

    context = _load(ctx, config_dir, "favorites_add")
    target = _favorite_path(path)
    try:
        added = build_favorites(context).add(target)
    except WallcycleError as exc:
        _fail(ctx, "favorites_add", exc)
    _emit({"path": target, "added": added})


@favorites_app.command("remove")
def favorites_remove(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Favorite to remove."),
    config_dir: Optional[Path] = _config_dir_option(),
) -> None:
    """Remove an image from favorites."""

    context = _load(ctx, config_dir, "favorites_remove")
    target = _favorite_path(path)
    try:
        removed = build_favorites(context).remove(target)
    except WallcycleError as exc:
        _fail(ctx, "favorites_remove", exc)
    _emit({"path": target, "removed": removed})


@app.command()
def serve(
    ctx: typer.Context,
    reload: bool = typer.Option(True, help="Watch config.yml for changes."),
    config_dir: Optional[Path] = _config_dir_option(),
) -> None:
    """Rotate wallpapers on the configured interval while mode is 'rotate'."""

    log = _logger(ctx)
    context = _load(ctx, config_dir, "serve")
    supervisor = Supervisor(context=context, logger=log)
    supervisor.run(hot_reload=reload)


def main() -> None:
    """Run the Typer application."""

    app()


if __name__ == "__main__":  # pragma: no cover - direct execution convenience
    main()

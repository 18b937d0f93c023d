"""Click-based CLI for the design extractor."""

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import click

from . import __version__
from .checkpoint.base import CheckpointStore
from .checkpoint.registry import create_checkpoint_store
from .checkpoint.types import ExtractionCheckpoint, ExtractionStatus
from .comparison.compare import ComparisonOptions, compare_components
from .config.config_loader import load_config
from .config.models import ExtractorConfig
from .errors import CheckpointNotFoundError, handle_exception
from .extractor_logging import setup_logging
from .pipeline.orchestrator import create_extractor
from .pipeline.types import (
    EventType,
    ExtractorEvent,
    ExtractorResult,
    ResumeMode,
    RunConfig,
    StepStatus,
)

STEP_ICONS = {
    StepStatus.SUCCESS: "✅",
    StepStatus.SKIPPED: "⏭️",
    StepStatus.FAILED: "❌",
}


def _parse_viewport(value: str | None) -> tuple[int | None, int | None]:
    if not value:
        return None, None
    try:
        width, height = (int(part) for part in value.lower().split("x", 1))
    except ValueError:
        raise click.BadParameter("Viewport must look like WIDTHxHEIGHT, e.g. 1440x900") from None
    if width <= 0 or height <= 0:
        raise click.BadParameter("Viewport dimensions must be positive")
    return width, height


def _fail(ctx: click.Context, error: Exception) -> None:
    message, exit_code = handle_exception(
        error, use_color=sys.stderr.isatty(), verbose=ctx.obj.get("verbose", False)
    )
    click.echo(message, err=True)
    sys.exit(exit_code)


def _config(ctx: click.Context) -> ExtractorConfig:
    """Load configuration once per invocation and set up logging from it."""
    if "config" not in ctx.obj:
        options = ctx.obj
        overrides: dict[str, Any] = {}
        if options.get("backend"):
            overrides["checkpoint_backend"] = options["backend"]
        if options.get("log_format"):
            overrides["log_format"] = options["log_format"]
        config = load_config(options.get("config_path"), **overrides)
        setup_logging(
            level=config.log_level,
            quiet=options.get("quiet", False),
            verbose=options.get("verbose", False),
            log_format=config.log_format,
        )
        ctx.obj["config"] = config
    return ctx.obj["config"]


def _with_store(
    ctx: click.Context, action: Callable[[CheckpointStore, ExtractorConfig], Awaitable[int]]
) -> None:
    """Run an async action against the configured store, closing it afterwards."""

    async def runner() -> int:
        config = _config(ctx)
        store = create_checkpoint_store(config)
        try:
            return await action(store, config)
        finally:
            await store.close()

    try:
        exit_code = asyncio.run(runner())
    except Exception as e:
        _fail(ctx, e)
    else:
        sys.exit(exit_code)


def _echo_event(event: ExtractorEvent) -> None:
    if event.step is not None:
        click.echo(
            f"{STEP_ICONS[event.step.status]} {event.step.name} "
            f"({event.step.duration_ms:.0f}ms) - {event.checkpoint.progress}%"
        )
    elif event.type == EventType.START:
        click.echo(f"🔍 Extracting {event.checkpoint.url} [{event.checkpoint.id}]")


def _echo_result(result: ExtractorResult, quiet: bool) -> int:
    checkpoint = result.checkpoint
    if not quiet:
        for step in result.steps:
            if step.status == StepStatus.SKIPPED:
                click.echo(f"{STEP_ICONS[step.status]} {step.name}: {step.data.get('reason', '')}")
    if result.succeeded:
        if not quiet:
            click.echo(
                f"✅ Checkpoint {checkpoint.id} {checkpoint.status.value} "
                f"in {result.duration_ms / 1000:.1f}s"
            )
        return 0

    failed = result.failed_step
    click.echo(
        f"❌ {failed.name if failed else 'run'} failed: {checkpoint.error}", err=True
    )
    click.echo(f"   Resume with: design-extractor resume {checkpoint.id}", err=True)
    return 1


def _echo_checkpoint(checkpoint: ExtractionCheckpoint) -> None:
    click.echo(f"ID:        {checkpoint.id}")
    click.echo(f"URL:       {checkpoint.url}")
    click.echo(f"Status:    {checkpoint.status.value}")
    click.echo(f"Progress:  {checkpoint.progress}%")
    click.echo(f"Started:   {checkpoint.started_at.isoformat()}")
    click.echo(f"Updated:   {checkpoint.updated_at.isoformat()}")
    if checkpoint.screenshots is not None:
        click.echo(
            f"Screens:   viewport {len(checkpoint.screenshots.viewport)} bytes, "
            f"full page {len(checkpoint.screenshots.full_page)} bytes"
        )
    if checkpoint.identified_components is not None:
        click.echo(f"Components: {len(checkpoint.identified_components)}")
        for component in checkpoint.identified_components:
            click.echo(
                f"  - {component.type}: {component.name} ({component.confidence:.2f})"
            )
    if checkpoint.extracted_tokens is not None:
        click.echo(f"Tokens:    {', '.join(sorted(checkpoint.extracted_tokens)) or 'none'}")
    if checkpoint.comparisons is not None:
        passed = sum(1 for c in checkpoint.comparisons if c.passed)
        click.echo(f"Compared:  {passed}/{len(checkpoint.comparisons)} passed")
    if checkpoint.error:
        click.echo(f"Error:     {checkpoint.error}")


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    help="Configuration file or project directory",
)
@click.option(
    "--backend",
    type=click.Choice(["filesystem", "database"]),
    help="Checkpoint storage backend",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-error output")
@click.option(
    "--log-format",
    type=click.Choice(["text", "json"]),
    help="Log line format",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    backend: str | None,
    verbose: bool,
    quiet: bool,
    log_format: str | None,
) -> None:
    """Design Extractor - turn a URL into a design-system artifact."""
    if quiet and verbose:
        raise click.UsageError("--quiet and --verbose are mutually exclusive")
    ctx.ensure_object(dict)
    ctx.obj.update(
        config_path=config_path,
        backend=backend,
        verbose=verbose,
        quiet=quiet,
        log_format=log_format,
    )


@cli.command()
@click.argument("url")
@click.option("--dry-run", is_flag=True, help="Record the run without capturing anything")
@click.option("--skip-vision", is_flag=True, help="Skip component identification")
@click.option("--skip-tokens", is_flag=True, help="Skip design token extraction")
@click.option("--viewport", help="Viewport size as WIDTHxHEIGHT")
@click.option("--timeout", type=click.IntRange(min=1), help="Navigation timeout in ms")
@click.pass_context
def run(
    ctx: click.Context,
    url: str,
    dry_run: bool,
    skip_vision: bool,
    skip_tokens: bool,
    viewport: str | None,
    timeout: int | None,
) -> None:
    """Extract a design system from URL."""
    width, height = _parse_viewport(viewport)
    quiet = ctx.obj["quiet"]

    async def action(store: CheckpointStore, config: ExtractorConfig) -> int:
        extractor = create_extractor(config, store=store)
        if not quiet:
            extractor.on(_echo_event)
        result = await extractor.run(
            RunConfig(
                url=url,
                dry_run=dry_run,
                skip_vision=skip_vision,
                skip_tokens=skip_tokens,
                viewport_width=width,
                viewport_height=height,
                timeout_ms=timeout,
            )
        )
        return _echo_result(result, quiet)

    _with_store(ctx, action)


@cli.command()
@click.argument("checkpoint_id")
@click.option(
    "--reuse",
    is_flag=True,
    help="Keep screenshots, components and tokens already on the checkpoint",
)
@click.pass_context
def resume(ctx: click.Context, checkpoint_id: str, reuse: bool) -> None:
    """Run the pipeline again for an existing checkpoint."""
    quiet = ctx.obj["quiet"]

    async def action(store: CheckpointStore, config: ExtractorConfig) -> int:
        extractor = create_extractor(config, store=store)
        if not quiet:
            extractor.on(_echo_event)
        mode = ResumeMode.REUSE if reuse else ResumeMode.RERUN
        result = await extractor.resume(checkpoint_id, mode=mode)
        if result is None:
            raise CheckpointNotFoundError(checkpoint_id)
        return _echo_result(result, quiet)

    _with_store(ctx, action)


@cli.command()
@click.argument("checkpoint_id")
@click.option("--json", "as_json", is_flag=True, help="Print the metadata document as JSON")
@click.pass_context
def status(ctx: click.Context, checkpoint_id: str, as_json: bool) -> None:
    """Show the state of a checkpoint."""

    async def action(store: CheckpointStore, config: ExtractorConfig) -> int:
        checkpoint = await store.load(checkpoint_id)
        if checkpoint is None:
            raise CheckpointNotFoundError(checkpoint_id)
        if as_json:
            click.echo(json.dumps(checkpoint.to_dict(), indent=2))
        else:
            _echo_checkpoint(checkpoint)
        return 0

    _with_store(ctx, action)


@cli.command(name="list")
@click.option(
    "--status",
    "status_filter",
    type=click.Choice([s.value for s in ExtractionStatus]),
    help="Only show checkpoints in this status",
)
@click.option("--limit", type=click.IntRange(min=1), default=20, show_default=True)
@click.pass_context
def list_checkpoints(ctx: click.Context, status_filter: str | None, limit: int) -> None:
    """List checkpoints, most recently started first."""

    async def action(store: CheckpointStore, config: ExtractorConfig) -> int:
        if status_filter:
            checkpoints = await store.list_by_status(ExtractionStatus(status_filter))
            checkpoints.sort(key=lambda c: c.started_at, reverse=True)
            checkpoints = checkpoints[:limit]
        else:
            checkpoints = await store.list_recent(limit)

        if not checkpoints:
            click.echo("No checkpoints found")
            return 0
        for checkpoint in checkpoints:
            click.echo(
                f"{checkpoint.id}  {checkpoint.status.value:<10} {checkpoint.progress:>3}%  "
                f"{checkpoint.started_at:%Y-%m-%d %H:%M}  {checkpoint.url}"
            )
        return 0

    _with_store(ctx, action)


@cli.command()
@click.argument("checkpoint_id")
@click.pass_context
def delete(ctx: click.Context, checkpoint_id: str) -> None:
    """Delete a checkpoint and its images."""

    async def action(store: CheckpointStore, config: ExtractorConfig) -> int:
        if not await store.exists(checkpoint_id):
            raise CheckpointNotFoundError(checkpoint_id)
        await store.delete(checkpoint_id)
        if not ctx.obj["quiet"]:
            click.echo(f"🗑️ Deleted checkpoint {checkpoint_id}")
        return 0

    _with_store(ctx, action)


@cli.command()
@click.argument("original", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("generated", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--threshold", type=float, help="Combined score needed to pass")
@click.option(
    "--diff",
    "diff_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write a diff image to this path",
)
@click.option("--json", "as_json", is_flag=True, help="Print scores as JSON")
@click.pass_context
def compare(
    ctx: click.Context,
    original: Path,
    generated: Path,
    threshold: float | None,
    diff_path: Path | None,
    as_json: bool,
) -> None:
    """Score a GENERATED component image against its ORIGINAL."""
    try:
        config = _config(ctx)
        options = ComparisonOptions.from_settings(config.comparison)
        if threshold is not None:
            options.pass_threshold = threshold
        options.generate_diff = diff_path is not None

        result = compare_components(original.read_bytes(), generated.read_bytes(), options)
        if diff_path is not None and result.diff_image is not None:
            diff_path.write_bytes(result.diff_image)
    except Exception as e:
        _fail(ctx, e)
        return

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        icon = "✅" if result.passed else "❌"
        click.echo(f"Structural: {result.ssim_score:.4f}")
        click.echo(f"Color:      {result.color_score:.4f}")
        click.echo(f"Combined:   {result.combined_score:.4f}")
        verdict = "PASS" if result.passed else "FAIL"
        click.echo(f"{icon} {verdict} (threshold {options.pass_threshold})")
        if diff_path is not None:
            click.echo(f"Diff written to {diff_path}")
    sys.exit(0 if result.passed else 1)


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()

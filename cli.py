# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""flakebump CLI - interactive updater for Nix flake inputs"""

import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import click

from flakebump import __version__
from flakebump.cli import ClickPrompter, render_report
from flakebump.core.actions import ActionRunner
from flakebump.core.config import FlakeBumpConfig, load_config
from flakebump.core.exceptions import ConfigError, ConfigValidationError, TargetError
from flakebump.core.gcroots import scan_gcroots
from flakebump.core.locator import locate, parse_descriptor
from flakebump.core.logger import get_logger, setup_logging
from flakebump.core.models import FlakeTarget
from flakebump.core.oracle import RevisionOracle, build_source
from flakebump.core.session import SessionOrchestrator

logger = get_logger("cli")

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Extra YAML config file",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help="Diagnostics level on stderr",
)
@click.pass_context
def cli(ctx, config_file: Optional[Path], log_level: Optional[str]):
    """flakebump - bump Nix flake inputs, one reviewed hunk at a time.

    Without a TARGET every flake that has a direnv environment or a
    ./result link in the garbage-collector roots is considered.

    Examples:
        flakebump list
        flakebump update .#nixpkgs
        flakebump update ~/src/site --to-ref nixos-unstable --input nixpkgs
        flakebump update --allow-write
    """
    try:
        config = load_config(config_file)
    except ConfigValidationError as e:
        problems = "; ".join(f"{err['loc']}: {err['msg']}" for err in e.errors)
        raise click.ClickException(f"{e.message}: {problems}")
    except ConfigError as e:
        raise click.ClickException(str(e))

    if log_level:
        config.observability.log_level = log_level.upper()

    setup_logging(config.observability.log_level, config.observability.log_file)
    ctx.obj = config


def target_options(func):
    """Options shared by `list` and `update`."""
    options = [
        click.argument("target", required=False),
        click.option("--input", "-i", "input_name", help="Only look at this input"),
        click.option(
            "--source",
            type=click.Choice(["registry", "nix", "github"]),
            help="Where candidate revisions come from",
        ),
        click.option("--to-ref", help="Move the input to this branch or tag"),
        click.option("--to-rev", help="Move the input to this commit"),
        click.option(
            "--gcroots-dir",
            type=click.Path(file_okay=False, path_type=Path),
            help="Garbage-collector roots to scan for flakes",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _resolve_targets(
    config: FlakeBumpConfig,
    target: Optional[str],
    input_name: Optional[str],
    to_ref: Optional[str],
    to_rev: Optional[str],
) -> List[FlakeTarget]:
    if (to_ref or to_rev) and not (input_name or (target and parse_descriptor(target)[1])):
        raise click.UsageError("--to-ref/--to-rev need an input: use --input or TARGET#input")

    candidates = [] if target else scan_gcroots(config.paths.gcroots_dir)
    try:
        return locate(target, candidates, input_name)
    except TargetError as e:
        raise click.ClickException(str(e))


def _prepare(
    config: FlakeBumpConfig,
    target: Optional[str],
    input_name: Optional[str],
    source: Optional[str],
    to_ref: Optional[str],
    to_rev: Optional[str],
    gcroots_dir: Optional[Path],
):
    if source:
        config.oracle.source = source
    if gcroots_dir:
        config.paths.gcroots_dir = gcroots_dir

    targets = _resolve_targets(config, target, input_name, to_ref, to_rev)
    logger.debug(f"Targets: {', '.join(str(t) for t in targets) or 'none'}")

    oracle = RevisionOracle(build_source(config, to_ref, to_rev))
    return targets, oracle


@cli.command("list")
@target_options
@click.pass_obj
def list_cmd(
    config: FlakeBumpConfig,
    target: Optional[str],
    input_name: Optional[str],
    source: Optional[str],
    to_ref: Optional[str],
    to_rev: Optional[str],
    gcroots_dir: Optional[Path],
):
    """Show pinned and available revisions without changing anything.

    Examples:
        flakebump list
        flakebump list .#nixpkgs --source nix
    """
    targets, oracle = _prepare(config, target, input_name, source, to_ref, to_rev, gcroots_dir)
    if not targets:
        click.echo("No flakes found")
        return

    prompter = ClickPrompter()
    orchestrator = SessionOrchestrator(
        oracle,
        prompter,
        ActionRunner(False, prompter, config.apply, nix_binary=config.oracle.nix_binary),
        max_parallel_queries=config.oracle.max_parallel_queries,
    )

    report = asyncio.run(orchestrator.list_updates(targets))
    sys.exit(report.exit_code)


@cli.command()
@target_options
@click.option("--allow-write", is_flag=True, help="Actually write files and run commands")
@click.option(
    "--diff-context",
    type=click.IntRange(min=0),
    help="Context lines shown around each change",
)
@click.pass_obj
def update(
    config: FlakeBumpConfig,
    target: Optional[str],
    input_name: Optional[str],
    source: Optional[str],
    to_ref: Optional[str],
    to_rev: Optional[str],
    gcroots_dir: Optional[Path],
    allow_write: bool,
    diff_context: Optional[int],
):
    """Review proposed input updates hunk by hunk.

    Nothing is written and no command is run unless --allow-write is given;
    the dry run walks through the exact same prompts.

    Examples:
        flakebump update
        flakebump update .#nixpkgs --allow-write
        flakebump update . --input home-manager --to-rev 0123abcd
    """
    targets, oracle = _prepare(config, target, input_name, source, to_ref, to_rev, gcroots_dir)

    prompter = ClickPrompter()
    if not allow_write:
        prompter.echo("=" * 60, style="warning")
        prompter.echo("DRY RUN: no files are written and no commands are run.", style="warning")
        prompter.echo("Pass --allow-write to apply changes.", style="warning")
        prompter.echo("=" * 60, style="warning")

    if not targets:
        click.echo("No flakes found")
        return

    actions = ActionRunner(
        allow_write, prompter, config.apply, nix_binary=config.oracle.nix_binary
    )
    orchestrator = SessionOrchestrator(
        oracle,
        prompter,
        actions,
        write_enabled=allow_write,
        diff_context=config.apply.diff_context if diff_context is None else diff_context,
        max_parallel_queries=config.oracle.max_parallel_queries,
    )

    report = asyncio.run(orchestrator.run(targets))
    render_report(report)
    sys.exit(report.exit_code)


if __name__ == "__main__":
    cli()

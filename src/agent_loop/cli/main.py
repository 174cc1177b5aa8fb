"""Main CLI for the agent loop."""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from ..core.config import DEFAULT_CONFIG_FILE, LoopSettings, load_settings, resolve_path
from ..core.iteration import LoopState, RunOutcome
from ..errors import ConfigurationError, ErrorTranslator
from ..health import CheckStatus, HealthChecker
from ..session import build_run_configuration, run_loop
from ..utils.rich_logging import close_run_logging, setup_run_logging


console = Console()

USAGE_EXIT_CODE = 1


def _fail(ctx: click.Context, error: Exception) -> None:
    translator = ErrorTranslator()
    console.print(translator.format_for_cli(translator.translate(error)))
    ctx.exit(1)


def _usage_error(ctx: click.Context, message: str) -> None:
    click.echo(ctx.get_usage())
    click.echo(f"Error: {message}", err=True)
    ctx.exit(USAGE_EXIT_CODE)


def _parse_iterations(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        count = int(value)
    except ValueError:
        return None
    return count if count > 0 else None


def _echo_output(chunk: str) -> None:
    click.echo(chunk, nl=False)


def _print_checks(results) -> None:
    table = Table(title="Preflight checks")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Details")

    styles = {
        CheckStatus.PASSED: "[green]✓ passed[/]",
        CheckStatus.WARNING: "[yellow]! warning[/]",
        CheckStatus.FAILED: "[red]✗ failed[/]",
    }
    for result in results:
        details = result.message
        if result.fix_action and result.status != CheckStatus.PASSED:
            details += f"\n[dim]{result.fix_action}[/]"
        table.add_row(result.name, styles[result.status], details)

    console.print(table)


def _print_summary(state: LoopState) -> None:
    if not state.iterations:
        return

    table = Table(title="Run summary")
    table.add_column("Iteration", justify="right")
    table.add_column("Result")
    table.add_column("Exit")
    table.add_column("Duration", justify="right")

    for record in state.iterations:
        result = f"[red]✗ {record.failure_reason}[/]" if record.failed else "[green]✓ ok[/]"
        exit_status = "-" if record.exit_status is None else str(record.exit_status)
        duration = record.duration_seconds
        table.add_row(
            str(record.index),
            result,
            exit_status,
            f"{duration:.1f}s" if duration is not None else "-",
        )

    console.print(table)


@click.command(context_settings={"help_option_names": ["-h", "--help"], "ignore_unknown_options": True})
@click.argument("iterations", required=False, metavar="ITERATIONS")
@click.option("--workspace", "-w", default=".", type=click.Path(file_okay=False, path_type=Path),
              help="Workspace directory holding the context files")
@click.option("--config", "-c", "config_path", default=None,
              type=click.Path(dir_okay=False, path_type=Path),
              help=f"Config file (default: <workspace>/{DEFAULT_CONFIG_FILE})")
@click.option("--log-dir", default=None, type=click.Path(file_okay=False, path_type=Path),
              help="Directory for the run log (overrides log_dir in config)")
@click.option("--check", is_flag=True, help="Run preflight checks and exit without launching the agent")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, iterations, workspace, config_path, log_dir, check, verbose):
    """Run the coding agent ITERATIONS times, retrying on failures and
    stopping early once it reports that all work is complete."""
    workspace = workspace.resolve()

    try:
        if config_path is not None:
            settings = load_settings(config_path, required=True)
        else:
            settings = load_settings(workspace / DEFAULT_CONFIG_FILE)
    except ConfigurationError as e:
        _fail(ctx, e)
        return

    if check:
        results = HealthChecker(workspace, settings).run_all_checks()
        _print_checks(results)
        ctx.exit(1 if HealthChecker.has_failures(results) else 0)
        return

    count = _parse_iterations(iterations)
    if count is None:
        if iterations is None:
            _usage_error(ctx, "Missing argument 'ITERATIONS'.")
        else:
            _usage_error(ctx, f"ITERATIONS must be a positive integer, got '{iterations}'.")
        return

    try:
        config = build_run_configuration(count, workspace, settings)
    except ConfigurationError as e:
        _fail(ctx, e)
        return

    if config.needs_confirmation:
        console.print(
            f"[yellow]⚠ {count} iterations exceeds the safe limit of "
            f"{config.safe_iteration_threshold}.[/]"
        )
        if not click.confirm("Are you sure you want to continue?", default=False):
            console.print("[red]Aborted.[/]")
            ctx.exit(1)
            return

    exit_code = _run(settings, workspace, config, log_dir, verbose)
    ctx.exit(exit_code)


def _run(settings: LoopSettings, workspace: Path, config, log_dir: Optional[Path], verbose: bool) -> int:
    log_root = log_dir if log_dir is not None else resolve_path(workspace, settings.log_dir)
    run_log = setup_run_logging(log_root, "DEBUG" if verbose else settings.log_level)
    console.print(f"[dim]Logging to {run_log.log_file}[/]")
    run_log.info(
        f"Starting agent loop: {config.iterations} iteration(s), "
        f"agent: {' '.join(settings.agent.build_command())}"
    )

    state: Optional[LoopState] = None
    try:
        state = asyncio.run(run_loop(config, run_log, on_output=_echo_output))
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("[yellow]Interrupted.[/]")
        return RunOutcome.INTERRUPTED.exit_code
    finally:
        close_run_logging(run_log)

    _print_summary(state)
    return state.outcome.exit_code if state.outcome else 1


def main():
    """Console script entry point."""
    cli(prog_name="agent-loop")


if __name__ == "__main__":
    sys.exit(main())

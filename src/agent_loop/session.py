"""Wiring: build the run configuration and drive one run end to end."""

import asyncio
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from .core.config import LoopSettings, RunConfiguration, resolve_path
from .core.controller import IterationController
from .core.iteration import LoopState
from .core.payload import build_payload, verify_context_files
from .core.run_context import RunContext
from .errors import ConfigurationError
from .runner.agent_runner import AgentRunner
from .utils.rich_logging import IterationLogger


def build_run_configuration(
    iterations: int,
    workspace: Path,
    settings: LoopSettings,
) -> RunConfiguration:
    """Check preconditions and freeze everything the run needs.

    Raises:
        ConfigurationError: Non-positive iteration count
        MissingContextFileError: A required context file is missing
    """
    if iterations < 1:
        raise ConfigurationError(f"Iteration count must be a positive integer, got {iterations}")

    workspace = Path(workspace)
    verify_context_files(workspace, settings.files)
    payload = build_payload(resolve_path(workspace, settings.files.prompt), settings.markers)

    try:
        return RunConfiguration(
            iterations=iterations,
            payload=payload,
            workspace=workspace,
            settings=settings,
        )
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e


async def run_loop(
    config: RunConfiguration,
    run_log: IterationLogger,
    on_output: Optional[Callable[[str], None]] = None,
    context: Optional[RunContext] = None,
) -> LoopState:
    """Run the iteration loop with cleanup registered on every exit path."""
    settings = config.settings
    context = context or RunContext(kill_timeout=settings.safeguards.kill_timeout)
    context.register_atexit()
    current = asyncio.current_task()
    if current is not None:
        context.install_signal_handlers(current)

    runner = AgentRunner(
        agent=settings.agent,
        markers=settings.markers,
        safeguards=settings.safeguards,
        context=context,
        workspace=config.workspace,
        on_output=on_output if settings.agent.stream_output else None,
    )
    controller = IterationController(config, runner, run_log)
    try:
        return await controller.run()
    finally:
        # Normally a no-op: the runner detaches after each iteration
        await asyncio.to_thread(context.cancel)
        context.unregister_atexit()

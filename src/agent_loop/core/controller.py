"""Iteration controller: the bounded retry loop around the agent CLI."""

import asyncio
from typing import Awaitable, Callable, Protocol

from ..utils.rich_logging import IterationLogger
from .config import RunConfiguration
from .iteration import IterationRecord, LoopState, RunOutcome


class IterationRunner(Protocol):
    async def run(self, index: int, total: int, payload: str) -> IterationRecord: ...


class IterationController:
    """
    Drives up to ``iterations`` agent runs, one at a time.

    Logic:
    - Failed iteration (hang, launch error, non-zero exit): bump the
      consecutive-failure counter; abort the run once it reaches the
      threshold, otherwise pause ``retry_delay`` and carry on
    - Successful iteration: reset the counter, then stop early if the output
      carries the completion marker
    - Every iteration, failed or not, counts toward the cap
    """

    def __init__(
        self,
        config: RunConfiguration,
        runner: IterationRunner,
        run_log: IterationLogger,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.runner = runner
        self.run_log = run_log
        self.sleep = sleep
        self.state = LoopState(max_consecutive_failures=config.max_consecutive_failures)

    @property
    def completion_marker(self) -> str:
        return self.config.settings.markers.completion_marker

    @property
    def retry_delay(self) -> float:
        return self.config.settings.safeguards.retry_delay

    async def run(self) -> LoopState:
        """Run the loop to a terminal outcome and return the final state."""
        total = self.config.iterations
        try:
            for index in range(1, total + 1):
                self.state.current_iteration = index
                self.run_log.iteration_started(index, total)

                record = await self.runner.run(index, total, self.config.payload)
                self.state.record(record)
                self.run_log.agent_output(index, record.output)

                if record.failed:
                    if self._handle_failure(record):
                        return self.state
                    if index < total:
                        self.run_log.retrying(self.retry_delay)
                        await self.sleep(self.retry_delay)
                    continue

                self.run_log.iteration_succeeded(index, record.duration_seconds)
                if self.completion_marker in record.output:
                    self._finish(
                        RunOutcome.COMPLETED_ALL_WORK,
                        f"All work complete after {index} iterations.",
                    )
                    return self.state

            self._finish(
                RunOutcome.EXHAUSTED_ITERATIONS,
                f"Completed {total} iterations, work may remain.",
            )
            return self.state

        except asyncio.CancelledError:
            self.state.note("Interrupted")
            self.state.finish(RunOutcome.INTERRUPTED)
            self.run_log.run_aborted(f"Interrupted during iteration {self.state.current_iteration}")
            raise

    def _handle_failure(self, record: IterationRecord) -> bool:
        """Log a failed iteration. Returns True when the run must abort."""
        threshold = self.state.max_consecutive_failures
        self.run_log.iteration_failed(
            record.index,
            record.failure_reason or "unknown failure",
            self.state.consecutive_failures,
            threshold,
        )
        self.state.note(f"Iteration {record.index} failed: {record.failure_reason}")

        if not self.state.threshold_reached:
            return False

        message = (
            f"Aborting: {self.state.consecutive_failures} consecutive failed iterations "
            f"(threshold {threshold}) at iteration {record.index} of {self.config.iterations}."
        )
        self.state.note(message)
        self.state.finish(RunOutcome.ABORTED_ON_FAILURES)
        self.run_log.run_aborted(message)
        return True

    def _finish(self, outcome: RunOutcome, message: str) -> None:
        self.state.note(message)
        self.state.finish(outcome)
        self.run_log.run_completed(message)


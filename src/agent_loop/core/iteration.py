"""Iteration records and loop state."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Union


class RunOutcome(str, Enum):
    """Terminal outcome of a run."""
    COMPLETED_ALL_WORK = "completed_all_work"
    EXHAUSTED_ITERATIONS = "exhausted_iterations"
    ABORTED_ON_FAILURES = "aborted_on_failures"
    INTERRUPTED = "interrupted"

    @property
    def exit_code(self) -> int:
        if self in (RunOutcome.COMPLETED_ALL_WORK, RunOutcome.EXHAUSTED_ITERATIONS):
            return 0
        if self is RunOutcome.INTERRUPTED:
            return 130
        return 1


def find_signature(output: str, signatures: List[str]) -> Optional[str]:
    """Return the first hang signature present in output (case-insensitive)."""
    lowered = output.lower()
    for signature in signatures:
        if signature.lower() in lowered:
            return signature
    return None


@dataclass
class IterationRecord:
    """One agent invocation, from launch to termination."""
    index: int
    total: int
    output: str = ""
    exit_status: Optional[int] = None
    hang_detected: bool = False
    hang_signature: Optional[str] = None
    error: Optional[str] = None  # Launch or monitor error
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def failed(self) -> bool:
        """Hang, launch/monitor error, or a non-zero exit status.

        An absent exit status counts as success: some runtimes report it for
        otherwise clean exits.
        """
        if self.hang_detected or self.error is not None:
            return True
        return self.exit_status not in (None, 0)

    @property
    def failure_reason(self) -> Optional[str]:
        if self.hang_detected:
            return f"hang detected ('{self.hang_signature}')"
        if self.error is not None:
            return self.error
        if self.exit_status not in (None, 0):
            return f"exit status {self.exit_status}"
        return None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def finalize(self) -> None:
        self.finished_at = datetime.now(timezone.utc)


@dataclass(frozen=True)
class ControlMessage:
    """Loop-level event recorded between iterations (retry, abort, completion)."""
    text: str
    iteration: int
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class LoopState:
    """State carried across iterations for a single run."""
    max_consecutive_failures: int
    current_iteration: int = 0
    consecutive_failures: int = 0
    history: List[Union[IterationRecord, ControlMessage]] = field(default_factory=list)
    outcome: Optional[RunOutcome] = None

    @property
    def iterations(self) -> List[IterationRecord]:
        return [entry for entry in self.history if isinstance(entry, IterationRecord)]

    @property
    def launches(self) -> int:
        return len(self.iterations)

    def record(self, record: IterationRecord) -> None:
        """Append a finished iteration and update the failure counter."""
        self.history.append(record)
        if record.failed:
            self.consecutive_failures = min(
                self.consecutive_failures + 1, self.max_consecutive_failures
            )
        else:
            self.consecutive_failures = 0

    def note(self, text: str) -> ControlMessage:
        message = ControlMessage(text=text, iteration=self.current_iteration)
        self.history.append(message)
        return message

    @property
    def threshold_reached(self) -> bool:
        return self.consecutive_failures >= self.max_consecutive_failures

    def finish(self, outcome: RunOutcome) -> None:
        if self.outcome is None:
            self.outcome = outcome

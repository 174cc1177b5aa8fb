"""Exception taxonomy for the iteration loop."""

from pathlib import Path
from typing import Optional


class LoopError(Exception):
    """Base class for all agent-loop errors."""


class ConfigurationError(LoopError):
    """Bad arguments or an invalid configuration file. Always fatal."""


class MissingContextFileError(ConfigurationError):
    """A required context file is missing or unreadable."""

    def __init__(self, description: str, path: Path, reason: Optional[str] = None):
        self.description = description
        self.path = Path(path)
        self.reason = reason
        message = f"Required {description} not found: {self.path}"
        if reason:
            message = f"Required {description} is not readable: {self.path} ({reason})"
        super().__init__(message)


class AgentLaunchError(LoopError):
    """The agent subprocess could not be started.

    Never escapes an iteration: the runner records it on the iteration
    and the controller counts it as a failure.
    """

    def __init__(self, cmd: list, cause: Exception):
        self.cmd = cmd
        self.cause = cause
        super().__init__(f"Failed to launch agent '{cmd[0]}': {cause}")

"""Error taxonomy and user-friendly translation."""

from .exceptions import (
    AgentLaunchError,
    ConfigurationError,
    LoopError,
    MissingContextFileError,
)
from .translator import ErrorTranslator, UserFriendlyError

__all__ = [
    "AgentLaunchError",
    "ConfigurationError",
    "LoopError",
    "MissingContextFileError",
    "ErrorTranslator",
    "UserFriendlyError",
]

"""Core models, configuration and the iteration loop."""

from .config import (
    AgentConfig,
    ContextFilesConfig,
    LoopSettings,
    MarkerConfig,
    RunConfiguration,
    SafeguardsConfig,
    load_settings,
)
from .controller import IterationController
from .iteration import ControlMessage, IterationRecord, LoopState, RunOutcome
from .run_context import RunContext

__all__ = [
    "AgentConfig",
    "ContextFilesConfig",
    "LoopSettings",
    "MarkerConfig",
    "RunConfiguration",
    "SafeguardsConfig",
    "load_settings",
    "IterationController",
    "ControlMessage",
    "IterationRecord",
    "LoopState",
    "RunOutcome",
    "RunContext",
]

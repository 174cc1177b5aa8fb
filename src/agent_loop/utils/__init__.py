"""Shared utility functions for the agent loop."""

from .process_utils import (
    build_children_map,
    collect_descendants,
    is_process_gone,
    kill_process_group,
    kill_process_tree,
)
from .rich_logging import IterationLogger, close_run_logging, setup_run_logging
from .subprocess_utils import resolve_command

__all__ = [
    # Process trees
    "build_children_map",
    "collect_descendants",
    "is_process_gone",
    "kill_process_group",
    "kill_process_tree",
    # Logging
    "IterationLogger",
    "close_run_logging",
    "setup_run_logging",
    # Subprocess
    "resolve_command",
]

"""Context-file checks and payload assembly."""

import logging
from pathlib import Path
from typing import Dict

from ..errors import MissingContextFileError
from .config import ContextFilesConfig, MarkerConfig, resolve_path

logger = logging.getLogger(__name__)


LOOP_MODE_SUFFIX = """

---
LOOP MODE
You are running unattended inside an automated loop. Each run is one
iteration; the loop starts you again with this same prompt when you exit.
- Pick the single most important piece of remaining work, finish it, and exit.
- Do not ask questions: nobody is watching this session.
- Record anything the next iteration needs in the project files before exiting.
- When there is no work left at all, print {completion_marker} on its own line and exit.
"""


def verify_context_files(workspace: Path, files: ContextFilesConfig) -> Dict[str, Path]:
    """Check every required context file exists and is readable.

    Returns:
        Mapping of description to resolved path

    Raises:
        MissingContextFileError: On the first missing or unreadable file
    """
    resolved = {}
    for description, configured in files.required():
        path = resolve_path(workspace, configured)
        if not path.is_file():
            raise MissingContextFileError(description, path)
        try:
            with open(path, "rb") as f:
                f.read(1)
        except OSError as e:
            raise MissingContextFileError(description, path, reason=e.strerror or str(e)) from e
        resolved[description] = path
    return resolved


def build_payload(prompt_path: Path, markers: MarkerConfig) -> str:
    """Read the prompt document and append the loop-mode directives."""
    try:
        base = prompt_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise MissingContextFileError("prompt document", prompt_path, reason=str(e)) from e

    if not base.strip():
        logger.warning(f"Prompt document {prompt_path} is empty")

    return base.rstrip("\n") + LOOP_MODE_SUFFIX.format(
        completion_marker=markers.completion_marker
    )

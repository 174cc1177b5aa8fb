"""Small helpers around external commands."""

import os
import shutil
from pathlib import Path
from typing import Optional


def resolve_command(command: str) -> Optional[Path]:
    """Return the full path the command would run from, or None."""
    if os.sep in command:
        path = Path(command)
        if path.is_file() and os.access(path, os.X_OK):
            return path
        return None
    found = shutil.which(command)
    return Path(found) if found else None

"""Preflight checks run before the loop starts (and by ``agent-loop --check``)."""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

from ..core.config import LoopSettings, resolve_path
from ..utils.subprocess_utils import resolve_command

logger = logging.getLogger(__name__)


class CheckStatus(Enum):
    """Health check status."""
    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"


@dataclass
class CheckResult:
    """Result of a health check."""
    name: str
    status: CheckStatus
    message: str
    fix_action: Optional[str] = None


class HealthChecker:
    """Validate the workspace and agent setup without launching anything."""

    def __init__(self, workspace: Path, settings: LoopSettings):
        self.workspace = Path(workspace)
        self.settings = settings

    def run_all_checks(self) -> List[CheckResult]:
        """Run every preflight check."""
        results = [self.check_context_file(desc, path) for desc, path in self.settings.files.required()]
        results.append(self.check_agent_executable())
        results.append(self.check_log_directory())
        return results

    @staticmethod
    def has_failures(results: List[CheckResult]) -> bool:
        return any(r.status == CheckStatus.FAILED for r in results)

    def check_context_file(self, description: str, configured: Path) -> CheckResult:
        """Verify a required context file exists and is readable."""
        path = resolve_path(self.workspace, configured)
        name = description[0].upper() + description[1:]

        if not path.is_file():
            return CheckResult(
                name=name,
                status=CheckStatus.FAILED,
                message=f"Missing: {path}",
                fix_action=f"Create {configured} or set files.* in the config file",
            )
        if not os.access(path, os.R_OK):
            return CheckResult(
                name=name,
                status=CheckStatus.FAILED,
                message=f"Not readable: {path}",
                fix_action=f"Fix permissions on {path}",
            )
        if path.stat().st_size == 0:
            return CheckResult(
                name=name,
                status=CheckStatus.WARNING,
                message=f"Empty: {path}",
            )
        return CheckResult(name=name, status=CheckStatus.PASSED, message=str(path))

    def check_agent_executable(self) -> CheckResult:
        """A missing agent CLI is not fatal (each iteration fails instead), so warn."""
        executable = self.settings.agent.executable
        found = resolve_command(executable)
        if found is None:
            return CheckResult(
                name="Agent Executable",
                status=CheckStatus.WARNING,
                message=f"'{executable}' not found on PATH",
                fix_action="Install the agent CLI or set agent.executable",
            )
        return CheckResult(
            name="Agent Executable",
            status=CheckStatus.PASSED,
            message=str(found),
        )

    def check_log_directory(self) -> CheckResult:
        """Verify the run log can be written."""
        log_dir = resolve_path(self.workspace, self.settings.log_dir)
        existing = log_dir if log_dir.exists() else log_dir.parent
        while not existing.exists() and existing != existing.parent:
            existing = existing.parent

        if not os.access(existing, os.W_OK):
            return CheckResult(
                name="Log Directory",
                status=CheckStatus.FAILED,
                message=f"Not writable: {log_dir}",
                fix_action="Use --log-dir to choose a writable directory",
            )
        status_msg = str(log_dir) if log_dir.exists() else f"{log_dir} (created on first run)"
        return CheckResult(name="Log Directory", status=CheckStatus.PASSED, message=status_msg)

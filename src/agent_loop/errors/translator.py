"""Translate technical errors to user-friendly messages."""

import re
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class UserFriendlyError:
    """User-friendly error representation."""
    original_error: Exception
    title: str
    explanation: str
    actions: List[str]
    show_technical: bool = False


class ErrorTranslator:
    """Translate technical errors to user-friendly messages."""

    ERROR_PATTERNS = {
        r"Config file not found": {
            "title": "Config file not found",
            "explanation": "The file passed with --config does not exist, so no settings were loaded.",
            "actions": [
                "Check the path for typos",
                "Or drop --config to use <workspace>/agent-loop.yaml and the defaults",
            ],
        },

        r"MissingContextFileError": {
            "title": "Context file missing",
            "explanation": "The loop needs the vision, agent-instructions, guardrails and prompt documents before it can start the agent.",
            "actions": [
                "Create the missing file in the workspace",
                "Or point the 'files' section of agent-loop.yaml at the right path",
                "Check everything at once: agent-loop --check",
            ],
        },

        r"ConfigurationError.*(validation error|yaml)": {
            "title": "Invalid configuration",
            "explanation": "agent-loop.yaml could not be parsed or contains invalid values.",
            "actions": [
                "Fix the fields named in the details below",
                "Delete the file to fall back to the defaults",
            ],
        },

        r"AgentLaunchError|No such file or directory|not found.*claude": {
            "title": "Agent executable not available",
            "explanation": "The agent CLI could not be started. Every iteration will fail until it is installed.",
            "actions": [
                "Install the agent CLI and make sure it is on PATH",
                "Or set agent.executable in agent-loop.yaml",
            ],
        },

        r"permission denied": {
            "title": "Permission denied",
            "explanation": "A file or directory the loop needs is not accessible to the current user.",
            "actions": [
                "Check the permissions of the workspace and log directory",
                "Use --log-dir to write logs somewhere writable",
            ],
        },
    }

    def translate(self, error: Exception) -> UserFriendlyError:
        """Convert exception to user-friendly format."""
        error_type = type(error).__name__
        full_error = f"{error_type}: {error}"

        for pattern, translation in self.ERROR_PATTERNS.items():
            if re.search(pattern, full_error, re.IGNORECASE):
                return UserFriendlyError(
                    original_error=error,
                    title=translation["title"],
                    explanation=translation["explanation"],
                    actions=translation["actions"],
                    show_technical=True,
                )

        return UserFriendlyError(
            original_error=error,
            title="Unexpected error",
            explanation=str(error),
            actions=[
                "Run the preflight checks: agent-loop --check",
                "Check the run log for details",
            ],
            show_technical=False,
        )

    def format_for_cli(self, friendly_error: UserFriendlyError) -> str:
        """Format error for CLI display (rich markup)."""
        output = f"[bold red]{friendly_error.title}[/]\n\n"
        output += f"{friendly_error.explanation}\n\n"

        output += "[bold]How to fix:[/]\n"
        for i, action in enumerate(friendly_error.actions, 1):
            output += f"  {i}. {action}\n"

        if friendly_error.show_technical:
            output += f"\n[dim]Details:[/]\n[dim]{friendly_error.original_error}[/]"

        return output

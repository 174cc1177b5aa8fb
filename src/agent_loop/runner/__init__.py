"""Agent subprocess runner."""

from .agent_runner import AgentRunner, HangScanner, payload_file

__all__ = ["AgentRunner", "HangScanner", "payload_file"]

"""Preflight health checks."""

from .checker import CheckResult, CheckStatus, HealthChecker

__all__ = ["CheckResult", "CheckStatus", "HealthChecker"]

"""Run logging: colored console plus a timestamped, append-only log file."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

OUTPUT_LOGGER_NAME = "agent_loop.run"


class LoopLogFormatter(logging.Formatter):
    """Formatter with iteration context.

    Records flagged with ``raw=True`` (agent output) are written verbatim.
    """

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        if getattr(record, "raw", False):
            return record.getMessage()

        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        iteration_context = ""
        if getattr(record, "iteration", None) is not None:
            iteration_context = f"[iter {record.iteration}/{record.total}] "

        if self.use_colors:
            level_colors = {
                "DEBUG": "\033[36m",      # Cyan
                "INFO": "\033[32m",       # Green
                "WARNING": "\033[33m",    # Yellow
                "ERROR": "\033[31m",      # Red
                "CRITICAL": "\033[35m",   # Magenta
            }
            reset = "\033[0m"
            level_color = level_colors.get(record.levelname, "")
        else:
            level_color = ""
            reset = ""

        return (
            f"{timestamp} {level_color}{record.levelname:8s}{reset} "
            f"{iteration_context}{record.getMessage()}"
        )


class _SkipRawFilter(logging.Filter):
    """Keep raw agent output off the console (it is streamed there live)."""

    def filter(self, record: logging.LogRecord) -> bool:
        return not getattr(record, "raw", False)


class IterationLogger(logging.LoggerAdapter):
    """Logger adapter that tags records with the current iteration."""

    def __init__(self, logger: logging.Logger, log_file: Optional[Path] = None):
        super().__init__(logger, {})
        self.log_file = log_file
        self.current_iteration: Optional[int] = None
        self.total_iterations: Optional[int] = None

    def set_iteration(self, index: Optional[int], total: Optional[int] = None):
        self.current_iteration = index
        if total is not None:
            self.total_iterations = total

    def process(self, msg, kwargs):
        extra = kwargs.get("extra", {})
        if self.current_iteration is not None:
            extra.setdefault("iteration", self.current_iteration)
            extra.setdefault("total", self.total_iterations)
        kwargs["extra"] = extra
        return msg, kwargs

    def iteration_started(self, index: int, total: int):
        self.set_iteration(index, total)
        self.info(f"🔁 Iteration {index} of {total}")

    def iteration_succeeded(self, index: int, duration_seconds: Optional[float]):
        msg = f"✅ Iteration {index} finished"
        if duration_seconds is not None:
            msg += f" in {duration_seconds:.1f}s"
        self.info(msg)

    def iteration_failed(self, index: int, reason: str, consecutive: int, threshold: int):
        self.error(
            f"✗ Iteration {index} failed: {reason} "
            f"(consecutive failures: {consecutive}/{threshold})"
        )

    def retrying(self, delay: float):
        self.warning(f"⏳ Retrying in {delay:g}s")

    def run_completed(self, message: str):
        self.set_iteration(None)
        self.info(f"🎉 {message}")

    def run_aborted(self, message: str):
        self.set_iteration(None)
        self.critical(f"🛑 {message}")

    def agent_output(self, index: int, output: str):
        """Append the full captured output of one iteration to the log file."""
        banner = f"----- agent output: iteration {index} -----"
        body = output if output.endswith("\n") or not output else output + "\n"
        self.info(
            f"{banner}\n{body}----- end of output: iteration {index} -----",
            extra={"raw": True},
        )


def log_file_name(started: Optional[datetime] = None) -> str:
    started = started or datetime.now()
    return f"agent-loop-{started.strftime('%Y%m%d-%H%M%S')}.log"


def setup_run_logging(
    log_dir: Path,
    log_level: str = "INFO",
    use_console: bool = True,
    use_colors: Optional[bool] = None,
) -> IterationLogger:
    """
    Configure logging for one run.

    Args:
        log_dir: Directory for the timestamped log file (created if missing)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        use_console: Mirror messages to stdout
        use_colors: ANSI colors on the console (default: only on a TTY)

    Returns:
        IterationLogger writing to console and log file
    """
    logger = logging.getLogger(OUTPUT_LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.propagate = False

    # Close existing handlers before clearing (prevents file descriptor leak)
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    if use_console:
        if use_colors is None:
            use_colors = sys.stdout.isatty() if hasattr(sys.stdout, "isatty") else False
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(LoopLogFormatter(use_colors=use_colors))
        console_handler.addFilter(_SkipRawFilter())
        logger.addHandler(console_handler)

    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / log_file_name()

    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    file_handler.setFormatter(LoopLogFormatter(use_colors=False))
    logger.addHandler(file_handler)

    # Library modules log under agent_loop.*: everything to the file, warnings
    # and up to the console as well
    package_logger = logging.getLogger("agent_loop")
    for handler in package_logger.handlers[:]:
        handler.close()
        package_logger.removeHandler(handler)
    package_logger.setLevel(logger.level)
    package_logger.addHandler(file_handler)
    if use_console:
        warning_handler = logging.StreamHandler(sys.stdout)
        warning_handler.setLevel(logging.WARNING)
        warning_handler.setFormatter(LoopLogFormatter(use_colors=use_colors))
        package_logger.addHandler(warning_handler)

    return IterationLogger(logger, log_file)


def close_run_logging(run_log: IterationLogger) -> None:
    """Flush and detach the handlers installed by setup_run_logging."""
    for logger in (run_log.logger, logging.getLogger("agent_loop")):
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

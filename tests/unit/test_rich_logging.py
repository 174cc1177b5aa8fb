"""Tests for run logging setup and the iteration logger."""

import logging
import re
from datetime import datetime

from agent_loop.utils.rich_logging import (
    OUTPUT_LOGGER_NAME,
    LoopLogFormatter,
    close_run_logging,
    log_file_name,
    setup_run_logging,
)


def _make_record(msg, **extra):
    record = logging.LogRecord(OUTPUT_LOGGER_NAME, logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def _flush(run_log):
    for handler in run_log.logger.handlers:
        handler.flush()


class TestLoopLogFormatter:
    def test_plain_line(self):
        line = LoopLogFormatter(use_colors=False).format(_make_record("hello"))
        assert re.match(r"\d\d:\d\d:\d\d INFO     hello$", line)

    def test_iteration_context(self):
        line = LoopLogFormatter(use_colors=False).format(_make_record("x", iteration=2, total=7))
        assert "[iter 2/7] x" in line

    def test_raw_record_verbatim(self):
        line = LoopLogFormatter(use_colors=True).format(_make_record("agent says hi", raw=True))
        assert line == "agent says hi"

    def test_colors(self):
        line = LoopLogFormatter(use_colors=True).format(_make_record("x"))
        assert "\033[32m" in line


def test_log_file_name_is_timestamped():
    assert log_file_name(datetime(2026, 3, 1, 9, 5, 7)) == "agent-loop-20260301-090507.log"


class TestSetupRunLogging:
    def test_creates_log_dir_and_file(self, tmp_path):
        run_log = setup_run_logging(tmp_path / "nested" / "logs", use_console=False)
        try:
            run_log.info("started")
            _flush(run_log)

            assert run_log.log_file.parent == tmp_path / "nested" / "logs"
            assert run_log.log_file.name.startswith("agent-loop-")
            assert "started" in run_log.log_file.read_text()
        finally:
            close_run_logging(run_log)

    def test_console_gets_progress_but_not_raw_output(self, tmp_path, capsys):
        run_log = setup_run_logging(tmp_path, use_console=True, use_colors=False)
        try:
            run_log.iteration_started(1, 2)
            run_log.agent_output(1, "secret agent chatter")
            _flush(run_log)
        finally:
            close_run_logging(run_log)

        out = capsys.readouterr().out
        assert "Iteration 1 of 2" in out
        assert "secret agent chatter" not in out
        assert "secret agent chatter" in run_log.log_file.read_text()

    def test_package_loggers_reach_file(self, tmp_path):
        run_log = setup_run_logging(tmp_path, use_console=False)
        try:
            logging.getLogger("agent_loop.runner.agent_runner").warning("hang found")
            _flush(run_log)
            assert "hang found" in run_log.log_file.read_text()
        finally:
            close_run_logging(run_log)

    def test_package_warnings_reach_console(self, tmp_path, capsys):
        run_log = setup_run_logging(tmp_path, use_console=True, use_colors=False)
        try:
            package_log = logging.getLogger("agent_loop.runner.agent_runner")
            package_log.warning("2 leftover processes")
            package_log.info("spawned pid 42")
            _flush(run_log)
        finally:
            close_run_logging(run_log)

        out = capsys.readouterr().out
        assert "2 leftover processes" in out
        assert "spawned pid 42" not in out
        assert "spawned pid 42" in run_log.log_file.read_text()

    def test_close_detaches_handlers(self, tmp_path):
        run_log = setup_run_logging(tmp_path, use_console=False)
        close_run_logging(run_log)

        assert run_log.logger.handlers == []
        assert logging.getLogger("agent_loop").handlers == []


class TestIterationLogger:
    def test_messages_tagged_with_iteration(self, run_log):
        run_log.iteration_started(3, 9)
        run_log.iteration_failed(3, "exit status 1", 2, 3)
        run_log.retrying(2.0)
        _flush(run_log)

        text = run_log.log_file.read_text()
        assert "Iteration 3 of 9" in text
        assert "[iter 3/9]" in text
        assert "failed: exit status 1 (consecutive failures: 2/3)" in text
        assert "Retrying in 2s" in text

    def test_run_messages_drop_iteration_context(self, run_log):
        run_log.iteration_started(1, 1)
        run_log.run_completed("All work complete after 1 iterations.")
        _flush(run_log)

        last = run_log.log_file.read_text().strip().splitlines()[-1]
        assert "All work complete after 1 iterations." in last
        assert "[iter" not in last

    def test_agent_output_framed(self, run_log):
        run_log.agent_output(4, "no trailing newline")
        _flush(run_log)

        text = run_log.log_file.read_text()
        assert (
            "----- agent output: iteration 4 -----\n"
            "no trailing newline\n"
            "----- end of output: iteration 4 -----"
        ) in text

    def test_empty_agent_output(self, run_log):
        run_log.agent_output(1, "")
        _flush(run_log)

        assert (
            "----- agent output: iteration 1 -----\n----- end of output: iteration 1 -----"
            in run_log.log_file.read_text()
        )

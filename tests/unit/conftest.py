"""Shared fixtures for unit tests.

Subprocess tests run a generated fake agent: a Python script that records
how it was called and then behaves according to a per-invocation plan.
"""

import json
import os
import stat
import sys
from pathlib import Path

import pytest

from agent_loop.core.config import (
    AgentConfig,
    LoopSettings,
    MarkerConfig,
    SafeguardsConfig,
)
from agent_loop.utils.rich_logging import close_run_logging, setup_run_logging


CONTEXT_FILES = {
    "VISION.md": "# Vision\nBuild a todo app.\n",
    "AGENTS.md": "# Agents\nUse the issue tracker.\n",
    "GUARDRAILS.md": "# Guardrails\nNever force-push.\n",
    "PROMPT.md": "Pick the next ready issue and implement it.\n",
}

FAKE_AGENT_SOURCE = '''#!{python}
import json
import os
import subprocess
import sys
import time
from pathlib import Path

state_dir = Path(os.environ["FAKE_AGENT_DIR"])
counter = state_dir / "count"
n = int(counter.read_text()) if counter.exists() else 0
n += 1
counter.write_text(str(n))

(state_dir / f"stdin-{{n}}.txt").write_text(sys.stdin.read())
(state_dir / f"argv-{{n}}.json").write_text(json.dumps(sys.argv[1:]))
(state_dir / f"agent-{{n}}.pid").write_text(str(os.getpid()))

plan = json.loads((state_dir / "plan.json").read_text())
step = plan[min(n, len(plan)) - 1]
mode = step.get("mode", "ok")

print(step.get("text", f"working on iteration {{n}}"), flush=True)

if mode == "hang":
    child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(120)"])
    (state_dir / f"child-{{n}}.pid").write_text(str(child.pid))
    time.sleep(0.2)
    print("Error: No messages returned", flush=True)
    time.sleep(120)
elif mode == "fail":
    print("something broke", file=sys.stderr, flush=True)
    sys.exit(step.get("code", 1))
elif mode == "late_hang":
    print("Error: rejected promise with an unhandled reason", file=sys.stderr, flush=True)
    sys.exit(0)
elif mode == "orphan":
    child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(120)"])
    (state_dir / f"child-{{n}}.pid").write_text(str(child.pid))
    sys.exit(0)
elif mode == "detached":
    child = subprocess.Popen(
        [sys.executable, "-c", "import time; time.sleep(120)"],
        start_new_session=True,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
    (state_dir / f"child-{{n}}.pid").write_text(str(child.pid))
    print("done", flush=True)
    sys.exit(0)
'''


@pytest.fixture
def workspace(tmp_path):
    """Workspace with all four context files present."""
    ws = tmp_path / "workspace"
    ws.mkdir()
    for name, content in CONTEXT_FILES.items():
        (ws / name).write_text(content)
    return ws


class FakeAgent:
    """Handle on the generated fake agent script and its recorded state."""

    def __init__(self, root: Path):
        self.state_dir = root / "fake-agent-state"
        self.state_dir.mkdir()
        self.path = root / "fake-agent"
        self.path.write_text(FAKE_AGENT_SOURCE.format(python=sys.executable))
        self.path.chmod(self.path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        self.set_plan([{"mode": "ok"}])

    def set_plan(self, steps):
        (self.state_dir / "plan.json").write_text(json.dumps(steps))

    @property
    def launches(self) -> int:
        counter = self.state_dir / "count"
        return int(counter.read_text()) if counter.exists() else 0

    def stdin(self, n: int) -> str:
        return (self.state_dir / f"stdin-{n}.txt").read_text()

    def argv(self, n: int) -> list:
        return json.loads((self.state_dir / f"argv-{n}.json").read_text())

    def pid(self, kind: str, n: int) -> int:
        return int((self.state_dir / f"{kind}-{n}.pid").read_text())

    def agent_config(self, **overrides) -> AgentConfig:
        values = {
            "executable": str(self.path),
            "extra_args": ["--print"],
            "env": {"FAKE_AGENT_DIR": str(self.state_dir)},
            "stream_output": False,
        }
        values.update(overrides)
        return AgentConfig(**values)

    def config_yaml(self, **safeguards) -> str:
        """agent-loop.yaml pointing at this fake agent, with fast timings."""
        timings = {"retry_delay": 0, "poll_interval": 0.05, "kill_timeout": 5}
        timings.update(safeguards)
        lines = [
            "agent:",
            f"  executable: {self.path}",
            "  env:",
            f"    FAKE_AGENT_DIR: {self.state_dir}",
            "safeguards:",
        ]
        lines += [f"  {key}: {value}" for key, value in timings.items()]
        return "\n".join(lines) + "\n"


@pytest.fixture
def fake_agent(tmp_path):
    return FakeAgent(tmp_path)


@pytest.fixture
def fast_safeguards():
    return SafeguardsConfig(retry_delay=0, poll_interval=0.05, kill_timeout=5)


@pytest.fixture
def settings(fake_agent, fast_safeguards):
    return LoopSettings(
        agent=fake_agent.agent_config(),
        safeguards=fast_safeguards,
        markers=MarkerConfig(),
    )


@pytest.fixture
def run_log(tmp_path):
    log = setup_run_logging(tmp_path / "logs", use_console=False)
    yield log
    close_run_logging(log)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep AGENT_LOOP_* overrides from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("AGENT_LOOP_"):
            monkeypatch.delenv(key)

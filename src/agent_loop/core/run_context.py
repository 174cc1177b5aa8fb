"""Run context: owns the active agent subprocess so any exit path can kill it."""

import asyncio
import atexit
import logging
import signal
import threading
from typing import Optional

from ..utils.process_utils import is_process_gone, kill_process_tree

logger = logging.getLogger(__name__)


class RunContext:
    """Tracks the single active agent subprocess for one run.

    The controller attaches each subprocess as it starts and detaches it when
    the iteration ends. ``cancel()`` kills whatever is attached and is safe to
    call from an atexit hook, a signal handler, or the event loop.
    """

    def __init__(self, kill_timeout: float = 5.0):
        self.kill_timeout = kill_timeout
        self._pid: Optional[int] = None
        self._lock = threading.Lock()
        self._cancelled = False
        self._atexit_registered = False

    @property
    def active_pid(self) -> Optional[int]:
        with self._lock:
            return self._pid

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def attach(self, pid: int) -> None:
        with self._lock:
            if self._pid is not None and not is_process_gone(self._pid):
                raise RuntimeError(
                    f"Agent process {self._pid} is still active; refusing to attach {pid}"
                )
            self._pid = pid

    def detach(self) -> None:
        with self._lock:
            self._pid = None

    def cancel(self) -> None:
        """Kill the active agent process tree, if any."""
        self._cancelled = True
        with self._lock:
            pid, self._pid = self._pid, None
        if pid is None or is_process_gone(pid):
            return
        logger.warning(f"Killing active agent process tree (pid {pid})")
        kill_process_tree(pid, timeout=self.kill_timeout)

    def register_atexit(self) -> None:
        """Make sure no agent process outlives the controller."""
        if not self._atexit_registered:
            atexit.register(self.cancel)
            self._atexit_registered = True

    def unregister_atexit(self) -> None:
        if self._atexit_registered:
            atexit.unregister(self.cancel)
            self._atexit_registered = False

    def install_signal_handlers(self, task: asyncio.Task) -> None:
        """Turn SIGTERM/SIGHUP into cancellation of the main task.

        SIGINT already cancels the main task under asyncio.run; cancellation
        unwinds through the runner, which kills the tree on its way out.
        """
        loop = asyncio.get_running_loop()
        for name in ("SIGTERM", "SIGHUP"):
            sig = getattr(signal, name, None)
            if sig is None:
                continue
            try:
                loop.add_signal_handler(sig, self._on_signal, sig, task)
            except (NotImplementedError, RuntimeError, ValueError):
                # Not the main thread, or a platform without loop signal support
                logger.debug(f"Cannot install handler for {sig.name}")

    def _on_signal(self, sig: signal.Signals, task: asyncio.Task) -> None:
        logger.warning(f"Received {sig.name}, stopping")
        self._cancelled = True
        task.cancel()

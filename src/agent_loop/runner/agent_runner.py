"""Agent CLI subprocess runner with hang detection."""

import asyncio
import codecs
import logging
import os
import tempfile
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

import psutil

from ..core.config import AgentConfig, MarkerConfig, SafeguardsConfig
from ..core.iteration import IterationRecord, find_signature
from ..core.run_context import RunContext
from ..errors import AgentLaunchError
from ..utils.process_utils import (
    descendant_processes,
    find_tagged_processes,
    is_process_gone,
    kill_process_group,
    kill_process_tree,
    kill_processes,
)

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096

# Inherited by everything the agent spawns; finds descendants after reparenting
RUN_TAG_ENV = "AGENT_LOOP_RUN_TAG"

# Pushed by the reader when the output stream hits EOF
_EOF = None


@contextmanager
def payload_file(payload: str) -> Iterator[Path]:
    """Write the payload to a private scratch file, removed on exit."""
    fd, name = tempfile.mkstemp(prefix="agent-loop-payload-", suffix=".md")
    path = Path(name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
        yield path
    finally:
        try:
            path.unlink()
        except FileNotFoundError:
            pass


class HangScanner:
    """Incremental hang-signature search over streamed output.

    Only the new text plus a tail long enough to hold a signature split
    across two chunks is searched on each feed.
    """

    def __init__(self, signatures: List[str]):
        self.signatures = signatures
        self._overlap = max((len(s) for s in signatures), default=1) - 1
        self._tail = ""

    def feed(self, text: str) -> Optional[str]:
        window = self._tail + text
        self._tail = window[-self._overlap:] if self._overlap else ""
        return find_signature(window, self.signatures)


class AgentRunner:
    """
    Runs one agent CLI invocation per iteration.

    Spawns: claude --dangerously-skip-permissions --print < payload-file

    stdout and stderr share one pipe so the captured output keeps the order
    the agent wrote it in. A reader task pushes decoded chunks onto a queue;
    the monitor consumes them with a poll-interval timeout and checks each
    chunk for hang signatures as it arrives.
    """

    def __init__(
        self,
        agent: AgentConfig,
        markers: MarkerConfig,
        safeguards: SafeguardsConfig,
        context: RunContext,
        workspace: Path,
        on_output: Optional[Callable[[str], None]] = None,
    ):
        self.agent = agent
        self.markers = markers
        self.poll_interval = safeguards.poll_interval
        self.kill_timeout = safeguards.kill_timeout
        self.context = context
        self.cwd = Path(agent.working_dir) if agent.working_dir else Path(workspace)
        self.on_output = on_output

    def build_command(self) -> List[str]:
        return self.agent.build_command()

    def build_env(self, run_tag: Optional[str] = None) -> dict:
        env = os.environ.copy()
        env.update(self.agent.env)
        if run_tag:
            env[RUN_TAG_ENV] = run_tag
        # The agent CLI refuses to start when it thinks it is nested in another session
        env.pop("CLAUDECODE", None)
        return env

    async def run(self, index: int, total: int, payload: str) -> IterationRecord:
        """Run one iteration and return its finalized record.

        Launch and monitor errors are recorded on the iteration, never
        raised. Cancellation still propagates, after the process tree is
        killed.
        """
        record = IterationRecord(index=index, total=total)
        try:
            with payload_file(payload) as path:
                await self._run_with_payload(record, path)
        except AgentLaunchError as e:
            logger.error(str(e))
            record.error = str(e)
        except Exception as e:
            logger.exception(f"Error while monitoring iteration {index}: {e}")
            record.error = f"monitor error: {e}"
        finally:
            record.finalize()
        return record

    async def _launch(self, stdin_path: Path, run_tag: str) -> asyncio.subprocess.Process:
        cmd = self.build_command()
        try:
            with open(stdin_path, "rb") as stdin:
                # Own session: the whole tree can be found and killed as a unit
                return await asyncio.create_subprocess_exec(
                    *cmd,
                    stdin=stdin,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                    cwd=self.cwd,
                    env=self.build_env(run_tag),
                    start_new_session=True,
                )
        except OSError as e:
            raise AgentLaunchError(cmd, e) from e

    async def _run_with_payload(self, record: IterationRecord, stdin_path: Path) -> None:
        run_tag = f"{os.getpid()}-{record.index}-{uuid.uuid4().hex[:12]}"
        process = await self._launch(stdin_path, run_tag)
        chunks: List[str] = []
        tracked: Dict[int, psutil.Process] = {}
        queue: asyncio.Queue = asyncio.Queue()
        reader = asyncio.create_task(self._read_output(process.stdout, queue))

        try:
            self.context.attach(process.pid)
            logger.debug(f"Agent started (pid {process.pid})")

            signature = await self._monitor(process, queue, chunks, tracked)

            if signature is not None:
                record.hang_detected = True
                record.hang_signature = signature
                logger.warning(f"Hang signature '{signature}' detected, killing agent process tree")
                await self._kill_tree(process)
            elif process.returncode is None:
                await process.wait()

            record.exit_status = process.returncode

            # Pick up whatever the reader pushed after the monitor stopped
            await self._drain(reader, queue, chunks)
            record.output = "".join(chunks)

            # A signature may land in the last bytes before exit
            if not record.hang_detected:
                late = find_signature(record.output, self.markers.hang_signatures)
                if late is not None:
                    logger.warning(f"Hang signature '{late}' found in output after exit")
                    record.hang_detected = True
                    record.hang_signature = late
        finally:
            stream_open = not reader.done()
            if stream_open:
                reader.cancel()
                try:
                    await reader
                except (asyncio.CancelledError, Exception):
                    pass
            if process.returncode is None:
                await self._kill_tree(process)
            await asyncio.to_thread(
                self._sweep_leftovers, process.pid, run_tag, tracked, stream_open
            )
            if not record.output and chunks:
                record.output = "".join(chunks)
            self.context.detach()

    async def _read_output(self, stream: asyncio.StreamReader, queue: asyncio.Queue) -> None:
        """Producer: push decoded output chunks until EOF."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                chunk = await stream.read(READ_CHUNK_SIZE)
                if not chunk:
                    tail = decoder.decode(b"", final=True)
                    if tail:
                        queue.put_nowait(tail)
                    break
                text = decoder.decode(chunk)
                if text:
                    queue.put_nowait(text)
        finally:
            queue.put_nowait(_EOF)

    async def _monitor(
        self,
        process: asyncio.subprocess.Process,
        queue: asyncio.Queue,
        chunks: List[str],
        tracked: Dict[int, psutil.Process],
    ) -> Optional[str]:
        """Consumer: collect output until EOF or a hang signature.

        Every descendant seen while the agent runs is added to tracked, so it
        can still be killed after the agent exits and it is reparented.

        Returns:
            The matched hang signature, or None when the stream ended
        """
        scanner = HangScanner(self.markers.hang_signatures)
        last_snapshot = 0.0
        while True:
            now = time.monotonic()
            if process.returncode is None and now - last_snapshot >= self.poll_interval:
                for proc in descendant_processes(process.pid):
                    tracked.setdefault(proc.pid, proc)
                last_snapshot = now

            try:
                item = await asyncio.wait_for(queue.get(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                if process.returncode is not None:
                    # Agent exited but a descendant still holds the pipe open
                    logger.debug(
                        f"Agent exited (rc={process.returncode}) with output stream still open"
                    )
                    return None
                continue

            if item is _EOF:
                return None

            chunks.append(item)
            if self.on_output is not None:
                self.on_output(item)

            signature = scanner.feed(item)
            if signature is not None:
                return signature

    async def _drain(self, reader: asyncio.Task, queue: asyncio.Queue, chunks: List[str]) -> None:
        if not reader.done():
            try:
                await asyncio.wait_for(asyncio.shield(reader), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        while not queue.empty():
            item = queue.get_nowait()
            if item is _EOF:
                continue
            chunks.append(item)
            if self.on_output is not None:
                self.on_output(item)

    async def _kill_tree(self, process: asyncio.subprocess.Process) -> None:
        await asyncio.to_thread(kill_process_tree, process.pid, self.kill_timeout)
        try:
            await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Agent process {process.pid} did not exit after kill")

    def _sweep_leftovers(
        self,
        pid: int,
        run_tag: str,
        tracked: Dict[int, psutil.Process],
        stream_open: bool,
    ) -> None:
        """Kill whatever the agent left running after it exited.

        Reaches its process group, every descendant seen while it ran, and
        anything still carrying this iteration's run tag (reparented to init
        or detached into its own session).
        """
        if stream_open:
            # Descendants outlived the agent and still hold its output pipe
            kill_process_group(pid)

        leftovers = dict(tracked)
        for proc in find_tagged_processes(RUN_TAG_ENV, run_tag):
            leftovers.setdefault(proc.pid, proc)
        leftovers.pop(pid, None)

        live = [p for p in leftovers.values() if p.is_running() and not is_process_gone(p.pid)]
        if not live:
            return
        logger.warning(
            f"Killing {len(live)} process(es) left behind by agent {pid}: "
            f"{sorted(p.pid for p in live)}"
        )
        survivors = kill_processes(live, self.kill_timeout)
        if survivors:
            logger.error(f"Processes left behind by agent {pid} still alive: {survivors}")

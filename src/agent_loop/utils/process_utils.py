"""Process management utilities for killing process trees."""

import logging
import os
import signal
import time
from typing import Dict, List

import psutil

logger = logging.getLogger(__name__)


def build_children_map() -> Dict[int, List[int]]:
    """Snapshot the process table as a parent pid -> child pids adjacency."""
    children: Dict[int, List[int]] = {}
    for proc in psutil.process_iter(["pid", "ppid"]):
        try:
            ppid = proc.info["ppid"]
            pid = proc.info["pid"]
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        if ppid is None:
            continue
        children.setdefault(ppid, []).append(pid)
    return children


def collect_descendants(root_pid: int, children: Dict[int, List[int]]) -> List[int]:
    """Return all transitive descendants of root_pid, deepest first.

    Iterative depth-first walk; a pid is never visited twice so a stale
    snapshot with pid reuse cannot loop.
    """
    order: List[int] = []
    seen = {root_pid}
    stack = [(root_pid, iter(children.get(root_pid, ())))]
    while stack:
        pid, it = stack[-1]
        child = next(it, None)
        if child is None:
            stack.pop()
            if pid != root_pid:
                order.append(pid)
            continue
        if child in seen:
            continue
        seen.add(child)
        stack.append((child, iter(children.get(child, ()))))
    return order


def is_process_gone(pid: int) -> bool:
    """True if pid no longer exists or only lingers as a zombie."""
    try:
        return psutil.Process(pid).status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True
    except psutil.AccessDenied:
        return False


def kill_process_tree(pid: int, timeout: float = 5.0) -> List[int]:
    """Kill pid and every process it transitively spawned.

    Descendants are killed deepest first, then the root, then we wait up to
    timeout seconds for all of them to exit. Processes that vanish mid-walk
    are skipped.

    Returns:
        Pids still alive after the wait (empty on success)
    """
    deadline = time.monotonic() + timeout
    descendants = []
    for child_pid in collect_descendants(pid, build_children_map()):
        try:
            descendants.append(psutil.Process(child_pid))
        except psutil.NoSuchProcess:
            continue

    killed = _send_kill(descendants)
    try:
        root_killed = bool(_send_kill([psutil.Process(pid)]))
    except psutil.NoSuchProcess:
        root_killed = False

    # Agents run in their own session; sweep the group for anything the snapshot missed
    if _leads_own_group(pid):
        kill_process_group(pid)

    survivors = _wait_for(killed, timeout)
    # The root is never reaped here: whoever spawned it owns its exit status,
    # so poll until it exits or turns zombie rather than hand it to wait_procs
    if root_killed:
        survivors += wait_until_gone([pid], max(deadline - time.monotonic(), 0.0))

    if survivors:
        logger.warning(f"Processes still alive after kill of tree {pid}: {survivors}")
    else:
        logger.debug(f"Killed process tree rooted at {pid} ({len(descendants)} descendant(s))")
    return survivors


def kill_processes(procs: List[psutil.Process], timeout: float = 5.0) -> List[int]:
    """SIGKILL already-identified processes and wait for them to exit.

    psutil.Process handles refuse to signal a recycled pid, so handles kept
    from an earlier snapshot are safe to pass.

    Returns:
        Pids still alive after the wait (zombies count as gone)
    """
    return _wait_for(_send_kill(procs), timeout)


def _send_kill(procs: List[psutil.Process]) -> List[psutil.Process]:
    killed = []
    for proc in procs:
        try:
            proc.kill()
            killed.append(proc)
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied:
            logger.warning(f"Access denied killing pid {proc.pid}")
    return killed


def _wait_for(procs: List[psutil.Process], timeout: float) -> List[int]:
    if not procs:
        return []
    _, alive = psutil.wait_procs(procs, timeout=timeout)
    # An unreaped zombie is still "alive" to wait_procs
    return [p.pid for p in alive if not is_process_gone(p.pid)]


def descendant_processes(pid: int) -> List[psutil.Process]:
    """Live descendants of pid, or [] once pid is gone."""
    try:
        return psutil.Process(pid).children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return []


def find_tagged_processes(env_key: str, tag: str) -> List[psutil.Process]:
    """Processes whose environment carries env_key=tag.

    Environment is inherited across fork, setsid and reparenting, so this
    finds descendants a parent-pid walk can no longer reach.
    """
    found = []
    for proc in psutil.process_iter(["pid", "environ"]):
        try:
            environ = proc.info.get("environ") or {}
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        if environ.get(env_key) == tag and proc.pid != os.getpid():
            found.append(proc)
    return found


def wait_until_gone(pids: List[int], timeout: float, interval: float = 0.05) -> List[int]:
    """Poll until every pid is gone or timeout elapses. Returns the survivors."""
    deadline = time.monotonic() + timeout
    pending = list(pids)
    while True:
        pending = [p for p in pending if not is_process_gone(p)]
        if not pending or time.monotonic() >= deadline:
            return pending
        time.sleep(interval)


def _leads_own_group(pid: int) -> bool:
    try:
        return os.getpgid(pid) == pid
    except OSError:
        return False


def kill_process_group(pgid: int) -> bool:
    """SIGKILL every process in a process group.

    Works after the group leader has exited, as long as any member remains.

    Returns:
        True if the signal was delivered
    """
    try:
        os.killpg(pgid, signal.SIGKILL)
        return True
    except (ProcessLookupError, PermissionError):
        return False
    except OSError as e:
        logger.debug(f"Process group kill for {pgid} failed: {e}")
        return False

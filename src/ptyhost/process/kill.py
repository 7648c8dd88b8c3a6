"""Process-tree termination — the one platform-specific kill path."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys

import psutil

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"
# Passes over the process table when killing a whole session.
_SESSION_SCANS = 3


def terminate_process_tree(pid: int) -> bool:
    """Forcefully kill ``pid`` and every process in its group or tree.

    Children are spawned as process-group leaders, so on POSIX the group
    id equals ``pid`` and a single ``killpg`` reaches everything a shell
    started. Windows has no process groups in that sense; ``taskkill /T``
    walks the tree instead.

    Returns True if a kill was delivered, False if the process was
    already gone.
    """
    if IS_WINDOWS:
        return _taskkill(pid)
    return _killpg(pid)


def _killpg(pid: int) -> bool:
    try:
        pgid = os.getpgid(pid)
    except ProcessLookupError:
        logger.debug("Process already gone: %d", pid)
        return False

    # Never signal our own group.
    if pgid == os.getpgid(0):
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            return False
        logger.info("Killed process %d", pid)
        return True

    try:
        os.killpg(pgid, signal.SIGKILL)
    except ProcessLookupError:
        logger.debug("Process group already gone: %d", pgid)
        return False
    logger.info("Killed process group %d (pid=%d)", pgid, pid)
    return True


def _taskkill(pid: int) -> bool:
    result = subprocess.run(
        ["taskkill", "/T", "/F", "/PID", str(pid)],
        capture_output=True,
        text=True,
        creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
    )
    if result.returncode != 0:
        logger.debug("taskkill %d failed: %s", pid, result.stderr.strip())
        return False
    logger.info("Killed process tree %d", pid)
    return True


def terminate_session(sid: int) -> bool:
    """Forcefully kill every process group in the POSIX session ``sid``.

    An interactive shell started with ``start_new_session`` leads its own
    session, and with job control on each ``cmd &`` gets a separate
    process group inside it. Killing the shell's group alone leaves those
    jobs running, so every group whose members share the session is
    signalled. The scan repeats until the session is empty, catching
    jobs forked while earlier groups were being killed.

    On Windows there are no sessions; the process tree is killed instead.
    Returns True if anything was killed.
    """
    if IS_WINDOWS:
        return _taskkill(sid)

    own_group = os.getpgid(0)
    killed = False
    for _ in range(_SESSION_SCANS):
        groups = _session_groups(sid) - {own_group}
        if not groups:
            break
        for pgid in groups:
            try:
                os.killpg(pgid, signal.SIGKILL)
            except ProcessLookupError:
                continue
            killed = True
            logger.info("Killed process group %d of session %d", pgid, sid)
    return killed


def _session_groups(sid: int) -> set[int]:
    groups: set[int] = set()
    for pid in psutil.pids():
        try:
            if os.getsid(pid) != sid:
                continue
            if psutil.Process(pid).status() == psutil.STATUS_ZOMBIE:
                continue
            groups.add(os.getpgid(pid))
        except (OSError, psutil.Error):
            # Gone between listing and inspection, or not ours to see.
            continue
    return groups

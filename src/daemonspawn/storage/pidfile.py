"""PID file management and process liveness checks."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import psutil

from daemonspawn.storage.models import Liveness

logger = logging.getLogger(__name__)


def write_pid(pid_file: Path, pid: int) -> None:
    """Write a PID to file, replacing any previous content atomically."""
    pid_file.parent.mkdir(parents=True, exist_ok=True)
    tmp_file = pid_file.with_name(f".{pid_file.name}.{os.getpid()}.tmp")
    try:
        tmp_file.write_text(f"{pid}\n")
        os.replace(tmp_file, pid_file)
    except OSError:
        tmp_file.unlink(missing_ok=True)
        raise
    logger.debug("Wrote PID %d to %s", pid, pid_file)


def read_pid(pid_file: Path) -> int | None:
    """Read PID from file. A missing or garbled file reads as None."""
    try:
        content = pid_file.read_text().strip()
    except FileNotFoundError:
        return None
    try:
        pid = int(content)
    except ValueError:
        logger.warning("Ignoring malformed PID file %s: %r", pid_file, content)
        return None
    return pid if pid > 0 else None


def remove_pid(pid_file: Path) -> None:
    """Remove a PID file; a missing file is fine."""
    pid_file.unlink(missing_ok=True)


def is_alive(pid: int) -> bool:
    """Check if a process exists without affecting it. Zombies count as dead."""
    if not psutil.pid_exists(pid):
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        # Foreign user; assume alive rather than risk a double start
        return True


def liveness(pid_file: Path) -> tuple[Liveness, int | None]:
    """Derive the liveness of the process a PID file points at."""
    pid = read_pid(pid_file)
    if pid is None:
        if pid_file.exists():
            return Liveness.STALE, None
        return Liveness.ABSENT, None
    if is_alive(pid):
        return Liveness.ALIVE, pid
    return Liveness.STALE, pid

"""Process daemonization: double fork, session detach and stream redirection."""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Callable

from daemonspawn.config import DEFAULT_LOG_MODE, INSTANCE_ENV, DaemonConfig
from daemonspawn.storage.models import InstanceHandle
from daemonspawn.storage.pidfile import write_pid
from daemonspawn.utils.system import supports_fork

logger = logging.getLogger(__name__)


class DaemonizeError(RuntimeError):
    """Daemonization failed before the instance could start."""


def open_log(log_file: Path, mode: int = DEFAULT_LOG_MODE) -> int:
    """Open a log file for append and return the descriptor.

    A file created here ends up with exactly ``mode``; the umask, which would
    otherwise mask it, is left untouched. Existing files keep their mode.
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)
    flags = os.O_WRONLY | os.O_CREAT | os.O_APPEND
    try:
        fd = os.open(log_file, flags | os.O_EXCL, mode)
    except FileExistsError:
        return os.open(log_file, flags)
    try:
        os.fchmod(fd, mode)
    except OSError:
        os.close(fd)
        raise
    return fd


def redirect_streams(config: DaemonConfig) -> None:
    """Point stdin at the null device and stdout/stderr at the log target."""
    sys.stdout.flush()
    sys.stderr.flush()

    devnull = os.open(os.devnull, os.O_RDWR)
    os.dup2(devnull, 0)

    log_path = config.log_path
    if log_path is not None:
        log_fd = open_log(log_path, config.log_mode)
    elif config.log_file is not None:
        config.log_file.flush()
        log_fd = os.dup(config.log_file.fileno())
    else:
        log_fd = os.dup(devnull)

    os.dup2(log_fd, 1)
    os.dup2(log_fd, 2)
    os.close(log_fd)
    os.close(devnull)

    for stream in (sys.stdout, sys.stderr):
        reconfigure = getattr(stream, "reconfigure", None)
        if reconfigure is not None:
            reconfigure(line_buffering=config.sync_log, write_through=config.sync_log)


def spawn(config: DaemonConfig, handle: InstanceHandle, body: Callable[[], int]) -> int:
    """Run ``body`` in a new daemon process and return the daemon's PID.

    Unix double fork: the caller forks and waits only for the short-lived
    intermediate child, which calls setsid() and forks the daemon proper.
    The daemon changes directory, redirects its streams, writes its PID file
    and reports back over a pipe before running ``body``; the caller never
    returns before the PID file exists. Any failure up to that point is
    raised here as DaemonizeError.
    """
    if not supports_fork():
        return spawn_detached(config, handle)

    sys.stdout.flush()
    sys.stderr.flush()

    read_fd, write_fd = os.pipe()
    try:
        pid = os.fork()
    except OSError as e:
        os.close(read_fd)
        os.close(write_fd)
        raise DaemonizeError(f"fork failed: {e}") from e

    if pid == 0:
        os.close(read_fd)
        _detach(config, handle, write_fd, body)  # never returns

    os.close(write_fd)
    with os.fdopen(read_fd, "rb") as pipe:
        report = pipe.read().decode("utf-8", errors="replace")
    _, status = os.waitpid(pid, 0)
    return _parse_report(report, status)


def _detach(config: DaemonConfig, handle: InstanceHandle, report_fd: int, body: Callable[[], int]) -> None:
    # Intermediate child: new session, then fork so the daemon is not a session leader
    try:
        os.setsid()
        pid = os.fork()
    except OSError as e:
        _report(report_fd, f"ERR detaching failed: {e}")
        _exit(1)
    if pid > 0:
        _exit(0)

    # Daemon
    try:
        os.chdir(config.working_dir)
        redirect_streams(config)
        write_pid(handle.pid_file, os.getpid())
    except OSError as e:
        _report(report_fd, f"ERR {e}")
        _exit(1)

    _report(report_fd, f"OK {os.getpid()}")
    os.close(report_fd)

    code = 1
    try:
        code = body()
    finally:
        _exit(code)


def _report(fd: int, message: str) -> None:
    try:
        os.write(fd, message.encode("utf-8", errors="replace"))
    except OSError:
        pass  # The caller is gone; the log target is all that is left


def _exit(code: int) -> None:
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.flush()
        except (OSError, ValueError):
            pass
    os._exit(code)


def _parse_report(report: str, status: int) -> int:
    kind, _, detail = report.strip().partition(" ")
    if kind == "OK":
        return int(detail)
    if kind == "ERR":
        raise DaemonizeError(detail)
    code = os.waitstatus_to_exitcode(status)
    raise DaemonizeError(f"Daemon exited before reporting its PID (status {code})")


def spawn_detached(config: DaemonConfig, handle: InstanceHandle, argv: list[str] | None = None) -> int:
    """Start a detached copy of the running program for platforms without fork.

    The copy inherits ``DAEMONSPAWN_INSTANCE`` and runs the instance body in
    place (see detached_instance_index()).
    """
    argv = list(sys.argv if argv is None else argv)
    if argv and os.path.exists(argv[0]):
        argv[0] = os.path.abspath(argv[0])
    env = dict(os.environ)
    env[INSTANCE_ENV] = str(handle.index)

    kwargs: dict = {}
    if sys.platform == "win32":
        kwargs["creationflags"] = subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
    else:
        kwargs["start_new_session"] = True

    log_path = config.log_path
    if log_path is not None:
        output: int | object = open_log(log_path, config.log_mode)
    elif config.log_file is not None:
        output = config.log_file.fileno()
    else:
        output = subprocess.DEVNULL

    try:
        proc = subprocess.Popen(
            [sys.executable, *argv],
            cwd=config.working_dir,
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=output,
            stderr=subprocess.STDOUT,
            close_fds=True,
            **kwargs,
        )
    except OSError as e:
        raise DaemonizeError(f"Could not launch detached process: {e}") from e
    finally:
        if log_path is not None:
            os.close(output)  # type: ignore[arg-type]

    try:
        write_pid(handle.pid_file, proc.pid)
    except OSError as e:
        raise DaemonizeError(f"Could not write PID file {handle.pid_file}: {e}") from e
    logger.debug("Launched detached instance %d as PID %d", handle.index, proc.pid)
    return proc.pid


def detached_instance_index() -> int | None:
    """Index of the instance this process was launched as by spawn_detached()."""
    value = os.environ.pop(INSTANCE_ENV, None)
    if value is None or not value.isdigit():
        return None
    return int(value)

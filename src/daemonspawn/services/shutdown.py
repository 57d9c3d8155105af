"""Stop signal handling inside a daemon and stop/kill escalation from outside."""

from __future__ import annotations

import logging
import os
import signal
import time
from types import FrameType

from daemonspawn.storage.models import ShutdownOutcome
from daemonspawn.storage.pidfile import is_alive
from daemonspawn.utils.system import signal_name
from daemonspawn.worker import InstanceContext, StopRequested, Worker

logger = logging.getLogger(__name__)

KILL_SIGNAL = getattr(signal, "SIGKILL", signal.SIGTERM)
KILL_GRACE = 1.0


def install_stop_handler(signum: int, worker: Worker, ctx: InstanceContext) -> None:
    """Turn ``signum`` into a stop event, a stop hook call and (usually) an exit.

    The handler is single-shot: a second signal arriving while the first is
    still being handled is ignored.
    """
    handling = False

    def _handler(received: int, frame: FrameType | None) -> None:
        nonlocal handling
        if handling:
            return
        handling = True

        ctx.logger.info("received SIG%s, stopping", signal_name(received))
        ctx.request_stop()
        if worker.stop is not None:
            try:
                worker.stop(ctx)
            except Exception as e:
                ctx.logger.error("stop hook failed: %s", e)

        if not worker.cooperative:
            raise StopRequested()

    signal.signal(signum, _handler)


def wait_for_exit(pid: int, timeout: float, poll_interval: float) -> bool:
    """Poll until the process is gone; True if it went away in time."""
    deadline = time.monotonic() + timeout
    while is_alive(pid):
        if time.monotonic() >= deadline:
            return False
        time.sleep(poll_interval)
    return True


def terminate(
    pid: int,
    signum: int = signal.SIGTERM,
    timeout: float = 5.0,
    poll_interval: float = 0.1,
) -> ShutdownOutcome:
    """Send ``signum`` and escalate to a forced kill after ``timeout`` seconds."""
    try:
        os.kill(pid, signum)
    except ProcessLookupError:
        return ShutdownOutcome.NOT_RUNNING
    except PermissionError:
        logger.error("Not permitted to signal PID %d", pid)
        return ShutdownOutcome.DENIED

    if wait_for_exit(pid, timeout, poll_interval):
        return ShutdownOutcome.STOPPED

    logger.warning("PID %d still alive %.1fs after SIG%s, killing", pid, timeout, signal_name(signum))
    try:
        os.kill(pid, KILL_SIGNAL)
    except ProcessLookupError:
        return ShutdownOutcome.STOPPED
    except PermissionError:
        logger.error("Not permitted to kill PID %d", pid)
        return ShutdownOutcome.DENIED

    if not wait_for_exit(pid, KILL_GRACE, poll_interval):
        logger.warning("PID %d did not disappear after SIG%s", pid, signal_name(KILL_SIGNAL))
    return ShutdownOutcome.KILLED

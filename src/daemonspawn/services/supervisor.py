"""Fan start/stop/restart/status out over every instance of a daemon group."""

from __future__ import annotations

import logging
import os
import signal
from functools import partial
from pathlib import Path
from typing import Sequence

from daemonspawn.config import DaemonConfig
from daemonspawn.daemon import DaemonizeError, spawn
from daemonspawn.services.shutdown import install_stop_handler, terminate
from daemonspawn.storage.models import (
    InstanceHandle,
    Liveness,
    ShutdownOutcome,
    StartReport,
    StatusReport,
    StopReport,
)
from daemonspawn.storage.pidfile import liveness, read_pid, remove_pid
from daemonspawn.utils.safelog import setup_logging
from daemonspawn.worker import InstanceContext, StopRequested, Worker

logger = logging.getLogger(__name__)


class Supervisor:
    """Drive the N instances of a daemon group as one logical unit.

    Instances are handled one after another; every stop gets its own
    timeout clock.
    """

    def __init__(self, worker: Worker, config: DaemonConfig) -> None:
        self.worker = worker
        self.config = config

    def handles(self) -> list[InstanceHandle]:
        """One handle per configured instance index."""
        return [InstanceHandle(index=i, pid_file=self.config.pid_path(i)) for i in range(self.config.processes)]

    def discover(self) -> list[InstanceHandle]:
        """Configured handles plus leftover PID files, with liveness filled in."""
        found: dict[Path, InstanceHandle] = {h.pid_file: h for h in self.handles()}

        directory, pattern = self.config.pid_glob()
        if directory.is_dir():
            for path in sorted(directory.glob(pattern)):
                index = self.config.index_from_path(path)
                if path not in found and index is not None:
                    found[path] = InstanceHandle(index=index, pid_file=path)

        # Bare path left behind by an earlier single-instance run
        bare = Path(self.config.pid_file).expanduser()
        if "{index}" not in str(bare) and bare not in found and bare.exists():
            found[bare] = InstanceHandle(index=0, pid_file=bare)

        for handle in found.values():
            handle.state, handle.pid = liveness(handle.pid_file)
        return sorted(found.values(), key=lambda h: (h.index, str(h.pid_file)))

    def start(self, args: Sequence[str] = ()) -> StartReport:
        """Start every instance that is not already running."""
        report = StartReport()
        for handle in self.handles():
            handle.state, handle.pid = liveness(handle.pid_file)
            if handle.state is Liveness.ALIVE:
                logger.info("%s instance %d already running as PID %s", self.config.name, handle.index, handle.pid)
                report.running.append(handle)
                continue
            if handle.state is Liveness.STALE:
                logger.info("Removing stale PID file %s (PID %s)", handle.pid_file, handle.pid)
                remove_pid(handle.pid_file)

            try:
                handle.pid = spawn(self.config, handle, partial(self.run_instance, handle, list(args)))
            except DaemonizeError as e:
                logger.error("Could not start %s instance %d: %s", self.config.name, handle.index, e)
                handle.state, handle.pid = Liveness.ABSENT, None
                report.failed.append((handle, str(e)))
                continue
            handle.state = Liveness.ALIVE
            logger.info("Started %s instance %d as PID %d", self.config.name, handle.index, handle.pid)
            report.started.append(handle)
        return report

    def stop(self) -> StopReport:
        """Stop every instance that has a PID file and clear the files."""
        present = [h for h in self.discover() if h.state is not Liveness.ABSENT]
        if not present:
            return StopReport(no_pidfiles=True)

        report = StopReport()
        for handle in present:
            if handle.state is Liveness.STALE or handle.pid is None:
                logger.info("Removing stale PID file %s (PID %s)", handle.pid_file, handle.pid)
                remove_pid(handle.pid_file)
                report.stale.append(handle)
                continue

            outcome = terminate(
                handle.pid,
                self.config.stop_signum,
                self.config.kill_timeout,
                self.config.poll_interval,
            )
            if outcome is ShutdownOutcome.DENIED:
                report.stopped.append((handle, outcome))
                continue
            remove_pid(handle.pid_file)
            handle.state = Liveness.ABSENT
            logger.info("%s instance %d (PID %d): %s", self.config.name, handle.index, handle.pid, outcome.value)
            report.stopped.append((handle, outcome))
        return report

    def restart(self, args: Sequence[str] = ()) -> tuple[StopReport, StartReport]:
        """A full stop pass followed by a full start pass.

        Nothing is started when an instance could not be stopped.
        """
        stop_report = self.stop()
        if not stop_report.ok:
            return stop_report, StartReport()
        return stop_report, self.start(args)

    def status(self) -> StatusReport:
        return StatusReport(instances=self.discover())

    def run_instance(self, handle: InstanceHandle, args: list[str]) -> int:
        """Body of a daemon process; returns its exit status."""
        setup_logging(self.config.log_level)
        signum = self.config.stop_signum
        ctx = InstanceContext(config=self.config, index=handle.index, args=args)
        install_stop_handler(signum, self.worker, ctx)

        code = 0
        try:
            self.worker.start(ctx)
        except StopRequested:
            pass
        except SystemExit as e:
            code = e.code if isinstance(e.code, int) else (0 if e.code is None else 1)
        except Exception:
            ctx.logger.exception("start hook failed")
            code = 1
        finally:
            signal.signal(signum, signal.SIG_IGN)
            if read_pid(handle.pid_file) == os.getpid():
                remove_pid(handle.pid_file)
            for log_handler in logging.getLogger().handlers:
                log_handler.flush()
        return code

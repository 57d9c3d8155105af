"""Human-readable rendering of supervisor reports."""

from __future__ import annotations

from daemonspawn.storage.models import (
    InstanceHandle,
    Liveness,
    ShutdownOutcome,
    StartReport,
    StatusReport,
    StopReport,
)

NO_PIDFILES = "No PID files found. Is the daemon started?"
NO_PIDS = "No PIDs found"


def format_pids(handles: list[InstanceHandle]) -> str:
    """Space-separated PIDs, in instance order."""
    return " ".join(str(h.pid) for h in handles if h.pid is not None)


def format_duration(seconds: float) -> str:
    """Format seconds to a short human-readable duration."""
    if seconds < 1:
        return f"{int(seconds * 1000)}ms"
    elif seconds < 60:
        return f"{seconds:.1f}s"
    else:
        minutes = int(seconds // 60)
        return f"{minutes}m {int(seconds % 60)}s"


def format_start_report(name: str, report: StartReport) -> list[str]:
    lines: list[str] = []
    if report.running:
        lines.append(f"Daemons already started! PIDS: {format_pids(report.running)}")
    if report.started:
        lines.append(f"{name} started. PIDS: {format_pids(report.started)}")
    for handle, error in report.failed:
        lines.append(f"{name} ({handle.index}) failed to start: {error}")
    return lines


def format_stop_report(name: str, report: StopReport, kill_timeout: float = 0.0) -> list[str]:
    if report.no_pidfiles:
        return [NO_PIDFILES]
    lines: list[str] = []
    for handle in report.stale:
        pid = handle.pid if handle.pid is not None else "?"
        lines.append(f"{name} ({handle.index}) was not running, removed stale PID file {handle.pid_file} (PID {pid})")
    for handle, outcome in report.stopped:
        if outcome is ShutdownOutcome.KILLED:
            lines.append(f"{name} ({handle.index}) killed after {format_duration(kill_timeout)} timeout (PID {handle.pid})")
        elif outcome is ShutdownOutcome.DENIED:
            lines.append(f"{name} ({handle.index}) could not be stopped: permission denied (PID {handle.pid})")
        elif outcome is ShutdownOutcome.NOT_RUNNING:
            lines.append(f"{name} ({handle.index}) had already exited (PID {handle.pid})")
        else:
            lines.append(f"{name} ({handle.index}) stopped (PID {handle.pid})")
    return lines


def format_status_report(name: str, report: StatusReport) -> list[str]:
    lines: list[str] = []
    for handle in report.instances:
        if handle.state is Liveness.ALIVE:
            lines.append(f"{name} is running (PID {handle.pid})")
        elif handle.state is Liveness.STALE:
            lines.append(f"{name} ({handle.index}) is not running, stale PID file {handle.pid_file}")
    if not report.pids:
        lines.append(NO_PIDS)
    return lines

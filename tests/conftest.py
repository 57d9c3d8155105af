"""Shared test fixtures."""

from __future__ import annotations

import signal

import pytest

from daemonspawn.config import DaemonConfig
from daemonspawn.worker import Worker


@pytest.fixture
def daemon_config(tmp_path):
    """Create a test configuration."""
    return DaemonConfig(
        name="TestServer",
        pid_file=str(tmp_path / "run" / "test.pid"),
        working_dir=str(tmp_path),
        log_file=str(tmp_path / "test.log"),
        kill_timeout=1.0,
        poll_interval=0.05,
    )


@pytest.fixture
def worker():
    return Worker(start=lambda ctx: None)


@pytest.fixture
def restore_signals():
    """Put back the handlers a test installs for its stop signals."""
    saved = {sig: signal.getsignal(sig) for sig in (signal.SIGTERM, signal.SIGUSR1, signal.SIGUSR2)}
    yield
    for sig, handler in saved.items():
        signal.signal(sig, handler)

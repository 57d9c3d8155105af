"""Tests for stop signal handling and kill escalation."""

from __future__ import annotations

import signal
import subprocess
import sys
import threading
from unittest.mock import MagicMock, patch

import pytest

from daemonspawn.services.shutdown import install_stop_handler, terminate
from daemonspawn.storage.models import ShutdownOutcome
from daemonspawn.worker import InstanceContext, StopRequested, Worker

SLEEPER = "import time; print('ready', flush=True); time.sleep(60)"
DEAF_SLEEPER = (
    "import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); "
    "print('ready', flush=True); time.sleep(60)"
)


def _start(code: str) -> subprocess.Popen:
    proc = subprocess.Popen([sys.executable, "-c", code], stdout=subprocess.PIPE, text=True)
    assert proc.stdout is not None
    assert proc.stdout.readline().strip() == "ready"
    # Reap in the background so the pid disappears as soon as it exits
    threading.Thread(target=proc.wait, daemon=True).start()
    return proc


class TestTerminate:
    def test_graceful_stop(self):
        proc = _start(SLEEPER)
        outcome = terminate(proc.pid, signal.SIGTERM, timeout=5.0, poll_interval=0.05)
        assert outcome is ShutdownOutcome.STOPPED
        assert proc.wait(timeout=5) == -signal.SIGTERM

    def test_escalates_to_kill(self):
        proc = _start(DEAF_SLEEPER)
        outcome = terminate(proc.pid, signal.SIGTERM, timeout=0.3, poll_interval=0.05)
        assert outcome is ShutdownOutcome.KILLED
        assert proc.wait(timeout=5) == -signal.SIGKILL

    def test_already_gone(self):
        with patch("daemonspawn.services.shutdown.os.kill", side_effect=ProcessLookupError) as kill:
            assert terminate(12345) is ShutdownOutcome.NOT_RUNNING
        kill.assert_called_once_with(12345, signal.SIGTERM)

    def test_not_permitted_to_signal(self):
        with patch("daemonspawn.services.shutdown.os.kill", side_effect=PermissionError) as kill:
            assert terminate(12345) is ShutdownOutcome.DENIED
        kill.assert_called_once_with(12345, signal.SIGTERM)

    def test_not_permitted_to_kill(self):
        with patch("daemonspawn.services.shutdown.os.kill", side_effect=[None, PermissionError]):
            with patch("daemonspawn.services.shutdown.wait_for_exit", return_value=False):
                assert terminate(12345, timeout=0.1) is ShutdownOutcome.DENIED

    def test_custom_signal_is_sent(self):
        with patch("daemonspawn.services.shutdown.os.kill") as kill:
            with patch("daemonspawn.services.shutdown.is_alive", return_value=False):
                assert terminate(12345, signal.SIGUSR1) is ShutdownOutcome.STOPPED
        kill.assert_called_once_with(12345, signal.SIGUSR1)


@pytest.mark.usefixtures("restore_signals")
class TestStopHandler:
    def test_non_cooperative_unwinds(self, daemon_config):
        stop = MagicMock()
        ctx = InstanceContext(config=daemon_config, index=0)
        install_stop_handler(signal.SIGUSR1, Worker(start=MagicMock(), stop=stop), ctx)

        with pytest.raises(StopRequested):
            signal.raise_signal(signal.SIGUSR1)

        assert ctx.stopping
        stop.assert_called_once_with(ctx)

    def test_cooperative_returns(self, daemon_config):
        stop = MagicMock()
        ctx = InstanceContext(config=daemon_config, index=0)
        install_stop_handler(signal.SIGUSR1, Worker(start=MagicMock(), stop=stop, cooperative=True), ctx)

        signal.raise_signal(signal.SIGUSR1)

        assert ctx.wait(timeout=0)
        stop.assert_called_once_with(ctx)

    def test_second_signal_is_ignored(self, daemon_config):
        stop = MagicMock()
        ctx = InstanceContext(config=daemon_config, index=0)
        install_stop_handler(signal.SIGUSR1, Worker(start=MagicMock(), stop=stop, cooperative=True), ctx)

        signal.raise_signal(signal.SIGUSR1)
        signal.raise_signal(signal.SIGUSR1)

        assert stop.call_count == 1

    def test_failing_stop_hook_does_not_escape(self, daemon_config):
        ctx = InstanceContext(config=daemon_config, index=0)
        worker = Worker(start=MagicMock(), stop=MagicMock(side_effect=RuntimeError("boom")), cooperative=True)
        install_stop_handler(signal.SIGUSR1, worker, ctx)

        signal.raise_signal(signal.SIGUSR1)

        assert ctx.stopping

    def test_other_signals_untouched(self, daemon_config):
        before = signal.getsignal(signal.SIGUSR2)
        ctx = InstanceContext(config=daemon_config, index=0)
        install_stop_handler(signal.SIGUSR1, Worker(start=MagicMock()), ctx)
        assert signal.getsignal(signal.SIGUSR2) is before

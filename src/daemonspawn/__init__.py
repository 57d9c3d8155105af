"""Turn a start/stop pair of functions into a group of managed background daemons."""

from daemonspawn.cli import spawn
from daemonspawn.config import ConfigError, DaemonConfig, load_config
from daemonspawn.daemon import DaemonizeError
from daemonspawn.services.supervisor import Supervisor
from daemonspawn.version import __version__
from daemonspawn.worker import InstanceContext, StopRequested, Worker, async_worker, wait_stopped

__all__ = [
    "ConfigError",
    "DaemonConfig",
    "DaemonizeError",
    "InstanceContext",
    "StopRequested",
    "Supervisor",
    "Worker",
    "__version__",
    "async_worker",
    "load_config",
    "spawn",
    "wait_stopped",
]

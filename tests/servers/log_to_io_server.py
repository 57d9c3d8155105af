#!/usr/bin/env python
"""Logs to an already open stream: ``log_to_io_server.py <command> <log file> [<processes>]``."""

from __future__ import annotations

import os
import sys
import tempfile
import time

from daemonspawn import DaemonConfig, InstanceContext, Worker, spawn


def start(ctx: InstanceContext) -> None:
    print(f"{ctx.name} ({ctx.index}) started")
    while True:
        time.sleep(5)


def stop(ctx: InstanceContext) -> None:
    print(f"{ctx.name} ({ctx.index}) stopped")


if __name__ == "__main__":
    if len(sys.argv) < 3 or sys.argv[1] not in ("start", "stop", "status", "restart"):
        sys.exit(f"USAGE: {os.path.basename(__file__)} <command> <log file> [<processes>]")
    processes = int(sys.argv[3]) if len(sys.argv) > 3 else 1

    with open(sys.argv[2], "a") as log:
        config = DaemonConfig(
            name="LogToIOServer",
            pid_file=os.path.join(tempfile.gettempdir(), "log_to_io_server.pid"),
            working_dir=os.path.dirname(os.path.abspath(__file__)),
            log_file=log,
            sync_log=True,
            processes=processes,
        )
        spawn(Worker(start=start, stop=stop), config, argv=[sys.argv[1]])

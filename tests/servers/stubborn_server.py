#!/usr/bin/env python
"""Acknowledges the stop signal but never exits; only SIGKILL gets rid of it."""

from __future__ import annotations

import os
import tempfile
import time

from daemonspawn import DaemonConfig, InstanceContext, Worker, spawn


def start(ctx: InstanceContext) -> None:
    ctx.logger.info("started")
    while True:
        time.sleep(1)


def stop(ctx: InstanceContext) -> None:
    ctx.logger.info("ignoring stop request")


config = DaemonConfig(
    name="StubbornServer",
    pid_file=os.path.join(tempfile.gettempdir(), "stubborn_server.pid"),
    working_dir=os.path.dirname(os.path.abspath(__file__)),
    log_file=os.path.join(tempfile.gettempdir(), "stubborn_server.log"),
    kill_timeout=1.0,
)

if __name__ == "__main__":
    spawn(Worker(start=start, stop=stop, cooperative=True), config)

"""Worker hooks and the per-instance context they receive."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from daemonspawn.config import DaemonConfig
from daemonspawn.utils.safelog import SafeLoggerAdapter

StartHook = Callable[["InstanceContext"], Any]
StopHook = Callable[["InstanceContext"], Any]


class StopRequested(BaseException):
    """Unwinds a non-cooperative start hook once the stop hook has run.

    Derives from BaseException so ``except Exception`` in worker code does not
    swallow it.
    """


@dataclass(frozen=True)
class Worker:
    """The behaviour a daemon group runs: a start hook and an optional stop hook.

    A cooperative worker's start hook watches ``ctx.stopping`` (or blocks in
    ``ctx.wait()``) and returns on its own after the stop signal. A
    non-cooperative one is interrupted with StopRequested instead.
    """

    start: StartHook
    stop: StopHook | None = None
    cooperative: bool = False


@dataclass
class InstanceContext:
    """Everything a hook knows about the instance it runs in."""

    config: DaemonConfig
    index: int
    args: list[str] = field(default_factory=list)
    logger: logging.LoggerAdapter = field(init=False)
    stop_event: threading.Event = field(default_factory=threading.Event, repr=False)
    _callbacks: list[Callable[[], None]] = field(default_factory=list, init=False, repr=False)
    _async_stopped: asyncio.Event | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.logger = SafeLoggerAdapter(
            logging.getLogger(f"daemonspawn.worker.{self.config.name}"),
            {"name": self.config.name, "index": self.index},
        )

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until a stop is requested; True if it was."""
        return self.stop_event.wait(timeout)

    def on_stop(self, callback: Callable[[], None]) -> None:
        """Register a callback run when the stop signal arrives."""
        self._callbacks.append(callback)

    def request_stop(self) -> None:
        """Deliver the single-shot stop event."""
        if self.stop_event.is_set():
            return
        self.stop_event.set()
        for callback in self._callbacks:
            try:
                callback()
            except Exception as e:
                self.logger.error("Stop callback failed: %s", e)


def async_worker(
    main: Callable[[InstanceContext], Awaitable[Any]],
    stop: StopHook | None = None,
) -> Worker:
    """Adapt an ``async def main(ctx)`` service loop to a cooperative Worker.

    Inside ``main``, ``await wait_stopped(ctx)`` resolves when the stop signal
    arrives.
    """

    def start(ctx: InstanceContext) -> None:
        asyncio.run(_run_async(main, ctx))

    return Worker(start=start, stop=stop, cooperative=True)


async def _run_async(main: Callable[[InstanceContext], Awaitable[Any]], ctx: InstanceContext) -> None:
    loop = asyncio.get_running_loop()
    stopped = asyncio.Event()

    def _wake() -> None:
        loop.call_soon_threadsafe(stopped.set)

    ctx.on_stop(_wake)
    ctx._async_stopped = stopped
    if ctx.stopping:
        stopped.set()
    await main(ctx)


async def wait_stopped(ctx: InstanceContext) -> None:
    """Wait, inside an async_worker main, for the stop signal."""
    stopped = ctx._async_stopped
    if stopped is None:
        raise RuntimeError("wait_stopped() is only available inside an async_worker main")
    await stopped.wait()

"""Logging that degrades gracefully when called from a signal handler."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

FALLBACK_PREFIX = "log writing failed. can't be called from signal handler context"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Set while a SafeLoggerAdapter call is in progress so handler errors reach it.
_propagate_errors = False


def write_diagnostic(message: str) -> None:
    """Write one raw line to stderr, bypassing Python-level buffers and locks."""
    try:
        os.write(2, (message.rstrip("\n") + "\n").encode("utf-8", errors="replace"))
    except OSError:
        pass  # Nowhere left to report to


class StreamHandler(logging.StreamHandler):
    """StreamHandler whose write errors can be surfaced to the calling adapter.

    A signal handler that interrupts a write in progress on the same buffered
    stream makes the nested write fail with ``RuntimeError: reentrant call``.
    """

    def handleError(self, record: logging.LogRecord) -> None:
        if _propagate_errors:
            raise  # noqa: PLE0704 - called from inside emit()'s except block
        super().handleError(record)


class SafeLoggerAdapter(logging.LoggerAdapter):
    """Logger handle passed to worker hooks.

    Prefixes records with the daemon name and instance index. A record that
    cannot be written is replaced by a single diagnostic line on file
    descriptor 2 instead of propagating into the caller.
    """

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        return f"{self.extra['name']} ({self.extra['index']}) {msg}", kwargs

    def log(self, level: int, msg: Any, *args: Any, **kwargs: Any) -> None:
        global _propagate_errors
        previous = _propagate_errors
        _propagate_errors = True
        try:
            super().log(level, msg, *args, **kwargs)
        except Exception as e:
            write_diagnostic(f"{FALLBACK_PREFIX}: {e}")
        finally:
            _propagate_errors = previous


def setup_logging(level: str) -> None:
    """Route the root logger to stderr, which is the log target inside a daemon."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[StreamHandler(sys.stderr)],
        force=True,
    )

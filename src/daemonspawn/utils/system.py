"""System utility checks."""

from __future__ import annotations

import os
import signal


def supports_fork() -> bool:
    """Check if the platform can daemonize with fork/setsid."""
    return hasattr(os, "fork") and hasattr(os, "setsid")


def resolve_signal(value: str | int) -> int:
    """Turn 'TERM', 'SIGTERM', 'term' or '15' into a signal number."""
    if isinstance(value, int):
        return int(signal.Signals(value))
    text = str(value).strip()
    if text.isdigit():
        try:
            return int(signal.Signals(int(text)))
        except ValueError:
            raise ValueError(f"Unknown signal number: {text}") from None
    name = text.upper()
    if not name.startswith("SIG"):
        name = "SIG" + name
    try:
        return int(signal.Signals[name])
    except KeyError:
        raise ValueError(f"Unknown signal: {value}") from None


def signal_name(signum: int) -> str:
    """Short signal name without the SIG prefix (15 -> 'TERM')."""
    return signal.Signals(signum).name[3:]


"""Runtime module for launching, waiting on and relaying signals to a child.

This module provides isolated process execution (the child never shares the
supervisor's process group), exit status normalization, and the signal
relay that forwards the supervisor's signals to the child.
"""

from __future__ import annotations

from .process import ChildProcess, ProcessState, launch, normalize_returncode, wait
from .relay import (
    SignalRelay,
    catchable_signals,
    check_context,
    relay_signals,
    signal_name,
)

__all__ = [
    "ChildProcess",
    "ProcessState",
    "SignalRelay",
    "catchable_signals",
    "check_context",
    "launch",
    "normalize_returncode",
    "relay_signals",
    "signal_name",
    "wait",
]

"""sigrelay exception classes."""

from __future__ import annotations

__all__ = [
    "SigrelayError",
    "InvalidArgumentsError",
    "LaunchError",
    "WaitError",
    "RelayError",
]


class SigrelayError(Exception):
    """Base exception for sigrelay."""
    pass


class InvalidArgumentsError(SigrelayError):
    """No program token was supplied."""
    pass


class LaunchError(SigrelayError):
    """The child process could not be started."""
    pass


class WaitError(SigrelayError):
    """Waiting for the child failed independently of its exit status.

    Attributes:
        exit_code: Always 0. It is a sentinel, not a claim of success.
    """

    def __init__(self, message: str, exit_code: int = 0) -> None:
        self.exit_code = exit_code
        super().__init__(message)


class RelayError(SigrelayError):
    """The signal relay cannot run in the current context."""
    pass

"""Child process handle: launching and waiting.

sigrelay runtime module

This module provides:
- ChildProcess, the handle for the single supervised child
- launch(): start the child outside the parent's process group
- wait(): block until the child terminates and normalize its exit status

Key design points:
- POSIX: start_new_session=True so terminal-generated signals (Ctrl-C,
  Ctrl-\\) reach only the supervisor, which forwards them explicitly
- Windows: CREATE_NEW_PROCESS_GROUP for the same isolation
- Lifecycle is UNSTARTED -> RUNNING -> TERMINATED; only wait() moves a
  handle to TERMINATED, and it can do so exactly once
"""

from __future__ import annotations

import asyncio
import logging
import os
import subprocess
import sys
from collections.abc import Iterable, Mapping
from enum import Enum
from pathlib import Path
from typing import IO, Any, Union

from ..config import EnvMode, parse_env_pairs
from ..errors import LaunchError, WaitError
from ..invocation import Invocation

__all__ = [
    "ChildProcess",
    "ProcessState",
    "launch",
    "normalize_returncode",
    "wait",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Anything asyncio.create_subprocess_exec accepts for a standard stream
StreamBinding = Union[None, int, IO[Any]]
EnvBinding = Union[None, Mapping[str, str], Iterable[str]]

# Exit status reported for a child killed by signal N is 128 + N
SIGNAL_EXIT_BASE = 128


class ProcessState(Enum):
    """Lifecycle state of a ChildProcess."""

    UNSTARTED = "unstarted"
    RUNNING = "running"
    TERMINATED = "terminated"


def normalize_returncode(returncode: int) -> int:
    """Map an asyncio returncode onto a single non-negative exit code.

    asyncio reports death by signal N as -N; that becomes 128 + N, the
    value a POSIX shell would report.
    """
    if returncode < 0:
        return SIGNAL_EXIT_BASE - returncode
    return returncode


class _PreLaunch:
    """Attribute that can only be changed while the handle is UNSTARTED."""

    def __set_name__(self, owner: type, name: str) -> None:
        self._public = name
        self._private = f"_{name}"

    def __get__(self, obj: Any, objtype: type | None = None) -> Any:
        if obj is None:
            return self
        return getattr(obj, self._private)

    def __set__(self, obj: Any, value: Any) -> None:
        if obj._state is not ProcessState.UNSTARTED:
            raise LaunchError(f"cannot change {self._public} after launch")
        setattr(obj, self._private, value)


class ChildProcess:
    """Handle for the supervised child process.

    Stream bindings, environment and working directory are set on the
    unstarted handle; start() (or launch()) creates the OS process. The
    relay and the waiter both read the handle, neither changes its pid.

    Example:
        child = ChildProcess(build_invocation(["/bin/ls", "-lah"]))
        child.env = ["JANE=DOE"]
        await child.start()
        exit_code = await child.wait()

    Attributes:
        stdin: stdin binding (None = inherit, fd, file object, PIPE, DEVNULL)
        stdout: stdout binding
        stderr: stderr binding
        env: Environment overrides (mapping or KEY=VALUE strings, None = inherit)
        env_mode: How env combines with the parent environment
        cwd: Working directory (None = inherit)
    """

    stdin = _PreLaunch()
    stdout = _PreLaunch()
    stderr = _PreLaunch()
    env = _PreLaunch()
    env_mode = _PreLaunch()
    cwd = _PreLaunch()

    def __init__(
        self,
        invocation: Invocation,
        *,
        stdin: StreamBinding = None,
        stdout: StreamBinding = None,
        stderr: StreamBinding = None,
        env: EnvBinding = None,
        env_mode: EnvMode = EnvMode.REPLACE,
        cwd: str | Path | None = None,
    ) -> None:
        self._state = ProcessState.UNSTARTED
        self._invocation = invocation
        self.stdin = stdin
        self.stdout = stdout
        self.stderr = stderr
        self.env = env
        self.env_mode = env_mode
        self.cwd = cwd

        self._process: asyncio.subprocess.Process | None = None
        self._waiting = False
        self._returncode: int | None = None

    @property
    def invocation(self) -> Invocation:
        return self._invocation

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> int | None:
        """Normalized exit code, set once wait() has returned."""
        return self._returncode

    @property
    def stdin_pipe(self) -> asyncio.StreamWriter | None:
        return self._process.stdin if self._process is not None else None

    @property
    def stdout_pipe(self) -> asyncio.StreamReader | None:
        return self._process.stdout if self._process is not None else None

    @property
    def stderr_pipe(self) -> asyncio.StreamReader | None:
        return self._process.stderr if self._process is not None else None

    def __repr__(self) -> str:
        return (
            f"ChildProcess(program={self._invocation.program!r}, "
            f"pid={self.pid}, "
            f"state={self._state.value}, "
            f"returncode={self._returncode})"
        )

    async def start(self) -> ChildProcess:
        """Start the OS process.

        Returns:
            self, now RUNNING

        Raises:
            LaunchError: If the handle was already started or the OS refused
                to start the program (missing, not executable, ...)
        """
        if self._state is not ProcessState.UNSTARTED:
            raise LaunchError(f"process already started: {self!r}")

        kwargs = self._build_subprocess_kwargs()

        try:
            process = await asyncio.create_subprocess_exec(
                *self._invocation.argv,
                stdin=self._stdin,
                stdout=self._stdout,
                stderr=self._stderr,
                **kwargs,
            )
        except (OSError, ValueError) as e:
            raise LaunchError(f"cmd.Start {self._invocation.program!r}: {e}") from e

        self._process = process
        self._state = ProcessState.RUNNING

        logger.debug(
            f"Started subprocess pid={process.pid} "
            f"argv={self._invocation.argv}"
        )
        return self

    def send_signal(self, signum: int) -> None:
        """Deliver signum to the child.

        Raises:
            ProcessLookupError: If the child is not (or no longer) running
            OSError: If the kernel refused delivery
        """
        process = self._process
        if (
            self._state is not ProcessState.RUNNING
            or process is None
            or process.returncode is not None
        ):
            raise ProcessLookupError(f"process is not running: {self!r}")

        # os.kill rather than Process.send_signal: the latter silently
        # ignores an exited child.
        os.kill(process.pid, signum)

    async def wait(self) -> int:
        """Block until the child terminates.

        Must be called exactly once per started handle.

        Returns:
            The exit code, or 128 + N when the child was killed by signal N

        Raises:
            WaitError: If the handle was never started, is already being or
                has already been waited for, or the wait itself failed.
                exit_code on the error is 0.
        """
        process = self._process
        if self._state is ProcessState.UNSTARTED or process is None:
            raise WaitError("process was never started")
        if self._state is ProcessState.TERMINATED or self._waiting:
            raise WaitError(f"process was already waited for: {self!r}")

        self._waiting = True
        try:
            returncode = await process.wait()
        except OSError as e:
            raise WaitError(f"cmd.Wait pid={process.pid}: {e}") from e
        finally:
            self._waiting = False

        self._returncode = normalize_returncode(returncode)
        self._state = ProcessState.TERMINATED

        logger.debug(
            f"Subprocess completed pid={process.pid} "
            f"returncode={returncode} exit_code={self._returncode}"
        )
        return self._returncode

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs.

        Returns:
            Dict of kwargs for asyncio.create_subprocess_exec
        """
        kwargs: dict[str, Any] = {}

        if self._cwd is not None:
            kwargs["cwd"] = self._cwd

        # Environment
        if self._env is not None:
            overrides = parse_env_pairs(self._env)
            if self._env_mode is EnvMode.EXTEND:
                kwargs["env"] = {**os.environ, **overrides}
            else:
                kwargs["env"] = overrides

        # Platform-specific isolation
        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # POSIX: new session, so the child never shares our process group
            kwargs["start_new_session"] = True

        return kwargs


async def launch(
    target: Invocation | ChildProcess,
    *,
    stdin: StreamBinding = None,
    stdout: StreamBinding = None,
    stderr: StreamBinding = None,
    env: EnvBinding = None,
    env_mode: EnvMode = EnvMode.REPLACE,
) -> ChildProcess:
    """Start an invocation, or an unstarted handle the caller prepared.

    When target is a ChildProcess its own bindings are used and the
    keyword arguments are ignored.

    Raises:
        LaunchError: If starting fails
    """
    if isinstance(target, ChildProcess):
        child = target
    else:
        child = ChildProcess(
            target,
            stdin=stdin,
            stdout=stdout,
            stderr=stderr,
            env=env,
            env_mode=env_mode,
        )
    return await child.start()


async def wait(process: ChildProcess) -> int:
    """Wait for process to terminate and return its normalized exit code.

    Raises:
        WaitError: See ChildProcess.wait()
    """
    return await process.wait()

"""ChildProcess unit tests.

Test coverage:
- Launching (success, missing / non-executable programs, double start)
- Process isolation (own process group, own session)
- Environment handling (inherit, replace, extend)
- Waiting (exit codes, death by signal, double wait)
- Signal delivery guards
"""

from __future__ import annotations

import asyncio
import json
import os
import signal
from pathlib import Path

import pytest

from sigrelay.config import EnvMode
from sigrelay.errors import LaunchError, WaitError
from sigrelay.invocation import build_invocation
from sigrelay.runtime.process import (
    IS_WINDOWS,
    ChildProcess,
    ProcessState,
    launch,
    normalize_returncode,
    wait,
)

pytestmark = pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific tests")


def _child(*tokens: str, **kwargs) -> ChildProcess:
    return ChildProcess(build_invocation(list(tokens)), **kwargs)


async def _run_and_read(child: ChildProcess) -> str:
    """Start child with stdout piped, read everything, then wait."""
    child.stdout = asyncio.subprocess.PIPE
    await child.start()
    assert child.stdout_pipe is not None
    output = await child.stdout_pipe.read()
    await child.wait()
    return output.decode()


# =============================================================================
# Launch Tests
# =============================================================================


class TestLaunch:
    """Test starting the child process."""

    @pytest.mark.asyncio
    @pytest.mark.skipif(not Path("/bin/ls").exists(), reason="/bin/ls not found")
    async def test_ls(self):
        """Launching /bin/ls -lah succeeds and exits with 0."""
        child = await launch(
            build_invocation(["/bin/ls", "-lah"]),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )

        assert child.state is ProcessState.RUNNING
        assert isinstance(child.pid, int) and child.pid > 0

        assert await wait(child) == 0
        assert child.state is ProcessState.TERMINATED
        assert child.returncode == 0

    @pytest.mark.asyncio
    async def test_launch_prepared_handle(self, python: str):
        """launch() accepts an unstarted handle with its own bindings."""
        child = _child(python, "-c", "print('hi')", stdout=asyncio.subprocess.PIPE)

        started = await launch(child)

        assert started is child
        assert child.stdout_pipe is not None
        assert (await child.stdout_pipe.read()).strip() == b"hi"
        assert await child.wait() == 0

    @pytest.mark.asyncio
    async def test_dev_null_fails(self):
        """/dev/null is not executable."""
        child = _child("/dev/null")

        with pytest.raises(LaunchError) as exc_info:
            await child.start()

        assert isinstance(exc_info.value.__cause__, OSError)
        assert child.state is ProcessState.UNSTARTED
        assert child.pid is None

    @pytest.mark.asyncio
    async def test_non_executable_file_fails(self, tmp_path: Path):
        """A regular file without the executable bit cannot be launched."""
        script = tmp_path / "script.sh"
        script.write_text("#!/bin/sh\nexit 0\n")
        script.chmod(0o644)

        with pytest.raises(LaunchError) as exc_info:
            await launch(build_invocation([str(script)]))

        assert isinstance(exc_info.value.__cause__, PermissionError)

    @pytest.mark.asyncio
    async def test_missing_program_fails(self, tmp_path: Path):
        missing = tmp_path / "does-not-exist"

        with pytest.raises(LaunchError) as exc_info:
            await launch(build_invocation([str(missing)]))

        assert isinstance(exc_info.value.__cause__, FileNotFoundError)

    @pytest.mark.asyncio
    async def test_start_twice_fails(self, python: str):
        """A handle produces at most one OS process."""
        child = await launch(build_invocation([python, "-c", "pass"]))
        try:
            with pytest.raises(LaunchError, match="already started"):
                await child.start()
        finally:
            await child.wait()

    @pytest.mark.asyncio
    async def test_bindings_frozen_after_launch(self, python: str):
        """Stream and environment bindings cannot change once running."""
        child = await launch(build_invocation([python, "-c", "pass"]))
        try:
            with pytest.raises(LaunchError):
                child.stdout = asyncio.subprocess.DEVNULL
            with pytest.raises(LaunchError):
                child.env = {"A": "1"}
        finally:
            await child.wait()

    def test_bindings_settable_before_launch(self):
        child = _child("/bin/true")
        child.stdin = asyncio.subprocess.DEVNULL
        child.env = ["JANE=DOE"]
        child.env_mode = EnvMode.EXTEND

        assert child.stdin == asyncio.subprocess.DEVNULL
        assert child.env == ["JANE=DOE"]
        assert child.env_mode is EnvMode.EXTEND
        assert child.state is ProcessState.UNSTARTED


# =============================================================================
# Process Isolation Tests
# =============================================================================


class TestProcessIsolation:
    """Test that the child is kept out of the parent's process group."""

    @pytest.mark.asyncio
    async def test_own_process_group(self, python: str):
        """The child leads a process group that is not ours."""
        child = _child(python, "-c", "import os; print(os.getpid(), os.getpgid(0))")

        output = await _run_and_read(child)

        pid, pgid = (int(part) for part in output.split())
        assert pgid == pid
        assert pgid != os.getpgid(0)

    @pytest.mark.asyncio
    async def test_new_session(self, python: str):
        child = _child(python, "-c", "import os; print(os.getsid(0))")

        output = await _run_and_read(child)

        assert int(output) != os.getsid(0)


# =============================================================================
# Environment Tests
# =============================================================================


_DUMP_ENV = "import json, os; print(json.dumps(dict(os.environ)))"


class TestEnvironment:
    """Test child environment handling."""

    @pytest.fixture(autouse=True)
    def marker(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RELAY_TEST_MARKER", "parent")
        monkeypatch.setenv("RELAY_TEST_INHERITED", "yes")

    @pytest.mark.asyncio
    async def test_inherit_by_default(self, python: str):
        env = json.loads(await _run_and_read(_child(python, "-c", _DUMP_ENV)))
        assert env["RELAY_TEST_MARKER"] == "parent"

    @pytest.mark.asyncio
    async def test_replace(self, python: str):
        """Overrides fully determine the child environment."""
        child = _child(python, "-c", _DUMP_ENV, env=["JANE=DOE"])

        env = json.loads(await _run_and_read(child))

        assert env["JANE"] == "DOE"
        assert "RELAY_TEST_MARKER" not in env

    @pytest.mark.asyncio
    async def test_extend(self, python: str):
        """Overrides are layered on top of the parent environment."""
        child = _child(
            python, "-c", _DUMP_ENV,
            env={"JANE": "DOE", "RELAY_TEST_MARKER": "child"},
            env_mode=EnvMode.EXTEND,
        )

        env = json.loads(await _run_and_read(child))

        assert env["JANE"] == "DOE"
        assert env["RELAY_TEST_MARKER"] == "child"
        assert env["RELAY_TEST_INHERITED"] == "yes"


class TestWorkingDirectory:
    """Test the child's working directory binding."""

    @pytest.mark.asyncio
    async def test_inherit_by_default(self, python: str):
        output = await _run_and_read(_child(python, "-c", "import os; print(os.getcwd())"))
        assert Path(output.strip()).resolve() == Path.cwd().resolve()

    @pytest.mark.asyncio
    async def test_cwd(self, python: str, tmp_path: Path):
        child = _child(python, "-c", "import os; print(os.getcwd())", cwd=tmp_path)

        output = await _run_and_read(child)

        assert Path(output.strip()).resolve() == tmp_path.resolve()

    @pytest.mark.asyncio
    async def test_missing_cwd_fails(self, python: str, tmp_path: Path):
        child = _child(python, "-c", "pass", cwd=tmp_path / "missing")

        with pytest.raises(LaunchError) as exc_info:
            await child.start()

        assert isinstance(exc_info.value.__cause__, FileNotFoundError)
        assert child.state is ProcessState.UNSTARTED


# =============================================================================
# Wait Tests
# =============================================================================


class TestWait:
    """Test waiting and exit code normalization."""

    @pytest.mark.asyncio
    async def test_exit_code(self, python: str):
        child = await launch(build_invocation([python, "-c", "import sys; sys.exit(3)"]))
        assert await child.wait() == 3

    @pytest.mark.asyncio
    async def test_killed_by_signal(self, python: str):
        """Death by signal N is reported as 128 + N, not as an error."""
        child = await launch(build_invocation(
            [python, "-c", "import os, signal; os.kill(os.getpid(), signal.SIGTERM)"]
        ))

        assert await child.wait() == 128 + signal.SIGTERM

    @pytest.mark.asyncio
    async def test_double_wait_rejected(self, python: str):
        """The second wait is refused with the 0 sentinel."""
        child = await launch(build_invocation([python, "-c", "import sys; sys.exit(5)"]))
        assert await child.wait() == 5

        with pytest.raises(WaitError) as exc_info:
            await child.wait()

        assert exc_info.value.exit_code == 0
        assert child.returncode == 5

    @pytest.mark.asyncio
    async def test_concurrent_wait_rejected(self, python: str):
        child = await launch(build_invocation([python, "-c", "import time; time.sleep(0.2)"]))
        first = asyncio.create_task(child.wait())
        await asyncio.sleep(0)

        with pytest.raises(WaitError):
            await child.wait()

        assert await first == 0

    @pytest.mark.asyncio
    async def test_wait_never_started(self):
        with pytest.raises(WaitError, match="never started") as exc_info:
            await wait(_child("/bin/true"))

        assert exc_info.value.exit_code == 0


@pytest.mark.parametrize(
    ("returncode", "expected"),
    [(0, 0), (1, 1), (255, 255), (-2, 130), (-9, 137), (-15, 143)],
)
def test_normalize_returncode(returncode: int, expected: int):
    assert normalize_returncode(returncode) == expected


# =============================================================================
# Signal Delivery Tests
# =============================================================================


class TestSendSignal:
    """Test the delivery guard used by the relay."""

    def test_unstarted(self):
        with pytest.raises(ProcessLookupError):
            _child("/bin/true").send_signal(signal.SIGTERM)

    @pytest.mark.asyncio
    async def test_after_wait(self, python: str):
        child = await launch(build_invocation([python, "-c", "pass"]))
        await child.wait()

        with pytest.raises(ProcessLookupError):
            child.send_signal(signal.SIGTERM)

    @pytest.mark.asyncio
    async def test_delivers_to_running_child(self, python: str):
        child = await launch(build_invocation([python, "-c", "import time; time.sleep(30)"]))

        child.send_signal(signal.SIGKILL)

        assert await asyncio.wait_for(child.wait(), timeout=10) == 128 + signal.SIGKILL


def test_repr():
    text = repr(_child("/bin/ls", "-l"))
    assert "program='/bin/ls'" in text
    assert "state=unstarted" in text

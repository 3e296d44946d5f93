"""Signal relay.

Forwards every OS signal the supervisor receives to the child process until
the caller cancels the relay or delivery fails:

- Subscription covers every catchable signal, not a fixed subset
- Signals are buffered in a bounded anyio memory stream; overflow drops
- Each received signal is forwarded unchanged before cancellation is
  checked again
- A failed delivery means the child is gone; the relay stops quietly

Signal handlers are installed with loop.add_signal_handler, so the relay
must run on the main thread's event loop.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import threading
from typing import Any, Optional

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from ..config import MIN_SIGNAL_BUFFER, get_config
from ..errors import RelayError
from .process import ChildProcess

__all__ = [
    "SignalRelay",
    "catchable_signals",
    "check_context",
    "relay_signals",
    "signal_name",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

# Signals no process is allowed to handle
UNCATCHABLE_SIGNALS = frozenset(
    int(getattr(signal, name)) for name in ("SIGKILL", "SIGSTOP") if hasattr(signal, name)
)

# Synchronous faults raised by the supervisor itself. A Python-level handler
# returns to the faulting instruction, which then faults again forever, so
# these keep their default action and are never relayed.
FAULT_SIGNALS = frozenset(
    int(getattr(signal, name))
    for name in ("SIGSEGV", "SIGBUS", "SIGFPE", "SIGILL")
    if hasattr(signal, name)
)


def catchable_signals() -> frozenset[int]:
    """Every signal number this platform can deliver to a handler.

    Excludes SIGKILL/SIGSTOP and the synchronous fault signals.
    """
    excluded = UNCATCHABLE_SIGNALS | FAULT_SIGNALS
    return frozenset(
        int(signum) for signum in signal.valid_signals()
        if int(signum) not in excluded
    )


def check_context() -> None:
    """Ensure signal handlers can be installed from the current thread.

    Raises:
        RelayError: On Windows or off the main thread
    """
    if IS_WINDOWS:
        raise RelayError("signal relay requires a POSIX platform")
    if threading.current_thread() is not threading.main_thread():
        raise RelayError("signal relay must run on the main thread")


def signal_name(signum: int) -> str:
    """Human-readable name, e.g. SIGWINCH."""
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"


class SignalRelay:
    """Relay OS signals to a single child process.

    Example:
        ```python
        child = await launch(build_invocation(["./trapper.sh"]))
        cancel = asyncio.Event()
        relay_task = asyncio.create_task(SignalRelay(child, cancel).run())

        exit_code = await child.wait()
        cancel.set()
        await relay_task
        ```

    Attributes:
        process: The child that receives forwarded signals
        cancel: One-shot event; once set the relay stops at its next wait
        signals: Signal numbers to subscribe to
        buffer_size: Pending signals kept while a forward is in progress
        started: Set once OS subscription is in place
    """

    def __init__(
        self,
        process: ChildProcess,
        cancel: asyncio.Event,
        *,
        signals: Optional[frozenset[int]] = None,
        buffer_size: Optional[int] = None,
    ) -> None:
        """Create a relay.

        Args:
            process: The child that receives forwarded signals
            cancel: Cancellation event owned by the caller
            signals: Signals to relay (default: catchable_signals())
            buffer_size: Buffer size (default: from configuration)

        Raises:
            ValueError: If buffer_size is below 2
        """
        self.process = process
        self.cancel = cancel
        self.signals = frozenset(signals) if signals is not None else catchable_signals()
        self.buffer_size = (
            buffer_size if buffer_size is not None else get_config().signal_buffer
        )
        if self.buffer_size < MIN_SIGNAL_BUFFER:
            raise ValueError(
                f"buffer_size must be at least {MIN_SIGNAL_BUFFER}, got {self.buffer_size}"
            )

        self.started = asyncio.Event()

        # Internal state
        self._ran: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._send: Optional[MemoryObjectSendStream[int]] = None
        self._subscribed: list[int] = []
        self._original_handlers: dict[int, Any] = {}

    @property
    def subscribed(self) -> frozenset[int]:
        """Signals currently routed into the relay."""
        return frozenset(self._subscribed)

    async def run(self) -> None:
        """Forward signals until cancelled or until delivery fails.

        Raises:
            RelayError: If called twice, off the main thread, or on Windows
        """
        if self._ran:
            raise RelayError("signal relay can only run once")
        self._ran = True

        if self.cancel.is_set():
            logger.debug("Relay cancelled before start, nothing subscribed")
            return

        check_context()

        send, receive = anyio.create_memory_object_stream(max_buffer_size=self.buffer_size)
        self._send = send
        self._loop = asyncio.get_running_loop()

        try:
            self._subscribe()
            self.started.set()

            async with anyio.create_task_group() as tg:
                tg.start_soon(self._watch_cancel, tg.cancel_scope)
                await self._forward(receive)
                tg.cancel_scope.cancel()
        finally:
            self._unsubscribe()
            self._send = None
            send.close()
            receive.close()
            logger.debug(f"Relay stopped pid={self.process.pid}")

    async def _watch_cancel(self, scope: anyio.CancelScope) -> None:
        await self.cancel.wait()
        logger.debug("Relay cancellation requested")
        scope.cancel()

    async def _forward(self, receive: MemoryObjectReceiveStream[int]) -> None:
        async for signum in receive:
            try:
                self.process.send_signal(signum)
            except OSError as e:
                # Expected once the child has exited
                logger.debug(
                    f"Forwarding {signal_name(signum)} to pid={self.process.pid} "
                    f"failed, child finished: {e}"
                )
                return
            logger.debug(f"Forwarded {signal_name(signum)} to pid={self.process.pid}")

    def _deliver(self, signum: int) -> None:
        """Signal handler: queue signum for forwarding."""
        send = self._send
        if send is None:
            return
        try:
            send.send_nowait(signum)
        except anyio.WouldBlock:
            logger.warning(
                f"Signal buffer full ({self.buffer_size}), dropping {signal_name(signum)}"
            )
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            logger.debug(f"Relay shutting down, {signal_name(signum)} not forwarded")

    def _subscribe(self) -> None:
        assert self._loop is not None
        for signum in sorted(self.signals):
            try:
                original = signal.getsignal(signum)
                self._loop.add_signal_handler(signum, self._deliver, signum)
            except (RuntimeError, ValueError, OSError) as e:
                logger.debug(f"Cannot subscribe to {signal_name(signum)}: {e}")
                continue
            self._original_handlers[signum] = original
            self._subscribed.append(signum)

        logger.debug(
            f"Relay subscribed to {len(self._subscribed)} signal(s) "
            f"for pid={self.process.pid}"
        )

    def _unsubscribe(self) -> None:
        """Remove relay handlers and restore the ones saved at subscription.

        signal.getsignal() returns None for handlers installed outside
        Python; those cannot be restored and are left at SIG_DFL.
        """
        if self._loop is None:
            return

        for signum in self._subscribed:
            try:
                self._loop.remove_signal_handler(signum)
                # remove_signal_handler resets to SIG_DFL; put back what was
                # there before (e.g. Python's SIG_IGN for SIGPIPE)
                original = self._original_handlers.get(signum)
                if original is not None:
                    signal.signal(signum, original)
                else:
                    logger.debug(
                        f"Original handler for {signal_name(signum)} was not "
                        f"installed from Python, left at SIG_DFL"
                    )
            except Exception as e:
                logger.debug(f"Error removing handler for {signal_name(signum)}: {e}")

        self._subscribed.clear()
        self._original_handlers.clear()


async def relay_signals(
    process: ChildProcess,
    cancel: asyncio.Event,
    **kwargs: Any,
) -> None:
    """Run a SignalRelay for process until cancel is set or delivery fails."""
    await SignalRelay(process, cancel, **kwargs).run()

# src/tidecopy/signals.py
"""
Run-level cancellation driven by OS signals.

`GracefulShutdown` turns SIGINT and SIGTERM into the `asyncio.Event` that the
planner and executor watch: once it is set, no new task is scheduled and
pending retries are abandoned, while in-flight copies are allowed to finish.
"""

import asyncio
import logging
import os
import signal
from types import FrameType
from typing import Any, Callable, Dict, Optional, Tuple

logger: logging.Logger = logging.getLogger(__name__)

_SignalHandler = Callable[[int, Optional[FrameType]], None]

# Returns the (in-flight, queued) task counts of the running transfer.
PendingCounter = Callable[[], Tuple[int, int]]

HANDLED_SIGNALS: Tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class GracefulShutdown:
    """
    An async context manager that maps POSIX signals onto a cancellation event.

    The first received signal sets the event and reports how much of the
    transfer is still running. A second signal forces an immediate exit.
    Previous signal handlers are restored on exit.

    Attributes:
        pending (PendingCounter, optional): Queried when a signal arrives, so
            the warning can say how many copies are finishing and how many
            will never start. May be attached after entering the context.
        received (str, optional): Name of the signal that cancelled the run.
    """

    def __init__(self, pending: Optional[PendingCounter] = None) -> None:
        self.pending: Optional[PendingCounter] = pending
        self.received: Optional[str] = None
        self._event: asyncio.Event = asyncio.Event()
        self._old_handlers: Dict[signal.Signals, _SignalHandler] = {}

    def _describe_pending(self) -> str:
        if self.pending is None:
            return "Finishing in-flight copies; no new objects will be started."
        in_flight, queued = self.pending()
        return (
            f"Finishing {in_flight} in-flight copy(ies); {queued} queued "
            "object(s) will not be started."
        )

    def handle(self, sig: int, loop: asyncio.AbstractEventLoop) -> None:
        """
        Reacts to one shutdown signal.

        Args:
            sig (int): The received signal number.
            loop (asyncio.AbstractEventLoop): The loop owning the event.
        """
        if self._event.is_set():
            logger.critical("Received second shutdown signal. Forcing exit.")
            os._exit(1)
        self.received = signal.Signals(sig).name
        logger.warning(
            f"Received {self.received}. {self._describe_pending()} "
            "Send the signal again to exit immediately."
        )
        loop.call_soon_threadsafe(self._event.set)

    async def __aenter__(self) -> asyncio.Event:
        """
        Registers signal handlers and returns the cancellation event.

        Returns:
            asyncio.Event: Set when a handled signal is received.
        """
        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()

        def _handler(sig: int, _: Optional[FrameType]) -> None:
            self.handle(sig, loop)

        for sig in HANDLED_SIGNALS:
            try:
                # signal.signal must be called from the main thread
                self._old_handlers[sig] = signal.signal(sig, _handler)
            except (ValueError, OSError) as e:
                logger.warning(f"Could not set handler for {sig.name}: {e}")

        return self._event

    async def __aexit__(self, *args: Any) -> None:
        """Restores original signal handlers."""
        for sig, handler in self._old_handlers.items():
            try:
                signal.signal(sig, handler)
            except (ValueError, OSError) as e:
                logger.warning(f"Could not restore handler for {sig.name}: {e}")
        self._old_handlers.clear()

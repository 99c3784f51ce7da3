# src/tidecopy/retry.py
"""Exponential-backoff retry shared by planning-time listing and the executor."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from tidecopy.config import RunConfig
from tidecopy.exceptions import Cancelled, TransientNetworkError

logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    """Only transient network errors are worth another attempt."""
    return isinstance(exc, TransientNetworkError)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attributes:
        max_attempts (int): Total attempts, including the first.
        base_delay_s (float): Delay before the first retry.
        max_delay_s (float): Cap on any single delay.
    """

    max_attempts: int = 5
    base_delay_s: float = 0.5
    max_delay_s: float = 30.0

    @classmethod
    def from_config(cls, config: RunConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay_s=config.backoff_base_s,
            max_delay_s=config.backoff_max_s,
        )

    def delay_for(self, attempt: int) -> float:
        """
        Backoff before the attempt after `attempt`.

        Args:
            attempt (int): The 1-based attempt that just failed.

        Returns:
            float: Seconds to wait.
        """
        return min(self.max_delay_s, self.base_delay_s * (2 ** (attempt - 1)))

    async def wait(
        self, attempt: int, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        """
        Sleeps for the backoff delay, waking early if cancellation is signaled.

        Raises:
            Cancelled: If `cancel_event` is set before or during the wait.
        """
        delay: float = self.delay_for(attempt)
        if cancel_event is None:
            if delay > 0:
                await asyncio.sleep(delay)
            return
        if cancel_event.is_set():
            raise Cancelled("Cancelled while waiting to retry.")
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return  # This is the normal path
        raise Cancelled("Cancelled while waiting to retry.")

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> T:
        """
        Runs `operation`, retrying transient failures with backoff.

        Args:
            operation (Callable[[], Awaitable[T]]): The operation to attempt.
            description (str): Used in log messages.
            cancel_event (asyncio.Event, optional): Aborts pending retries.

        Returns:
            T: The operation's result.

        Raises:
            TransientNetworkError: If every attempt failed transiently.
            Cancelled: If cancellation interrupted a backoff wait.
        """
        attempt: int = 1
        while True:
            try:
                return await operation()
            except TransientNetworkError as e:
                if attempt >= self.max_attempts:
                    raise
                logger.warning(
                    f"{description} failed (attempt {attempt}/{self.max_attempts}): {e}"
                )
                await self.wait(attempt, cancel_event)
                attempt += 1

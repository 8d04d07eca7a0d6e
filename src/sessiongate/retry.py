"""Retry helpers for optimistic-concurrency updates."""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from sessiongate.backends.base import ConflictError, ControlPlaneError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OperationCancelledError(Exception):
    """The operation was cancelled before it completed."""

    pass


class RetryExhaustedError(ControlPlaneError):
    """All retry attempts failed with a retriable error."""

    pass


@dataclass(frozen=True)
class Backoff:
    """Backoff schedule between attempts.

    Attributes:
        steps: Maximum number of attempts.
        duration: Initial delay in seconds.
        factor: Multiplier applied to the delay after each attempt.
        jitter: Random extra fraction of the delay added to each wait.
    """

    steps: int = 5
    duration: float = 0.01
    factor: float = 1.0
    jitter: float = 0.1

    def delays(self) -> list[float]:
        """Return the delays to wait between consecutive attempts."""
        result = []
        delay = self.duration
        for _ in range(self.steps - 1):
            result.append(delay * (1 + random.uniform(0, self.jitter)))
            delay *= self.factor
        return result


DEFAULT_BACKOFF = Backoff()


def retry_on_conflict(
    fn: Callable[[], T],
    cancel: threading.Event | None = None,
    backoff: Backoff = DEFAULT_BACKOFF,
    retriable: type[Exception] | tuple[type[Exception], ...] = ConflictError,
) -> T:
    """Call fn until it succeeds or fails with a non-retriable error.

    fn is expected to re-read the remote object on every call, so a retry
    operates on fresh state.

    Args:
        fn: Read-modify-write operation to run.
        cancel: Aborts the loop between attempts when set.
        backoff: Attempt count and delay schedule.
        retriable: Exception types that trigger another attempt.

    Returns:
        The result of the first successful call.

    Raises:
        OperationCancelledError: If cancel is set before an attempt.
        RetryExhaustedError: If every attempt raised a retriable error.
    """
    delays = backoff.delays()
    last_error: Exception | None = None

    for attempt in range(backoff.steps):
        if cancel is not None and cancel.is_set():
            raise OperationCancelledError("cancelled before attempt")
        try:
            return fn()
        except retriable as e:
            last_error = e
            logger.debug("attempt %d/%d conflicted: %s", attempt + 1, backoff.steps, e)

        if attempt < len(delays):
            if cancel is not None:
                if cancel.wait(delays[attempt]):
                    raise OperationCancelledError("cancelled during backoff")
            else:
                time.sleep(delays[attempt])

    raise RetryExhaustedError(
        f"gave up after {backoff.steps} attempts: {last_error}"
    ) from last_error

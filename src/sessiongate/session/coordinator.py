"""Remote change coordination for one application instance.

At most one phase flip is in flight per app. A request for the same phase
collapses onto the outstanding intent; a request for the opposite phase
cancels it and takes its place. Every intent carries a token drawn from a
monotonically increasing counter, so completions of superseded intents can
be told apart from the current one.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sessiongate.backends.base import Phase
from sessiongate.retry import OperationCancelledError

logger = logging.getLogger(__name__)

Applier = Callable[[threading.Event], Any]


class ChangeCancelledError(OperationCancelledError):
    """A phase flip was superseded by a request for the opposite phase."""

    pass


class ChangeState(str, Enum):
    """What the coordinator is currently doing."""

    IDLE = "idle"
    STARTING = "starting"
    STOPPING = "stopping"


@dataclass(frozen=True)
class ChangeHandle:
    """Handle on one phase-flip request.

    Attributes:
        token: Unique, increasing identifier of the intent.
        phase: Phase the intent drives the app to.
        future: Resolved with the apply result or error once done.
    """

    token: int
    phase: Phase
    future: Future = field(compare=False)


@dataclass
class _Intent:
    handle: ChangeHandle
    cancel: threading.Event


class RemoteChangeCoordinator:
    """Serializes start and stop requests for one app.

    Apply functions run on a short-lived background thread and receive the
    intent's cancel event, which they must check between remote calls.
    """

    def __init__(
        self,
        start: Applier,
        stop: Applier,
        on_done: Callable[[ChangeHandle], None] | None = None,
        name: str = "",
    ) -> None:
        """Initialize the coordinator.

        Args:
            start: Drives the app to Live; its return value resolves the future.
            stop: Drives the app to Rest.
            on_done: Called with the handle after each intent completes.
            name: Label used in logs and thread names.
        """
        self._appliers = {Phase.LIVE: start, Phase.REST: stop}
        self._on_done = on_done
        self._name = name
        self._tokens = itertools.count(1)
        self._lock = threading.Lock()
        self._intent: _Intent | None = None

    @property
    def state(self) -> tuple[ChangeState, int | None]:
        """Current state and the token of the outstanding intent, if any."""
        with self._lock:
            intent = self._intent
        if intent is None:
            return ChangeState.IDLE, None
        if intent.handle.phase is Phase.LIVE:
            return ChangeState.STARTING, intent.handle.token
        return ChangeState.STOPPING, intent.handle.token

    def request_start(self) -> ChangeHandle:
        """Request the app to go Live, collapsing with an outstanding start."""
        return self._request(Phase.LIVE)

    def request_stop(self) -> ChangeHandle:
        """Request the app to go to Rest, collapsing with an outstanding stop."""
        return self._request(Phase.REST)

    def _request(self, phase: Phase) -> ChangeHandle:
        with self._lock:
            current = self._intent
            if current is not None:
                if current.handle.phase is phase:
                    return current.handle
                logger.info(
                    "%s: cancelling %s request %d",
                    self._name, current.handle.phase.value, current.handle.token,
                )
                current.cancel.set()

            intent = _Intent(
                handle=ChangeHandle(next(self._tokens), phase, Future()),
                cancel=threading.Event(),
            )
            self._intent = intent

        thread = threading.Thread(
            target=self._commit,
            args=(intent,),
            name=f"change-{self._name}-{intent.handle.token}",
            daemon=True,
        )
        thread.start()
        return intent.handle

    def _commit(self, intent: _Intent) -> None:
        handle = intent.handle
        result: Any = None
        error: Exception | None = None

        try:
            result = self._appliers[handle.phase](intent.cancel)
        except OperationCancelledError as e:
            error = ChangeCancelledError(
                f"{self._name}: {handle.phase.value} request {handle.token} superseded"
            )
            error.__cause__ = e
        except Exception as e:
            logger.error(
                "%s: %s request %d failed: %s",
                self._name, handle.phase.value, handle.token, e,
            )
            error = e

        with self._lock:
            if self._intent is not None and self._intent.handle.token == handle.token:
                self._intent = None

        if error is None:
            handle.future.set_result(result)
        else:
            handle.future.set_exception(error)

        if self._on_done is not None:
            self._on_done(handle)

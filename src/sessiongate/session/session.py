"""Reference-counted lifecycle of one application instance."""

from __future__ import annotations

import concurrent.futures
import logging
import queue
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any

from sessiongate.backends.base import (
    AppFailedError,
    AppInstance,
    AppNotFoundError,
    ApplicationIdentity,
    CliApp,
    ControlPlane,
    Phase,
)
from sessiongate.retry import OperationCancelledError, retry_on_conflict
from sessiongate.session.coordinator import ChangeHandle, RemoteChangeCoordinator

logger = logging.getLogger(__name__)

# Seconds between checks of the caller's cancel event while waiting
WAIT_POLL_INTERVAL = 0.1


class SessionError(Exception):
    """Base exception for session errors."""

    pass


class OpenCancelledError(SessionError):
    """The caller went away while waiting for the app to start."""

    pass


class OpenTimeoutError(SessionError):
    """The app did not become ready in time."""

    pass


class SessionInvariantError(RuntimeError):
    """A session was closed more times than it was opened."""

    pass


def _check_cancel(cancel: threading.Event) -> None:
    if cancel.is_set():
        raise OperationCancelledError("cancelled")


def start_app(
    control_plane: ControlPlane,
    identity: ApplicationIdentity,
    cancel: threading.Event,
) -> AppInstance:
    """Set the app's target phase to Live and wait until it is Live.

    Args:
        control_plane: Client for CliApp objects.
        identity: App to start.
        cancel: Aborts the update or the wait when set.

    Returns:
        The ready instance.

    Raises:
        OperationCancelledError: If cancel was set first.
        AppFailedError: If the app is deleted or reports no pod.
        ControlPlaneError: If the update fails.
    """

    def flip() -> CliApp:
        _check_cancel(cancel)
        app = control_plane.get_app(identity)
        if app.target_phase == Phase.LIVE.value:
            return app
        _check_cancel(cancel)
        logger.info("Setting target phase of %s to Live", identity)
        return control_plane.replace_app(app.with_target_phase(Phase.LIVE))

    app = retry_on_conflict(flip, cancel)

    if app.phase != Phase.LIVE.value:
        logger.info("Waiting for %s to go Live", identity)
        try:
            for app in control_plane.watch_app(identity, cancel):
                if app.phase == Phase.LIVE.value:
                    break
            else:
                raise OperationCancelledError(f"stopped waiting for {identity}")
        except AppNotFoundError as e:
            raise AppFailedError(f"app {identity} was deleted") from e

    if not app.pod_name:
        raise AppFailedError(f"app {identity} is Live but reports no pod")

    return AppInstance(identity=identity, pod_name=app.pod_name, command=tuple(app.command))


def stop_app(
    control_plane: ControlPlane,
    identity: ApplicationIdentity,
    cancel: threading.Event,
) -> None:
    """Set the app's target phase to Rest.

    Args:
        control_plane: Client for CliApp objects.
        identity: App to stop.
        cancel: Aborts the update when set.
    """

    def flip() -> CliApp:
        _check_cancel(cancel)
        app = control_plane.get_app(identity)
        if app.target_phase == Phase.REST.value:
            return app
        _check_cancel(cancel)
        logger.info("Setting target phase of %s to Rest", identity)
        return control_plane.replace_app(app.with_target_phase(Phase.REST))

    retry_on_conflict(flip, cancel)


def _resolved(value: Any) -> Future:
    future: Future = Future()
    future.set_result(value)
    return future


@dataclass
class _Open:
    reply: Future


@dataclass
class _Close:
    reply: Future


@dataclass
class _ChangeDone:
    handle: ChangeHandle


_SHUTDOWN = object()


class Session:
    """Attach/detach bookkeeping for one application identity.

    A single worker thread owns the attach count, the cached instance and
    the coordinator requests. open() and close() post commands to its
    mailbox and then wait on the future the worker hands back, so the
    worker itself never blocks on remote calls.
    """

    def __init__(
        self,
        identity: ApplicationIdentity,
        control_plane: ControlPlane,
    ) -> None:
        self.identity = identity
        self._coordinator = RemoteChangeCoordinator(
            start=lambda cancel: start_app(control_plane, identity, cancel),
            stop=lambda cancel: stop_app(control_plane, identity, cancel),
            on_done=self._on_change_done,
            name=str(identity),
        )
        self._mailbox: queue.Queue[Any] = queue.Queue()
        self._active_count = 0
        self._instance: AppInstance | None = None
        self._last_token: int | None = None
        self._start: ChangeHandle | None = None
        self._worker = threading.Thread(
            target=self._run,
            name=f"session-{identity}",
            daemon=True,
        )
        self._worker.start()

    @property
    def active_count(self) -> int:
        """Number of clients currently attached."""
        return self._active_count

    @property
    def instance(self) -> AppInstance | None:
        """The cached ready instance, if any."""
        return self._instance

    @property
    def coordinator(self) -> RemoteChangeCoordinator:
        return self._coordinator

    def open(
        self,
        cancel: threading.Event | None = None,
        timeout: float | None = None,
    ) -> AppInstance:
        """Attach a client, starting the app if it is not running.

        Args:
            cancel: Stops waiting when set, e.g. on client disconnect.
            timeout: Seconds to wait for the app (None waits forever).

        Returns:
            The ready instance.

        Raises:
            OpenCancelledError: If cancel was set while waiting.
            OpenTimeoutError: If the app was not ready in time.
            ControlPlaneError: If the start request failed.
        """
        pending = self._post(_Open)
        deadline = time.monotonic() + timeout if timeout else None

        while not pending.done():
            concurrent.futures.wait([pending], timeout=WAIT_POLL_INTERVAL)
            if pending.done():
                break
            if cancel is not None and cancel.is_set():
                raise OpenCancelledError(f"gave up waiting for {self.identity}")
            if deadline is not None and time.monotonic() >= deadline:
                raise OpenTimeoutError(
                    f"{self.identity} not ready within {timeout} seconds"
                )

        return pending.result()

    def close(self) -> None:
        """Detach a client, stopping the app once the last one has left.

        Raises:
            SessionInvariantError: If no client is attached.
            ControlPlaneError: If the stop request failed.
        """
        self._post(_Close).result()

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop the worker thread. Outstanding remote changes keep running."""
        self._mailbox.put(_SHUTDOWN)
        self._worker.join(timeout)

    def _post(self, command: type[_Open] | type[_Close]) -> Future:
        reply: Future = Future()
        self._mailbox.put(command(reply))
        return reply.result()

    def _on_change_done(self, handle: ChangeHandle) -> None:
        self._mailbox.put(_ChangeDone(handle))

    def _run(self) -> None:
        while True:
            message = self._mailbox.get()
            if message is _SHUTDOWN:
                return
            if isinstance(message, _ChangeDone):
                self._handle_change_done(message.handle)
                continue
            try:
                if isinstance(message, _Open):
                    message.reply.set_result(self._handle_open())
                else:
                    message.reply.set_result(self._handle_close())
            except Exception as e:
                message.reply.set_exception(e)

    def _handle_open(self) -> Future:
        previous = self._active_count
        self._active_count += 1
        logger.info("Client attached to %s (%d active)", self.identity, self._active_count)

        # The start may have finished before its completion reached the mailbox
        if previous > 0 and self._instance is None and self._start is not None:
            self._cache_instance(self._start)
        # The instance is unset while a stop is in flight or after a failed start
        if previous > 0 and self._instance is not None:
            return _resolved(self._instance)

        handle = self._coordinator.request_start()
        self._last_token = handle.token
        self._start = handle
        return handle.future

    def _handle_close(self) -> Future:
        if self._active_count == 0:
            raise SessionInvariantError(
                f"session {self.identity} closed more times than opened"
            )

        self._active_count -= 1
        logger.info("Client detached from %s (%d active)", self.identity, self._active_count)
        if self._active_count > 0:
            return _resolved(None)

        self._instance = None
        self._start = None
        handle = self._coordinator.request_stop()
        self._last_token = handle.token
        return handle.future

    def _handle_change_done(self, handle: ChangeHandle) -> None:
        if handle.phase is Phase.LIVE and self._active_count > 0 and self._instance is None:
            self._cache_instance(handle)

    def _cache_instance(self, handle: ChangeHandle) -> None:
        if handle.token != self._last_token or not handle.future.done():
            return
        if handle.future.exception() is not None:
            return

        self._instance = handle.future.result()
        logger.info("%s is Live on Pod %s", self.identity, self._instance.pod_name)

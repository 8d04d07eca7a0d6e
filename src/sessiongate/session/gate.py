"""The AppGate servicer: one OpenApp stream per attached client."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor

import grpc

from sessiongate.backends.base import (
    AppInstance,
    ApplicationIdentity,
    ControlPlane,
    ControlPlaneError,
    ExecExitError,
    PodExec,
)
from sessiongate.protocol import AppRequest, AppResponse
from sessiongate.retry import OperationCancelledError
from sessiongate.session.io import ProtocolError, TerminalBridge
from sessiongate.session.session import Session, SessionError

logger = logging.getLogger(__name__)

# Root of the app context filesystem inside the app container
APP_ROOT = "/app-root"


def validate_first_request(request: AppRequest) -> str | None:
    """Return why the first request of a stream is invalid, or None."""
    if request.app is None or not request.app.name:
        return "App.Name is required in the first request."
    if not request.app.namespace:
        return "App.Namespace is required in the first request."
    if not request.command:
        return "Command is required in the first request."
    if request.terminal_size is None:
        return "TerminalSize is required in the first request."
    return None


def build_command(instance: AppInstance, command: list[str]) -> list[str]:
    """Prefix the per-attach command with the app's base command.

    Apps without a base command run in the app context root filesystem.
    """
    base = list(instance.command) or ["chroot", APP_ROOT]
    return base + list(command)


class SessionGate:
    """Serves OpenApp and owns the process-wide session table."""

    def __init__(
        self,
        control_plane: ControlPlane,
        pod_exec: PodExec,
        open_timeout: float | None = None,
        max_streams: int | None = None,
    ) -> None:
        """Initialize the gate.

        Args:
            control_plane: Client for CliApp objects.
            pod_exec: Runs commands in app pods.
            open_timeout: Seconds to wait for an app to start (None: no limit).
            max_streams: Exec streams that may run at once.
        """
        self._control_plane = control_plane
        self._pod_exec = pod_exec
        self._open_timeout = open_timeout
        self._sessions: dict[ApplicationIdentity, Session] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=max_streams, thread_name_prefix="exec"
        )

    def session_for(self, identity: ApplicationIdentity) -> Session:
        """Get or create the session of an app."""
        with self._lock:
            session = self._sessions.get(identity)
            if session is None:
                session = Session(identity, self._control_plane)
                self._sessions[identity] = session
            return session

    def sessions(self) -> dict[ApplicationIdentity, Session]:
        with self._lock:
            return dict(self._sessions)

    def shutdown(self) -> None:
        """Stop session workers and the exec pool."""
        for session in self.sessions().values():
            session.shutdown(timeout=1)
        self._executor.shutdown(wait=False, cancel_futures=True)

    def OpenApp(
        self,
        request_iterator: Iterator[AppRequest],
        context: grpc.ServicerContext,
    ) -> Iterator[AppResponse]:
        try:
            request = next(request_iterator, None)
        except grpc.RpcError as e:
            logger.error("can't receive data from client: %s", e)
            context.abort(grpc.StatusCode.UNAVAILABLE, str(e))
        if request is None:
            context.abort(
                grpc.StatusCode.UNAVAILABLE,
                "stream closed before the first request",
            )

        reason = validate_first_request(request)
        if reason is not None:
            context.abort(grpc.StatusCode.INVALID_ARGUMENT, reason)

        cancel = threading.Event()
        context.add_callback(cancel.set)

        session = self.session_for(request.app)
        try:
            yield from self._attach(session, request, request_iterator, context, cancel)
        finally:
            self._detach(session)

    def _attach(
        self,
        session: Session,
        request: AppRequest,
        request_iterator: Iterator[AppRequest],
        context: grpc.ServicerContext,
        cancel: threading.Event,
    ) -> Iterator[AppResponse]:
        identity = session.identity
        try:
            instance = session.open(cancel=cancel, timeout=self._open_timeout)
        except (ControlPlaneError, OperationCancelledError, SessionError) as e:
            logger.error("can't start app %s: %s", identity, e)
            context.abort(grpc.StatusCode.UNAVAILABLE, f"can't start app {identity}: {e}")

        command = build_command(instance, request.command)
        logger.info("Opening session to %s on Pod %s: %s", identity, instance.pod_name, command)

        bridge = TerminalBridge(
            request_iterator, request.terminal_size, on_error=cancel.set
        ).start()
        done = self._executor.submit(
            self._pod_exec.stream,
            identity.namespace,
            instance.pod_name,
            command,
            bridge.reader,
            bridge.stdout,
            cancel,
        )
        try:
            yield from bridge.responses(done)
        finally:
            bridge.close()

        if isinstance(bridge.reader.error, ProtocolError):
            context.abort(grpc.StatusCode.INVALID_ARGUMENT, str(bridge.reader.error))

        try:
            done.result()
        except ExecExitError as e:
            logger.info("Command on %s exited with %d", identity, e.exit_code)
            context.abort(grpc.StatusCode.ABORTED, str(e.exit_code))
        except Exception as e:
            logger.error("can't open stream of app %s: %s", identity, e)
            context.abort(grpc.StatusCode.UNAVAILABLE, str(e))

    def _detach(self, session: Session) -> None:
        try:
            session.close()
        except (ControlPlaneError, OperationCancelledError) as e:
            logger.warning("can't stop app %s: %s", session.identity, e)

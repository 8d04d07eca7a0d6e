"""Pod exec over the Kubernetes websocket exec subresource."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream as k8s_stream
from kubernetes.stream.ws_client import ERROR_CHANNEL, RESIZE_CHANNEL
from websocket import WebSocketException

from sessiongate.backends.base import (
    ExecError,
    ExecExitError,
    TerminalGeometry,
    TerminalInput,
)

logger = logging.getLogger(__name__)

# Container of the app pod that commands run in
APP_CONTAINER = "workspace"


def _as_bytes(data: str | bytes) -> bytes:
    if isinstance(data, str):
        return data.encode()
    return data


def _exit_code(status: bytes) -> int:
    """Exit code from the Status object sent on the error channel."""
    doc = json.loads(status)
    if doc["status"] == "Success":
        return 0
    return int(doc["details"]["causes"][0]["message"])


class KubernetesPodExec:
    """Runs commands in app pods with a TTY attached.

    Stdin is pumped from a TerminalInput on a separate thread. The terminal
    size is polled right before each blocking read and sent on the resize
    channel whenever it changed.
    """

    # Seconds to wait for output before re-checking cancellation
    POLL_INTERVAL = 0.2
    # Largest stdin chunk accepted from the client
    READ_BUFFER_SIZE = 32 * 1024

    def __init__(
        self,
        context: str | None = None,
        container: str = APP_CONTAINER,
    ) -> None:
        """Initialize the exec client.

        Args:
            context: Kubeconfig context, used outside the cluster only.
            container: Container to exec into.
        """
        self._context = context
        self._container = container
        self._core_api: client.CoreV1Api | None = None
        self._lock = threading.Lock()

    def _get_core_api(self) -> client.CoreV1Api:
        """Get or create the Kubernetes client."""
        with self._lock:
            if self._core_api is None:
                try:
                    config.load_incluster_config()
                    logger.info("Loaded in-cluster Kubernetes configuration")
                except config.ConfigException:
                    config.load_kube_config(context=self._context)
                    logger.info("Loaded kubeconfig (context=%s)", self._context)
                self._core_api = client.CoreV1Api()
            return self._core_api

    def stream(
        self,
        namespace: str,
        pod_name: str,
        command: list[str],
        stdin: TerminalInput,
        stdout: Callable[[bytes], Any],
        cancel: threading.Event,
    ) -> None:
        """Run command in the pod and relay terminal I/O until it exits.

        Args:
            namespace: Namespace of the pod.
            pod_name: Pod to exec into.
            command: Full command line.
            stdin: Source of client input and terminal size.
            stdout: Called with every chunk of output.
            cancel: Closes the exec stream when set.

        Raises:
            ExecExitError: If the command exits with a non-zero status.
            ExecError: If the stream fails or no exit status is reported.
        """
        api = self._get_core_api()
        logger.info("Opening exec stream to Pod %s/%s", namespace, pod_name)
        try:
            resp = k8s_stream(
                api.connect_get_namespaced_pod_exec,
                pod_name,
                namespace,
                container=self._container,
                command=command,
                stdin=True,
                stdout=True,
                stderr=False,
                tty=True,
                binary=True,
                _preload_content=False,
            )
        except ApiException as e:
            raise ExecError(
                f"can't open exec stream to Pod {namespace}/{pod_name}: {e.reason}"
            ) from e

        pump = threading.Thread(
            target=self._pump_stdin,
            args=(resp, stdin, cancel),
            name=f"exec-stdin-{pod_name}",
            daemon=True,
        )
        pump.start()

        status = b""
        try:
            while resp.is_open() and not cancel.is_set():
                resp.update(timeout=self.POLL_INTERVAL)
                # read_all also clears the channels, so take the status first
                status += _as_bytes(resp.read_channel(ERROR_CHANNEL))
                output = resp.read_all()
                if output:
                    stdout(_as_bytes(output))
        except WebSocketException as e:
            raise ExecError(f"exec stream to Pod {pod_name} failed: {e}") from e
        finally:
            resp.close()

        if cancel.is_set():
            logger.info("Exec stream to Pod %s/%s cancelled", namespace, pod_name)
            return

        try:
            exit_code = _exit_code(status)
        except (TypeError, KeyError, IndexError, ValueError, AttributeError) as e:
            raise ExecError(f"no exit status reported by Pod {pod_name}") from e

        if exit_code:
            raise ExecExitError(exit_code)

    def _pump_stdin(
        self,
        resp: Any,
        stdin: TerminalInput,
        cancel: threading.Event,
    ) -> None:
        last_size: TerminalGeometry | None = None
        try:
            while resp.is_open() and not cancel.is_set():
                size = stdin.terminal_size()
                if size is None:
                    return
                if size != last_size:
                    resp.write_channel(
                        RESIZE_CHANNEL,
                        json.dumps({"Width": size.width, "Height": size.height}),
                    )
                    last_size = size

                data = stdin.read(self.READ_BUFFER_SIZE)
                if not data:
                    return
                resp.write_stdin(data)
        except (WebSocketException, OSError, BufferError) as e:
            logger.warning("stdin pump stopped: %s", e)

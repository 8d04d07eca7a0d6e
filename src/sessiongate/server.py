"""gRPC server bootstrap for the session gate."""

from __future__ import annotations

import logging
import signal
import threading
from concurrent.futures import ThreadPoolExecutor

import grpc

from sessiongate.backends.base import ControlPlane, PodExec
from sessiongate.backends.kubernetes import KubernetesPodExec
from sessiongate.backends.openshift import OcControlPlane
from sessiongate.config import GateConfig
from sessiongate.protocol import add_app_gate_servicer
from sessiongate.session.gate import SessionGate

logger = logging.getLogger(__name__)

# Seconds in-flight streams get to finish on shutdown
SHUTDOWN_GRACE = 5


class ServerStartError(Exception):
    """The server could not bind its address."""

    pass


def create_server(
    config: GateConfig,
    control_plane: ControlPlane | None = None,
    pod_exec: PodExec | None = None,
) -> tuple[grpc.Server, SessionGate, int]:
    """Create a gRPC server serving the AppGate service.

    Args:
        config: Gate configuration.
        control_plane: CliApp client (defaults to OcControlPlane).
        pod_exec: Exec capability (defaults to KubernetesPodExec).

    Returns:
        Tuple of (server, gate, bound port). The server is not started.

    Raises:
        ServerStartError: If the address cannot be bound.
    """
    if control_plane is None:
        control_plane = OcControlPlane(
            context=config.context,
            watch_interval=config.watch_interval,
            timeout=config.oc_timeout,
        )
    if pod_exec is None:
        pod_exec = KubernetesPodExec(context=config.context)

    gate = SessionGate(
        control_plane,
        pod_exec,
        open_timeout=config.open_timeout or None,
        max_streams=config.max_workers,
    )

    server = grpc.server(
        ThreadPoolExecutor(max_workers=config.max_workers, thread_name_prefix="rpc"),
        maximum_concurrent_rpcs=config.max_workers,
    )
    add_app_gate_servicer(gate, server)

    try:
        port = server.add_insecure_port(config.addr)
    except RuntimeError as e:
        raise ServerStartError(f"can't listen on {config.addr}: {e}") from e
    if port == 0:
        raise ServerStartError(f"can't listen on {config.addr}")

    return server, gate, port


def serve(config: GateConfig) -> None:
    """Run the session gate until SIGINT or SIGTERM.

    Args:
        config: Gate configuration.
    """
    control_plane = OcControlPlane(
        context=config.context,
        watch_interval=config.watch_interval,
        timeout=config.oc_timeout,
    )
    if config.namespace:
        control_plane.ensure_namespace(config.namespace)

    server, gate, port = create_server(config, control_plane=control_plane)

    stopping = threading.Event()

    def handle_signal(signum: int, frame: object) -> None:
        logger.info("Received signal %d, shutting down", signum)
        stopping.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    server.start()
    logger.info("Session gate listening on %s (port %d)", config.addr, port)

    stopping.wait()
    server.stop(SHUTDOWN_GRACE).wait()
    gate.shutdown()
    logger.info("Session gate stopped")

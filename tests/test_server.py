"""End-to-end tests for the gRPC server."""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from unittest.mock import MagicMock, patch

import grpc
import pytest
from fakes import FakeControlPlane, FakePodExec

from sessiongate.backends.base import ApplicationIdentity, TerminalGeometry
from sessiongate.config import GateConfig
from sessiongate.protocol import AppGateStub, AppRequest
from sessiongate.server import ServerStartError, create_server
from sessiongate.session.gate import SessionGate

SIZE = TerminalGeometry(width=80, height=24)
TIMEOUT = 10


@pytest.fixture
def served(
    control_plane: FakeControlPlane, pod_exec: FakePodExec
) -> Iterator[tuple[SessionGate, AppGateStub]]:
    server, gate, port = create_server(
        GateConfig(addr="localhost:0", max_workers=8, open_timeout=5),
        control_plane=control_plane,
        pod_exec=pod_exec,
    )
    server.start()
    channel = grpc.insecure_channel(f"localhost:{port}")
    try:
        yield gate, AppGateStub(channel)
    finally:
        channel.close()
        server.stop(None)
        gate.shutdown()


def first_request(identity: ApplicationIdentity, *command: str) -> AppRequest:
    return AppRequest(app=identity, command=list(command), terminal_size=SIZE)


class TestCreateServer:
    """Tests for create_server."""

    @patch("sessiongate.server.grpc.server")
    def test_bind_failure(self, mock_server: MagicMock) -> None:
        """A failed bind raises ServerStartError."""
        mock_server.return_value.add_insecure_port.side_effect = RuntimeError(
            "Failed to bind"
        )

        with pytest.raises(ServerStartError, match="can't listen on"):
            create_server(
                GateConfig(addr="localhost:1"),
                control_plane=FakeControlPlane(),
                pod_exec=FakePodExec(),
            )

    @patch("sessiongate.server.grpc.server")
    def test_zero_port(self, mock_server: MagicMock) -> None:
        """Older grpc releases report a failed bind as port 0."""
        mock_server.return_value.add_insecure_port.return_value = 0

        with pytest.raises(ServerStartError):
            create_server(
                GateConfig(addr="localhost:1"),
                control_plane=FakeControlPlane(),
                pod_exec=FakePodExec(),
            )


class TestOpenAppOverGrpc:
    """Tests that drive OpenApp through a real channel."""

    def test_echo(
        self,
        served: tuple[SessionGate, AppGateStub],
        control_plane: FakeControlPlane,
        identity: ApplicationIdentity,
    ) -> None:
        """A full attach: start, relay input and output, stop."""
        _, stub = served
        requests = [first_request(identity, "sh"), AppRequest(stdin=[b"echo hi\r"])]

        responses = list(stub.OpenApp(iter(requests), timeout=TIMEOUT))

        assert [r.stdout for r in responses] == [b"echo hi\r"]
        assert control_plane.flips == [(identity, "Live"), (identity, "Rest")]

    def test_invalid_argument(
        self, served: tuple[SessionGate, AppGateStub]
    ) -> None:
        """A first request without an app is rejected."""
        _, stub = served

        with pytest.raises(grpc.RpcError) as exc_info:
            list(stub.OpenApp(iter([AppRequest(command=["sh"])]), timeout=TIMEOUT))

        assert exc_info.value.code() == grpc.StatusCode.INVALID_ARGUMENT
        assert exc_info.value.details() == "App.Name is required in the first request."

    def test_exit_code_is_aborted(
        self, served: tuple[SessionGate, AppGateStub], identity: ApplicationIdentity
    ) -> None:
        """The exit status reaches the client as ABORTED."""
        _, stub = served
        call = stub.OpenApp(iter([first_request(identity, "exit", "137")]), timeout=TIMEOUT)

        output = []
        with pytest.raises(grpc.RpcError) as exc_info:
            for response in call:
                output.append(response.stdout)

        assert output == [b"bye\n"]
        assert exc_info.value.code() == grpc.StatusCode.ABORTED
        assert exc_info.value.details() == "137"

    def test_shared_app(
        self,
        served: tuple[SessionGate, AppGateStub],
        control_plane: FakeControlPlane,
        identity: ApplicationIdentity,
    ) -> None:
        """A second client shares the instance; it stops after both leave."""
        gate, stub = served
        release = threading.Event()

        def held_open() -> Iterator[AppRequest]:
            yield first_request(identity, "sh")
            release.wait(TIMEOUT)

        first = stub.OpenApp(held_open(), timeout=TIMEOUT)
        deadline = time.monotonic() + TIMEOUT
        while gate.sessions().get(identity) is None or (
            gate.sessions()[identity].instance is None
        ):
            assert time.monotonic() < deadline
            time.sleep(0.01)

        second = list(
            stub.OpenApp(
                iter([first_request(identity, "sh"), AppRequest(stdin=[b"x"])]),
                timeout=TIMEOUT,
            )
        )
        assert [r.stdout for r in second] == [b"x"]
        assert control_plane.flips_to("Rest") == 0

        release.set()
        assert list(first) == []
        assert control_plane.flips_to("Live") == 1
        assert control_plane.flips_to("Rest") == 1

"""Tests for AppGate wire messages."""

from __future__ import annotations

import json

from sessiongate.backends.base import ApplicationIdentity, TerminalGeometry
from sessiongate.protocol import OPEN_APP_METHOD, AppRequest, AppResponse


class TestAppRequest:
    """Tests for AppRequest encoding."""

    def test_first_request_fields(self) -> None:
        """The first request carries app, command and terminal size."""
        request = AppRequest(
            app=ApplicationIdentity("app", "ctr"),
            command=["bash"],
            terminal_size=TerminalGeometry(80, 24),
        )

        doc = json.loads(request.encode())

        assert doc == {
            "app": {"namespace": "app", "name": "ctr"},
            "command": ["bash"],
            "terminalSize": {"width": 80, "height": 24},
        }

    def test_stdin_is_base64(self) -> None:
        """Stdin chunks are base64 strings on the wire."""
        doc = json.loads(AppRequest(stdin=[b"\x1b[A"]).encode())

        assert doc == {"stdin": ["G1tB"]}

    def test_decode_absent_fields(self) -> None:
        """Missing fields decode to empty values."""
        request = AppRequest.decode(b"{}")

        assert request.app is None
        assert request.command == []
        assert request.terminal_size is None
        assert request.stdin == []

    def test_decode_binary_stdin(self) -> None:
        """Arbitrary bytes survive the wire."""
        data = bytes(range(256))

        assert AppRequest.decode(AppRequest(stdin=[data]).encode()).stdin == [data]


class TestAppResponse:
    """Tests for AppResponse encoding."""

    def test_only_set_fields_are_sent(self) -> None:
        """An stdout response has no stderr field."""
        assert json.loads(AppResponse(stdout=b"hi").encode()) == {"stdout": "aGk="}

    def test_decode(self) -> None:
        """Decoding restores both streams."""
        response = AppResponse.decode(b'{"stderr": "b29wcw=="}')

        assert response == AppResponse(stdout=b"", stderr=b"oops")


def test_method_path() -> None:
    """OpenApp lives under the sessiongate.AppGate service."""
    assert OPEN_APP_METHOD == "/sessiongate.AppGate/OpenApp"

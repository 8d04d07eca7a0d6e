"""Wire messages and gRPC plumbing for the AppGate service.

Messages are JSON documents; byte fields are base64-encoded. The service
has a single bidirectional streaming method, OpenApp.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import Any

import grpc

from sessiongate.backends.base import ApplicationIdentity, TerminalGeometry

SERVICE_NAME = "sessiongate.AppGate"
OPEN_APP_METHOD = f"/{SERVICE_NAME}/OpenApp"


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode()


def _b64decode(encoded: str) -> bytes:
    return base64.b64decode(encoded.encode())


@dataclass
class AppRequest:
    """Client message.

    The first message of a stream must carry app, command and
    terminal_size. Later messages carry a new terminal_size and/or one
    stdin chunk.
    """

    app: ApplicationIdentity | None = None
    command: list[str] = field(default_factory=list)
    terminal_size: TerminalGeometry | None = None
    stdin: list[bytes] = field(default_factory=list)

    def encode(self) -> bytes:
        doc: dict[str, Any] = {}
        if self.app is not None:
            doc["app"] = {"namespace": self.app.namespace, "name": self.app.name}
        if self.command:
            doc["command"] = list(self.command)
        if self.terminal_size is not None:
            doc["terminalSize"] = {
                "width": self.terminal_size.width,
                "height": self.terminal_size.height,
            }
        if self.stdin:
            doc["stdin"] = [_b64encode(chunk) for chunk in self.stdin]
        return json.dumps(doc).encode()

    @classmethod
    def decode(cls, data: bytes) -> AppRequest:
        doc = json.loads(data)
        app = doc.get("app")
        size = doc.get("terminalSize")
        return cls(
            app=ApplicationIdentity(
                namespace=app.get("namespace", ""),
                name=app.get("name", ""),
            ) if app is not None else None,
            command=list(doc.get("command") or []),
            terminal_size=TerminalGeometry(
                width=int(size.get("width", 0)),
                height=int(size.get("height", 0)),
            ) if size is not None else None,
            stdin=[_b64decode(chunk) for chunk in doc.get("stdin") or []],
        )


@dataclass
class AppResponse:
    """Server message carrying process output."""

    stdout: bytes = b""
    stderr: bytes = b""

    def encode(self) -> bytes:
        doc = {}
        if self.stdout:
            doc["stdout"] = _b64encode(self.stdout)
        if self.stderr:
            doc["stderr"] = _b64encode(self.stderr)
        return json.dumps(doc).encode()

    @classmethod
    def decode(cls, data: bytes) -> AppResponse:
        doc = json.loads(data)
        return cls(
            stdout=_b64decode(doc.get("stdout", "")),
            stderr=_b64decode(doc.get("stderr", "")),
        )


def add_app_gate_servicer(servicer: Any, server: grpc.Server) -> None:
    """Register an object with an OpenApp(request_iterator, context) method."""
    handler = grpc.method_handlers_generic_handler(
        SERVICE_NAME,
        {
            "OpenApp": grpc.stream_stream_rpc_method_handler(
                servicer.OpenApp,
                request_deserializer=AppRequest.decode,
                response_serializer=AppResponse.encode,
            ),
        },
    )
    server.add_generic_rpc_handlers((handler,))


class AppGateStub:
    """Client stub for the AppGate service."""

    def __init__(self, channel: grpc.Channel) -> None:
        self.OpenApp = channel.stream_stream(
            OPEN_APP_METHOD,
            request_serializer=AppRequest.encode,
            response_deserializer=AppResponse.decode,
        )

"""Session lifecycle, change coordination and terminal I/O."""

from sessiongate.session.coordinator import (
    ChangeCancelledError,
    ChangeHandle,
    ChangeState,
    RemoteChangeCoordinator,
)
from sessiongate.session.gate import SessionGate
from sessiongate.session.io import TerminalBridge, TerminalReader
from sessiongate.session.session import (
    OpenCancelledError,
    OpenTimeoutError,
    Session,
    SessionError,
    SessionInvariantError,
)

__all__ = [
    "ChangeCancelledError",
    "ChangeHandle",
    "ChangeState",
    "OpenCancelledError",
    "OpenTimeoutError",
    "RemoteChangeCoordinator",
    "Session",
    "SessionError",
    "SessionGate",
    "SessionInvariantError",
    "TerminalBridge",
    "TerminalReader",
]

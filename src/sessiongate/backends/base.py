"""Base types and protocols for session gate backends."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol


class Phase(str, Enum):
    """Lifecycle phase of a CliApp, as stored in the custom resource."""

    LIVE = "Live"
    REST = "Rest"


class ControlPlaneError(Exception):
    """Base exception for control-plane errors."""

    pass


class ConflictError(ControlPlaneError):
    """The remote object was modified since it was read."""

    pass


class AppNotFoundError(ControlPlaneError):
    """The CliApp does not exist."""

    pass


class AppFailedError(ControlPlaneError):
    """The CliApp reported an error or vanished while starting."""

    pass


class ExecError(Exception):
    """Base exception for pod exec errors."""

    pass


class ExecExitError(ExecError):
    """The remote process exited with a non-zero status."""

    def __init__(self, exit_code: int) -> None:
        super().__init__(f"command terminated with exit code {exit_code}")
        self.exit_code = exit_code


@dataclass(frozen=True)
class ApplicationIdentity:
    """Identifies one logical application instance.

    Attributes:
        namespace: Namespace of the CliApp.
        name: Name of the CliApp.
    """

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class TerminalGeometry:
    """Character-cell size of a client terminal."""

    width: int
    height: int


@dataclass
class CliApp:
    """Snapshot of a CliApp custom resource.

    Attributes:
        identity: Namespace and name of the app.
        target_phase: Desired phase (spec.targetPhase).
        phase: Observed phase (status.phase), empty if not reported yet.
        pod_name: Pod backing the app (status.podName).
        command: Base command of the app (spec.command).
        error: Error reported by the controller (status.error).
        resource_version: Version used for conditional updates.
        raw: Full object as returned by the API server.
    """

    identity: ApplicationIdentity
    target_phase: str = ""
    phase: str = ""
    pod_name: str = ""
    command: list[str] = field(default_factory=list)
    error: str = ""
    resource_version: str = ""
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> CliApp:
        """Build a snapshot from the JSON form of the resource."""
        metadata = obj.get("metadata", {})
        spec = obj.get("spec", {})
        status = obj.get("status", {}) or {}
        return cls(
            identity=ApplicationIdentity(
                namespace=metadata.get("namespace", ""),
                name=metadata.get("name", ""),
            ),
            target_phase=spec.get("targetPhase", ""),
            phase=status.get("phase", ""),
            pod_name=status.get("podName", ""),
            command=list(spec.get("command") or []),
            error=status.get("error", ""),
            resource_version=metadata.get("resourceVersion", ""),
            raw=obj,
        )

    def with_target_phase(self, phase: Phase) -> dict[str, Any]:
        """Return a copy of the raw object with spec.targetPhase replaced."""
        obj = dict(self.raw)
        obj["spec"] = dict(obj.get("spec", {}))
        obj["spec"]["targetPhase"] = phase.value
        return obj


@dataclass(frozen=True)
class AppInstance:
    """A ready application instance that clients can exec into."""

    identity: ApplicationIdentity
    pod_name: str
    command: tuple[str, ...] = ()


class ControlPlane(Protocol):
    """Access to CliApp objects in the cluster.

    Implementations must raise ConflictError when a replace races with
    another writer, so that callers can re-read and retry.
    """

    def get_app(self, identity: ApplicationIdentity) -> CliApp:
        """Fetch the current state of an app.

        Raises:
            AppNotFoundError: If the app does not exist.
        """
        ...

    def replace_app(self, obj: dict[str, Any]) -> CliApp:
        """Replace an app, conditional on its metadata.resourceVersion.

        Raises:
            ConflictError: If the object changed since it was read.
        """
        ...

    def watch_app(
        self,
        identity: ApplicationIdentity,
        cancel: threading.Event,
    ) -> Iterator[CliApp]:
        """Yield snapshots of an app as it changes, until cancelled.

        Raises:
            AppNotFoundError: If the app is deleted while watching.
        """
        ...


class PodExec(Protocol):
    """Runs a command in a pod with terminal I/O attached."""

    def stream(
        self,
        namespace: str,
        pod_name: str,
        command: list[str],
        stdin: TerminalInput,
        stdout: Callable[[bytes], Any],
        cancel: threading.Event,
    ) -> None:
        """Run command and block until it exits.

        Raises:
            ExecExitError: If the command exits with a non-zero status.
            ExecError: If the stream could not be established.
        """
        ...


class TerminalInput(Protocol):
    """Blocking stdin source that also reports the latest terminal size."""

    def read(self, size: int) -> bytes:
        """Return the next input chunk, or b"" at end of stream."""
        ...

    def terminal_size(self) -> TerminalGeometry | None:
        """Return the most recently reported geometry, None once closed."""
        ...

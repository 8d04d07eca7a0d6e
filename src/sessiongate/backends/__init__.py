"""Backends for the CliApp control plane and pod exec."""

from sessiongate.backends.base import (
    AppFailedError,
    AppInstance,
    AppNotFoundError,
    ApplicationIdentity,
    CliApp,
    ConflictError,
    ControlPlane,
    ControlPlaneError,
    ExecError,
    ExecExitError,
    Phase,
    PodExec,
    TerminalGeometry,
    TerminalInput,
)
from sessiongate.backends.openshift import (
    OcControlPlane,
    OcNotInstalledError,
    OcNotLoggedInError,
    OcTimeoutError,
)

__all__ = [
    "AppFailedError",
    "AppInstance",
    "AppNotFoundError",
    "ApplicationIdentity",
    "CliApp",
    "ConflictError",
    "ControlPlane",
    "ControlPlaneError",
    "ExecError",
    "ExecExitError",
    "OcControlPlane",
    "OcNotInstalledError",
    "OcNotLoggedInError",
    "OcTimeoutError",
    "Phase",
    "PodExec",
    "TerminalGeometry",
    "TerminalInput",
]

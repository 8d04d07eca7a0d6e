"""CliApp control-plane client backed by the oc CLI."""

from __future__ import annotations

import json
import logging
import subprocess
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from sessiongate.backends.base import (
    AppNotFoundError,
    ApplicationIdentity,
    CliApp,
    ConflictError,
    ControlPlaneError,
)

logger = logging.getLogger(__name__)

CLIAPP_RESOURCE = "cliapps.core.cliapp.warm-metal.tech"

SERVICE_ACCOUNT_NAMESPACE = Path(
    "/var/run/secrets/kubernetes.io/serviceaccount/namespace"
)


class OcNotInstalledError(ControlPlaneError):
    """The oc CLI is not installed."""

    pass


class OcNotLoggedInError(ControlPlaneError):
    """Not logged in to the cluster."""

    pass


class OcTimeoutError(ControlPlaneError):
    """The oc CLI command timed out."""

    pass


class OcControlPlane:
    """Reads, replaces and watches CliApp objects through oc.

    Watching is done by polling the object, yielding a snapshot every time
    its resourceVersion changes.
    """

    # Default timeout for oc commands (seconds)
    OC_DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        context: str | None = None,
        watch_interval: float = 2.0,
        timeout: int | None = None,
    ) -> None:
        """Initialize the control-plane client.

        Args:
            context: Kubeconfig context to use (None for current context).
            watch_interval: Seconds between polls while watching an app.
            timeout: Timeout for each oc command (None for the default).
        """
        self._context = context
        self._watch_interval = watch_interval
        self._timeout = timeout if timeout is not None else self.OC_DEFAULT_TIMEOUT

    def _run_oc(
        self,
        *args: str,
        check: bool = True,
        input_data: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run an oc command.

        Args:
            *args: Command arguments (without 'oc').
            check: Raise on non-zero exit (default True).
            input_data: Optional input to pass to stdin.

        Returns:
            CompletedProcess result.

        Raises:
            OcNotInstalledError: If oc is not installed.
            OcTimeoutError: If command times out.
            OcNotLoggedInError: If the session is not authenticated.
            AppNotFoundError: If the object does not exist and check=True.
            ConflictError: If a replace lost an optimistic-concurrency race.
            ControlPlaneError: If command fails otherwise and check=True.
        """
        cmd = ["oc"]

        if self._context:
            cmd.extend(["--context", self._context])

        cmd.extend(args)

        timeout_value: float | None = self._timeout or None

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                input=input_data,
                timeout=timeout_value,
            )
        except subprocess.TimeoutExpired:
            cmd_str = " ".join(cmd)
            raise OcTimeoutError(
                f"oc command timed out after {timeout_value}s: {cmd_str}"
            ) from None
        except FileNotFoundError as e:
            raise OcNotInstalledError("oc CLI not found in PATH") from e

        if check and result.returncode != 0:
            stderr = result.stderr
            if "error: You must be logged in" in stderr:
                raise OcNotLoggedInError("Not logged in to the cluster")
            if "(Conflict)" in stderr or "the object has been modified" in stderr:
                raise ConflictError(stderr.strip())
            if "(NotFound)" in stderr:
                raise AppNotFoundError(stderr.strip())
            raise ControlPlaneError(f"oc command failed: {stderr.strip()}")

        return result

    def _parse(self, stdout: str) -> CliApp:
        try:
            return CliApp.from_object(json.loads(stdout))
        except json.JSONDecodeError as e:
            raise ControlPlaneError(f"unexpected oc output: {e}") from e

    def get_app(self, identity: ApplicationIdentity) -> CliApp:
        """Fetch the current state of an app.

        Args:
            identity: App to fetch.

        Returns:
            Snapshot of the app.

        Raises:
            AppNotFoundError: If the app does not exist.
        """
        result = self._run_oc(
            "get", CLIAPP_RESOURCE, identity.name,
            "-n", identity.namespace,
            "-o", "json",
        )
        return self._parse(result.stdout)

    def replace_app(self, obj: dict[str, Any]) -> CliApp:
        """Replace an app, conditional on the resourceVersion it carries.

        Args:
            obj: Full object, as previously read and then modified.

        Returns:
            Snapshot of the app after the update.

        Raises:
            ConflictError: If the object changed since it was read.
        """
        result = self._run_oc(
            "replace", "-o", "json", "-f", "-",
            input_data=json.dumps(obj),
        )
        return self._parse(result.stdout)

    def watch_app(
        self,
        identity: ApplicationIdentity,
        cancel: threading.Event,
    ) -> Iterator[CliApp]:
        """Yield snapshots of an app each time it changes, until cancelled.

        Args:
            identity: App to watch.
            cancel: Stops the watch when set.

        Yields:
            Snapshots of the app, the first one immediately.

        Raises:
            AppNotFoundError: If the app is deleted while watching.
        """
        last_version: str | None = None
        while not cancel.is_set():
            app = self.get_app(identity)
            if app.resource_version != last_version:
                last_version = app.resource_version
                yield app
            if cancel.wait(self._watch_interval):
                return

    def current_namespace(self) -> str:
        """Get the namespace the gate runs in.

        Uses the service account namespace inside a pod, otherwise the
        namespace of the current kubeconfig context.

        Returns:
            Namespace name.
        """
        try:
            ns = SERVICE_ACCOUNT_NAMESPACE.read_text().strip()
        except OSError:
            ns = ""
        if ns:
            return ns

        result = self._run_oc(
            "config", "view", "--minify", "-o",
            "jsonpath={.contexts[0].context.namespace}",
        )
        ns = result.stdout.strip()
        return ns if ns else "default"

    def ensure_namespace(self, namespace: str) -> None:
        """Create a namespace if it does not exist yet.

        Args:
            namespace: Namespace name.
        """
        result = self._run_oc("get", "namespace", namespace, check=False)
        if result.returncode == 0:
            return

        logger.info("Creating namespace %s", namespace)
        self._run_oc("create", "namespace", namespace)

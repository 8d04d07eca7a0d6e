"""Typer CLI for sessiongate."""

from __future__ import annotations

import logging
from typing import Annotated

import typer

from sessiongate import __version__

app = typer.Typer(
    name="sessiongate",
    help="Share CliApp instances between concurrent terminal sessions.",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version information and exit."""
    if value:
        typer.echo(f"sessiongate {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show sessiongate version and exit.",
        ),
    ] = False,
) -> None:
    """Share CliApp instances between concurrent terminal sessions."""


@app.command()
def serve(
    addr: Annotated[
        str | None,
        typer.Option("--addr", help="Address to listen on (default [::]:8001)."),
    ] = None,
    namespace: Annotated[
        str | None,
        typer.Option("--namespace", "-n", help="Namespace to create at startup."),
    ] = None,
    context: Annotated[
        str | None,
        typer.Option("--context", help="Kubeconfig context outside the cluster."),
    ] = None,
    max_workers: Annotated[
        int | None,
        typer.Option("--max-workers", min=1, help="Concurrent sessions accepted."),
    ] = None,
    open_timeout: Annotated[
        float | None,
        typer.Option(
            "--open-timeout",
            min=0,
            help="Seconds to wait for an app to start (0 for no limit).",
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Logging level (DEBUG, INFO, ...)."),
    ] = None,
) -> None:
    """Run the session gate server."""
    from sessiongate.config import ConfigError, GateConfig
    from sessiongate.server import ServerStartError
    from sessiongate.server import serve as run_server

    try:
        config = GateConfig.from_env()
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    if addr is not None:
        config.addr = addr
    if namespace is not None:
        config.namespace = namespace
    if context is not None:
        config.context = context
    if max_workers is not None:
        config.max_workers = max_workers
    if open_timeout is not None:
        config.open_timeout = open_timeout
    if log_level is not None:
        config.log_level = log_level.upper()

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        run_server(config)
    except ServerStartError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None


@app.command()
def status(
    name: Annotated[str, typer.Argument(help="Name of the CliApp.")],
    namespace: Annotated[
        str | None,
        typer.Option("--namespace", "-n", help="Namespace of the CliApp."),
    ] = None,
    context: Annotated[
        str | None,
        typer.Option("--context", help="Kubeconfig context to use."),
    ] = None,
) -> None:
    """Show the target and observed phase of a CliApp."""
    from sessiongate.backends.base import ApplicationIdentity, ControlPlaneError
    from sessiongate.backends.openshift import OcControlPlane

    control_plane = OcControlPlane(context=context)
    try:
        ns = namespace or control_plane.current_namespace()
        cli_app = control_plane.get_app(ApplicationIdentity(namespace=ns, name=name))
    except ControlPlaneError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    typer.echo(f"{cli_app.identity}")
    typer.echo(f"  target phase: {cli_app.target_phase or '-'}")
    typer.echo(f"  phase:        {cli_app.phase or '-'}")
    typer.echo(f"  pod:          {cli_app.pod_name or '-'}")
    if cli_app.error:
        typer.echo(f"  error:        {cli_app.error}")

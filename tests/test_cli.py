"""Tests for CLI argument parsing."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from fakes import make_app_object
from typer.testing import CliRunner

from sessiongate.backends.base import AppNotFoundError, ApplicationIdentity, CliApp
from sessiongate.cli import app
from sessiongate.server import ServerStartError

runner = CliRunner()


def test_help_shows_help():
    """--help shows help and exits 0."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "Share CliApp instances" in result.stdout


def test_version_shows_version():
    """--version shows version and exits 0."""
    from sessiongate import __version__

    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"sessiongate {__version__}" in result.stdout


def test_short_version_shows_version():
    """-V shows version and exits 0."""
    result = runner.invoke(app, ["-V"])
    assert result.exit_code == 0
    assert "sessiongate" in result.stdout


class TestServe:
    """Tests for the serve command."""

    @patch("sessiongate.server.serve")
    def test_options_override_environment(
        self, mock_serve: MagicMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Command-line options take precedence over SESSIONGATE_* variables."""
        monkeypatch.setenv("SESSIONGATE_ADDR", "[::]:7000")
        monkeypatch.setenv("SESSIONGATE_MAX_WORKERS", "4")

        result = runner.invoke(
            app,
            ["serve", "--addr", "127.0.0.1:9001", "-n", "gate", "--log-level", "debug"],
        )

        assert result.exit_code == 0
        config = mock_serve.call_args[0][0]
        assert config.addr == "127.0.0.1:9001"
        assert config.namespace == "gate"
        assert config.max_workers == 4
        assert config.log_level == "DEBUG"

    @patch("sessiongate.server.serve")
    def test_invalid_environment(
        self, mock_serve: MagicMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A bad environment value exits 1 without serving."""
        monkeypatch.setenv("SESSIONGATE_OPEN_TIMEOUT", "soon")

        result = runner.invoke(app, ["serve"])

        assert result.exit_code == 1
        assert "Invalid numeric setting" in result.output
        mock_serve.assert_not_called()

    @patch("sessiongate.server.serve")
    def test_bind_failure(self, mock_serve: MagicMock) -> None:
        """A bind failure exits 1 with the reason."""
        mock_serve.side_effect = ServerStartError("can't listen on [::]:8001")

        result = runner.invoke(app, ["serve"])

        assert result.exit_code == 1
        assert "can't listen on" in result.output

    def test_rejects_zero_workers(self) -> None:
        """--max-workers must be positive."""
        result = runner.invoke(app, ["serve", "--max-workers", "0"])
        assert result.exit_code != 0


class TestStatus:
    """Tests for the status command."""

    @patch("sessiongate.backends.openshift.OcControlPlane")
    def test_shows_phases(self, mock_plane_cls: MagicMock) -> None:
        """status prints the target and observed phase."""
        mock_plane = mock_plane_cls.return_value
        mock_plane.get_app.return_value = CliApp.from_object(
            make_app_object(target_phase="Live", phase="Live", pod_name="ctr-0")
        )

        result = runner.invoke(app, ["status", "ctr", "-n", "app"])

        assert result.exit_code == 0
        assert "app/ctr" in result.stdout
        assert "target phase: Live" in result.stdout
        assert "pod:          ctr-0" in result.stdout
        mock_plane.get_app.assert_called_once_with(ApplicationIdentity("app", "ctr"))

    @patch("sessiongate.backends.openshift.OcControlPlane")
    def test_uses_current_namespace(self, mock_plane_cls: MagicMock) -> None:
        """Without -n the current namespace is used."""
        mock_plane = mock_plane_cls.return_value
        mock_plane.current_namespace.return_value = "dev"
        mock_plane.get_app.return_value = CliApp.from_object(
            make_app_object(namespace="dev")
        )

        result = runner.invoke(app, ["status", "ctr"])

        assert result.exit_code == 0
        mock_plane.get_app.assert_called_once_with(ApplicationIdentity("dev", "ctr"))

    @patch("sessiongate.backends.openshift.OcControlPlane")
    def test_missing_app(self, mock_plane_cls: MagicMock) -> None:
        """A missing app exits 1."""
        mock_plane_cls.return_value.get_app.side_effect = AppNotFoundError(
            'cliapps "ctr" not found'
        )

        result = runner.invoke(app, ["status", "ctr", "-n", "app"])

        assert result.exit_code == 1
        assert "not found" in result.output

"""Shared pytest fixtures."""

from __future__ import annotations

import pytest
from fakes import FakeControlPlane, FakePodExec

from sessiongate.backends.base import ApplicationIdentity


@pytest.fixture
def control_plane() -> FakeControlPlane:
    """Control plane whose apps go Live as soon as they are started."""
    return FakeControlPlane()


@pytest.fixture
def pod_exec() -> FakePodExec:
    return FakePodExec()


@pytest.fixture
def identity(control_plane: FakeControlPlane) -> ApplicationIdentity:
    """The app/ctr CliApp, at rest."""
    return control_plane.add_app(namespace="app", name="ctr")

"""Pytest configuration and shared fixtures.

This module provides shared test fixtures for all dev server tests:
- settings: DevServerSettings with colour output disabled
- fake_runtime / fake_network: in-memory collaborators recording call order

Integration tests in devserver/tests/integration/ talk to a real Docker or
Podman daemon and skip themselves when none is reachable.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from devserver.core.config import DevServerSettings, get_settings
from devserver.tests.fakes import TEST_IMAGE, FakeNetwork, FakeRuntimeClient

if TYPE_CHECKING:
    from collections.abc import Generator


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests by location so `-m unit` / `-m integration` select them."""
    for item in items:
        if "/integration/" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def clear_settings_cache(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep DEVSERVER_* variables from the developer's shell out of tests."""
    for name in list(os.environ):
        if name.startswith("DEVSERVER_"):
            monkeypatch.delenv(name)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> DevServerSettings:
    """Settings for unit tests (namespace 'dev', no ANSI colours)."""
    return DevServerSettings(
        _env_file=None,
        namespace="dev",
        router_port=4443,
        output_color=False,
    )


@pytest.fixture
def fake_runtime() -> FakeRuntimeClient:
    """Runtime with the test image already present locally."""
    return FakeRuntimeClient(images={TEST_IMAGE})


@pytest.fixture
def fake_network(fake_runtime: FakeRuntimeClient) -> FakeNetwork:
    return FakeNetwork(fake_runtime)

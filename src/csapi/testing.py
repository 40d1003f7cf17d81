"""Pytest fixtures for testing against a live homeserver.

Usage in conftest.py:
    pytest_plugins = ["csapi.testing"]

The homeserver comes from the harness config file or CSAPI_BASE_URL. Tests
using these fixtures are skipped when neither is set.

Available fixtures:
    - csapi_options: HarnessOptions for the configured homeserver
    - csapi_factory: Callable registering a fresh user and returning its CSAPI
    - alice: A freshly registered user
    - bob: Another freshly registered user
"""

from __future__ import annotations

import secrets
from typing import Callable, Generator

import pytest

from .client import CSAPI
from .config import HarnessConfig
from .options import HarnessOptions


@pytest.fixture(scope="session")
def csapi_options() -> HarnessOptions:
    """Options for the homeserver under test; skips if none is configured."""
    options = HarnessConfig.load().to_options()
    if not options.is_configured():
        pytest.skip("no homeserver configured (set CSAPI_BASE_URL or write csapi.yaml)")
    return options


@pytest.fixture
def csapi_factory(
    csapi_options: HarnessOptions,
) -> Generator[Callable[..., CSAPI], None, None]:
    """Register users on demand.

    Example:
        def test_two_users(csapi_factory):
            charlie = csapi_factory("charlie")
            dave = csapi_factory()
    """
    clients: list[CSAPI] = []

    def make(localpart_prefix: str = "user", password: str = "harness-password-1234") -> CSAPI:
        client = CSAPI.from_options(csapi_options)
        localpart = f"{localpart_prefix}-{secrets.token_hex(4)}"
        client.user_id, client.access_token = client.register_user(localpart, password)
        clients.append(client)
        return client

    yield make

    for client in clients:
        client.close()


@pytest.fixture
def alice(csapi_factory: Callable[..., CSAPI]) -> CSAPI:
    """A freshly registered user."""
    return csapi_factory("alice")


@pytest.fixture
def bob(csapi_factory: Callable[..., CSAPI]) -> CSAPI:
    """Another freshly registered user."""
    return csapi_factory("bob")

"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import pytest

from signer_desktop import MockConnection, SignerDesktopClient


@pytest.fixture
def connection() -> MockConnection:
    """A fresh, unopened in-memory connection."""
    return MockConnection()


@pytest.fixture
def client(connection: MockConnection) -> SignerDesktopClient:
    """A client bound to the mock connection (not yet connected)."""
    return SignerDesktopClient(connection=connection)

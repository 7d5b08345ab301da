"""Client configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_URI = "ws://localhost:9091/"

_TRUTHY = ("1", "true", "yes", "on")


@dataclass
class ClientConfig:
    """Configuration for a SignerDesktopClient and its connection.

    The URI is read on every connect attempt, so changing it only affects
    the next connection.
    """

    uri: str = DEFAULT_URI
    debug: bool = False

    # Default per-call timeout in seconds. None waits forever.
    timeout: float | None = None

    # Websocket handshake
    open_timeout: float = 10.0
    ping_interval: float | None = None

    @classmethod
    def from_env(cls) -> ClientConfig:
        """Build a config from SIGNER_DESKTOP_* environment variables."""
        config = cls()
        if uri := os.getenv("SIGNER_DESKTOP_URI"):
            config.uri = uri
        if debug := os.getenv("SIGNER_DESKTOP_DEBUG"):
            config.debug = debug.strip().lower() in _TRUTHY
        if timeout := os.getenv("SIGNER_DESKTOP_TIMEOUT"):
            try:
                config.timeout = float(timeout)
            except ValueError as e:
                raise ValueError(f"Invalid SIGNER_DESKTOP_TIMEOUT: {timeout!r}") from e
        return config

"""Signer desktop client - correlated commands over a local websocket.

Sends commands to the local signer desktop agent and matches each
response back to the call that issued it.

- SignerDesktopClient: high-level client with one method per agent command
- CallDispatcher: correlation identifiers and the pending-call table
- WebSocketConnection: the connection to the agent
- MockConnection: in-memory connection for tests
"""

from .client import SignerDesktopClient
from .config import DEFAULT_URI, ClientConfig
from .connection import (
    BaseConnection,
    ConnectionCallbacks,
    ConnectionState,
    MockConnection,
    WebSocketConnection,
)
from .dispatcher import CallDispatcher, PendingCall, PendingTable
from .errors import (
    CallError,
    CallTimeoutError,
    ConnectionClosedError,
    ConnectionLevelError,
    NotConnectedError,
    SignerDesktopError,
    TransportError,
)
from .protocol import CommandEnvelope, CommandType, ResponseEnvelope

__all__ = [
    # Client
    "SignerDesktopClient",
    "ClientConfig",
    "DEFAULT_URI",
    # Connection
    "BaseConnection",
    "ConnectionCallbacks",
    "ConnectionState",
    "WebSocketConnection",
    "MockConnection",
    # Dispatch
    "CallDispatcher",
    "PendingCall",
    "PendingTable",
    # Protocol
    "CommandEnvelope",
    "CommandType",
    "ResponseEnvelope",
    # Errors
    "SignerDesktopError",
    "NotConnectedError",
    "CallError",
    "ConnectionLevelError",
    "TransportError",
    "ConnectionClosedError",
    "CallTimeoutError",
]

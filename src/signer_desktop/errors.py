"""Error types raised and routed by the signer desktop client.

Errors come in two routing flavours:
- Call-scoped: tied to one pending call and delivered by rejecting it
  (CallError, TransportError carrying a request_id, CallTimeoutError).
- Connection-wide: no call wants them, so they go to the callback supplied
  at connect time (ConnectionLevelError, TransportError without request_id).
"""

from __future__ import annotations

from typing import Any

RequestId = str | int


class SignerDesktopError(Exception):
    """Base class for all client errors."""


class NotConnectedError(SignerDesktopError):
    """A frame was sent while no open connection exists."""

    def __init__(self, message: str = "Not connected to the signer desktop agent"):
        super().__init__(message)


class CallError(SignerDesktopError):
    """Business error reported by the agent for a specific call."""

    def __init__(self, request_id: RequestId, payload: dict[str, Any]):
        self.request_id = request_id
        self.payload = payload
        super().__init__(f"Call {request_id} failed: {payload.get('error')!r}")

    @property
    def error(self) -> Any:
        """The agent's `error` field."""
        return self.payload.get("error")


class ConnectionLevelError(SignerDesktopError):
    """Business error with no waiting call to deliver it to."""

    def __init__(self, payload: dict[str, Any], request_id: RequestId | None = None):
        self.payload = payload
        self.request_id = request_id
        super().__init__(f"Unrouted agent error: {payload.get('error')!r}")

    @property
    def error(self) -> Any:
        return self.payload.get("error")


class TransportError(SignerDesktopError):
    """Socket-level failure, optionally scoped to one call."""

    def __init__(self, message: str, request_id: RequestId | None = None):
        self.request_id = request_id
        super().__init__(message)


class ConnectionClosedError(TransportError):
    """The connection closed while the call was still pending."""

    def __init__(self, message: str = "Connection closed"):
        super().__init__(message)


class CallTimeoutError(SignerDesktopError, TimeoutError):
    """No response arrived within the call's timeout."""

    def __init__(self, request_id: RequestId, timeout: float):
        self.request_id = request_id
        self.timeout = timeout
        super().__init__(f"Call {request_id} timed out after {timeout}s")

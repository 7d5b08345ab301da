"""Signer desktop client.

One client owns one connection and one dispatcher. All of its calls are
multiplexed over that connection.

Usage:
    async with SignerDesktopClient() as client:
        status = await client.status()
        certs = await client.list_certs()

    # Explicit lifecycle with callbacks
    client = SignerDesktopClient(ClientConfig(uri="ws://localhost:9091/"))
    await client.connect(on_open=..., on_close=..., on_error=...)
    try:
        signature = await client.signer(alias, "TOKEN", content, "AD_RB_CADES_2_2")
    except CallError as e:
        print(e.error)
    finally:
        await client.close()

    # Testing
    connection = MockConnection()
    client = SignerDesktopClient(connection=connection)
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping
from typing import Any

from .config import ClientConfig
from .connection import (
    BaseConnection,
    ConnectionState,
    ErrorCallback,
    LifecycleCallback,
    WebSocketConnection,
)
from .dispatcher import CallDispatcher
from .protocol.commands import CommandEnvelope

logger = logging.getLogger(__name__)


# Parameter-object entry points: operation name → (method, param keys)
_OPERATIONS: dict[str, tuple[str, tuple[str, ...]]] = {
    "setUriServer": ("set_uri_server", ("uri",)),
    "setDebug": ("set_debug", ("isToDebug",)),
    "connect": ("connect", ("callbackOpen", "callbackClose", "callbackError")),
    "isConnected": ("is_connected", ()),
    "signer": ("signer", ("alias", "provider", "content", "signaturePolicy")),
    "validate": ("validate", ("content", "signature")),
    "signerFile": ("signer_file", ("alias", "provider", "fileName", "signaturePolicy")),
    "validateFile": ("validate_file", ()),
    "signerFileUsingDefaults": ("signer_file_using_defaults", ()),
    "logoutPKCS11": ("logout_pkcs11", ()),
    "status": ("status", ()),
    "listCerts": ("list_certs", ()),
    "listPolicies": ("list_policies", ()),
    "getFiles": ("get_files", ()),
    "shutdown": ("shutdown", ()),
    "execute": ("execute", ("request",)),
}


class SignerDesktopClient:
    """Client for the local signer desktop agent."""

    def __init__(
        self,
        config: ClientConfig | None = None,
        connection: BaseConnection | None = None,
    ):
        if connection is not None:
            self.config = connection.config
        else:
            self.config = config or ClientConfig()
        self._connection = connection or WebSocketConnection(self.config)
        self._dispatcher = CallDispatcher(self._connection, default_timeout=self.config.timeout)

    @property
    def connection(self) -> BaseConnection:
        """Access the underlying connection."""
        return self._connection

    @property
    def dispatcher(self) -> CallDispatcher:
        return self._dispatcher

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def is_connected(self) -> bool:
        """Check if the connection is open."""
        return self._connection.is_connected

    # Connection management

    def set_uri_server(self, uri: str) -> None:
        """Set the agent URI used by the next connect."""
        self._connection.configure(uri)

    def set_debug(self, enabled: bool) -> None:
        self._connection.set_debug_mode(enabled)

    async def connect(
        self,
        on_open: LifecycleCallback | None = None,
        on_close: LifecycleCallback | None = None,
        on_error: ErrorCallback | None = None,
        on_business_error: ErrorCallback | None = None,
    ) -> bool:
        """Connect to the agent.

        Returns whether the connection is open afterwards. Connection
        failures are reported to `on_error` rather than raised.
        """
        await self._connection.connect(on_open, on_close, on_error, on_business_error)
        return self._connection.is_connected

    async def close(self) -> None:
        """Close the connection, rejecting pending calls."""
        await self._connection.close()

    async def __aenter__(self) -> SignerDesktopClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # Generic commands

    async def execute(
        self,
        request: CommandEnvelope | Mapping[str, Any],
        *,
        timeout: float | None = None,
        handle_errors: bool = True,
    ) -> dict[str, Any] | None:
        """Send any tracked command and wait for its response.

        Args:
            request: Envelope or mapping with at least a `command` key
            timeout: Seconds to wait; defaults to the configured timeout
            handle_errors: If False, business errors go to the
                connection-wide handler and this call returns None

        Raises:
            CallError: The agent reported a business error
            NotConnectedError: The client is not connected
        """
        return await self._dispatcher.dispatch(
            request, timeout=timeout, handle_errors=handle_errors
        )

    async def notify(self, request: CommandEnvelope | Mapping[str, Any]) -> None:
        """Send a command without waiting for or tracking a response."""
        await self._dispatcher.notify(request)

    # Signing

    async def signer(
        self,
        alias: str | None,
        provider: str | None,
        content: str,
        signature_policy: str | None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any] | None:
        """Sign raw content.

        Args:
            alias: Alias of the certificate to sign with
            provider: Provider holding the key (token, smart card, ...)
            content: Text to sign
            signature_policy: Signature policy to apply
        """
        return await self.execute(
            CommandEnvelope.signer(alias, provider, content, signature_policy),
            timeout=timeout,
        )

    async def signer_file(
        self,
        alias: str | None,
        provider: str | None,
        file_name: str,
        signature_policy: str | None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any] | None:
        """Sign a file returned by get_files()."""
        return await self.execute(
            CommandEnvelope.file_signer(alias, provider, file_name, signature_policy),
            timeout=timeout,
        )

    async def signer_file_using_defaults(
        self, *, timeout: float | None = None
    ) -> dict[str, Any] | None:
        """Sign a file with the first certificate, provider and policy on the token."""
        return await self.execute(CommandEnvelope.file_signer_using_defaults(), timeout=timeout)

    # Validation

    async def validate(
        self,
        content: str,
        signature: str,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any] | None:
        """Validate a signature against the original content.

        Both `content` and `signature` must be base64 encoded.
        """
        return await self.execute(
            CommandEnvelope.validate_content(content, signature), timeout=timeout
        )

    async def validate_file(self, *, timeout: float | None = None) -> dict[str, Any] | None:
        return await self.execute(CommandEnvelope.validate_file(), timeout=timeout)

    # Queries

    async def status(self, *, timeout: float | None = None) -> dict[str, Any] | None:
        """Agent status, including its version."""
        return await self.execute(CommandEnvelope.status(), timeout=timeout)

    async def list_certs(self, *, timeout: float | None = None) -> dict[str, Any] | None:
        return await self.execute(CommandEnvelope.list_certs(), timeout=timeout)

    async def list_policies(self, *, timeout: float | None = None) -> dict[str, Any] | None:
        return await self.execute(CommandEnvelope.list_policies(), timeout=timeout)

    async def get_files(self, *, timeout: float | None = None) -> dict[str, Any] | None:
        """Files the user picked on the agent side for signing."""
        return await self.execute(CommandEnvelope.get_files(), timeout=timeout)

    # Fire-and-forget

    async def logout_pkcs11(self) -> None:
        """Log out of the access token."""
        await self.notify(CommandEnvelope.logout_pkcs11())

    async def shutdown(self) -> None:
        """Ask the agent process to exit."""
        await self.notify(CommandEnvelope.shutdown())

    # Parameter-object entry point

    async def invoke(self, operation: str, params: Mapping[str, Any] | None = None) -> Any:
        """Call an operation by name with its arguments in a mapping.

        Accepts the agent client's wrapper names (`signerFile`,
        `signerFileWrapper`, ...), for hosts that forward calls as
        name + params objects.

        Raises:
            ValueError: If the operation is unknown
        """
        name = operation.removesuffix("Wrapper")
        if name not in _OPERATIONS:
            raise ValueError(f"Unknown operation: {operation}")

        attr, keys = _OPERATIONS[name]
        params = params or {}
        logger.debug(f"Invoking {name} with {sorted(params)}")

        target = getattr(self, attr)
        if not callable(target):
            return target

        result = target(*(params.get(key) for key in keys))
        if inspect.isawaitable(result):
            return await result
        return result

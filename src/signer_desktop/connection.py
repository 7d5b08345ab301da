"""Connection manager for the signer desktop agent.

Owns the single websocket to the local agent: its lifecycle, the
callbacks the host application registered for lifecycle transitions, and
the routing of inbound frames to the call dispatcher.

Routing rules for inbound frames:
- `error` present, id matches a call that handles errors → that call is
  rejected with CallError
- `error` present otherwise → ConnectionLevelError to the connection-wide
  business-error callback
- success, id matches a pending call → that call is resolved
- success otherwise → logged at debug level and dropped
- not a JSON object → TransportError to the connection-wide error callback

Errors with no callback to receive them are logged as warnings.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import websockets

from .config import ClientConfig
from .errors import (
    CallError,
    ConnectionClosedError,
    ConnectionLevelError,
    NotConnectedError,
    RequestId,
    SignerDesktopError,
    TransportError,
)
from .protocol.commands import CommandEnvelope
from .protocol.responses import ResponseEnvelope

if TYPE_CHECKING:
    from .dispatcher import CallDispatcher

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "signer_desktop"


class ConnectionState(str, Enum):
    """Connection lifecycle."""

    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"


LifecycleCallback = Callable[[ConnectionState], Any]
ErrorCallback = Callable[[SignerDesktopError], Any]


@dataclass
class ConnectionCallbacks:
    """Hooks registered by the host application at connect time.

    Callbacks may be plain functions or coroutine functions.
    `on_business_error` falls back to `on_error` when not given.
    """

    on_open: LifecycleCallback | None = None
    on_close: LifecycleCallback | None = None
    on_error: ErrorCallback | None = None
    on_business_error: ErrorCallback | None = None


class BaseConnection(ABC):
    """Base class for agent connections.

    Provides:
    - State management and idempotent connect
    - Inbound frame parsing and routing
    - Background reader task management
    """

    def __init__(self, config: ClientConfig | None = None):
        self.config = config or ClientConfig()
        self._state = ConnectionState.CLOSED
        self._callbacks = ConnectionCallbacks()
        self._dispatcher: CallDispatcher | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._callback_tasks: set[asyncio.Task[Any]] = set()
        self._lock = asyncio.Lock()
        if self.config.debug:
            self.set_debug_mode(True)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        """True only while the connection is open."""
        return self._state == ConnectionState.OPEN

    @property
    def uri(self) -> str:
        return self.config.uri

    @property
    def debug(self) -> bool:
        return self.config.debug

    def bind(self, dispatcher: CallDispatcher) -> None:
        """Attach the dispatcher that owns the pending table."""
        self._dispatcher = dispatcher

    def configure(self, uri: str) -> None:
        """Set the URI used by the next connect attempt."""
        logger.debug(f"Setting URI to {uri}")
        self.config.uri = uri

    def set_debug_mode(self, enabled: bool) -> None:
        """Toggle verbose lifecycle and traffic logging."""
        self.config.debug = enabled
        logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG if enabled else logging.NOTSET)
        logger.debug(f"Setting debug on to {'ON' if enabled else 'OFF'}")

    async def connect(
        self,
        on_open: LifecycleCallback | None = None,
        on_close: LifecycleCallback | None = None,
        on_error: ErrorCallback | None = None,
        on_business_error: ErrorCallback | None = None,
    ) -> None:
        """Open the connection unless it is already open or opening.

        When a connection is already open or opening this is a no-op and
        the callbacks passed here are discarded. A failure to open is not
        raised: it is reported to `on_error`, then `on_close`. Cancelling
        the attempt propagates and leaves the connection closed.
        """
        async with self._lock:
            if self._state in (ConnectionState.OPEN, ConnectionState.CONNECTING):
                logger.debug(f"Connection already {self._state.value}, ignoring connect()")
                return

            self._callbacks = ConnectionCallbacks(
                on_open=on_open,
                on_close=on_close,
                on_error=on_error,
                on_business_error=on_business_error,
            )
            self._state = ConnectionState.CONNECTING
            logger.debug(f"Connecting on {self.uri}")

            try:
                await self._do_connect()
            except asyncio.CancelledError:
                self._state = ConnectionState.CLOSED
                logger.debug(f"Connect to {self.uri} cancelled")
                raise
            except Exception as e:
                self._state = ConnectionState.CLOSED
                logger.warning(f"Failed to connect to {self.uri}: {e}")
                self._emit_error(TransportError(f"Failed to connect to {self.uri}: {e}"))
                self._fire(self._callbacks.on_close, self._state)
                return

            self._state = ConnectionState.OPEN
            self._reader_task = asyncio.create_task(self._read_loop())
            logger.info(f"Connected to signer desktop agent at {self.uri}")

        self._fire(self._callbacks.on_open, self._state)

    async def close(self) -> None:
        """Close the connection and reject all pending calls."""
        async with self._lock:
            if self._state == ConnectionState.CLOSED:
                return

            task, self._reader_task = self._reader_task, None
            if task and task is not asyncio.current_task():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

            try:
                await self._do_disconnect()
            finally:
                self._mark_closed("Connection closed by client")

    async def send(self, frame: CommandEnvelope | Mapping[str, Any]) -> None:
        """Serialize and transmit a frame.

        Raises:
            NotConnectedError: If the connection is not open
        """
        if not self.is_connected:
            raise NotConnectedError()

        data = CommandEnvelope.from_mapping(frame).to_frame()
        logger.debug(f"Sending frame: {data}")
        await self._do_send(data)

    def handle_transport_error(
        self,
        error: BaseException,
        request_id: RequestId | None = None,
    ) -> None:
        """Route a socket-level error.

        Rejects the pending call for `request_id` when there is one,
        otherwise reports to the connection-wide error callback.
        """
        if request_id is not None and self._dispatcher is not None:
            if self._dispatcher.reject(request_id, TransportError(str(error), request_id)):
                return

        logger.debug("No pending call for transport error, reporting to connection handler")
        if not isinstance(error, SignerDesktopError):
            error = TransportError(str(error), request_id)
        self._emit_error(error)

    # Inbound routing

    async def _read_loop(self) -> None:
        """Background task reading frames and routing them."""
        reason = "Connection closed by agent"
        try:
            async for frame in self._receive_frames():
                self._handle_frame(frame)
        except asyncio.CancelledError:
            return
        except Exception as e:
            logger.error(f"Read loop error: {e}")
            reason = f"Transport error: {e}"
            self.handle_transport_error(TransportError(reason))
        self._mark_closed(reason)

    def _handle_frame(self, frame: str | bytes) -> None:
        try:
            envelope = ResponseEnvelope.from_frame(frame)
        except ValueError as e:
            logger.warning(f"Invalid frame from agent: {e}")
            self.handle_transport_error(TransportError(f"Invalid frame: {e}"))
            return

        if envelope.is_error:
            self._route_business_error(envelope)
        else:
            self._route_result(envelope)

    def _route_business_error(self, envelope: ResponseEnvelope) -> None:
        request_id = envelope.request_id if envelope.has_request_id else None
        logger.debug(f"Receiving error with ID [{request_id}]: {envelope.error!r}")

        call = None
        if request_id is not None and self._dispatcher is not None:
            call = self._dispatcher.lookup(request_id)

        if call is not None and call.handles_errors:
            self._dispatcher.reject(request_id, CallError(request_id, envelope.payload))
            return

        if call is not None:
            self._dispatcher.release(request_id)
        self._emit_business_error(ConnectionLevelError(envelope.payload, request_id))

    def _route_result(self, envelope: ResponseEnvelope) -> None:
        request_id = envelope.request_id
        logger.debug(f"Receiving command with ID [{request_id}]")

        if envelope.has_request_id and self._dispatcher is not None:
            if self._dispatcher.resolve(request_id, envelope.payload):
                return

        logger.debug(f"No pending call for ID [{request_id}], dropping: {envelope.payload}")

    def _mark_closed(self, reason: str) -> None:
        if self._state == ConnectionState.CLOSED:
            return

        self._state = ConnectionState.CLOSED
        if self._dispatcher is not None:
            self._dispatcher.fail_all(reason)
        logger.info(f"Disconnected from signer desktop agent: {reason}")
        self._fire(self._callbacks.on_close, self._state)

    # Callback delivery

    def _emit_error(self, error: SignerDesktopError) -> None:
        callback = self._callbacks.on_error
        if callback is None:
            logger.warning(f"Unhandled connection error: {error}")
            return
        self._fire(callback, error)

    def _emit_business_error(self, error: ConnectionLevelError) -> None:
        callback = self._callbacks.on_business_error or self._callbacks.on_error
        if callback is None:
            logger.warning(f"Unhandled agent error: {error.payload}")
            return
        self._fire(callback, error)

    def _fire(self, callback: Callable[[Any], Any] | None, arg: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(arg)
        except Exception:
            logger.exception(f"Connection callback {callback!r} failed")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._callback_tasks.add(task)
            task.add_done_callback(self._callback_done)

    def _callback_done(self, task: asyncio.Task[Any]) -> None:
        self._callback_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Connection callback failed: {task.exception()}")

    # Abstract methods for subclasses

    @abstractmethod
    async def _do_connect(self) -> None:
        """Implementation-specific connection logic."""
        ...

    @abstractmethod
    async def _do_disconnect(self) -> None:
        """Implementation-specific disconnection logic."""
        ...

    @abstractmethod
    async def _do_send(self, data: str) -> None:
        """Implementation-specific send logic."""
        ...

    @abstractmethod
    def _receive_frames(self) -> AsyncIterator[str | bytes]:
        """Implementation-specific receive logic. Must be an async generator."""
        ...


class WebSocketConnection(BaseConnection):
    """Connection over a websocket to the local agent.

    Wire format: one JSON object per UTF-8 text frame, both directions.
    """

    def __init__(self, config: ClientConfig | None = None):
        super().__init__(config)
        self._ws: Any = None  # websockets ClientConnection

    async def _do_connect(self) -> None:
        self._ws = await websockets.connect(
            self.uri,
            open_timeout=self.config.open_timeout,
            ping_interval=self.config.ping_interval,
        )

    async def _do_disconnect(self) -> None:
        if self._ws:
            await self._ws.close()
            self._ws = None

    async def _do_send(self, data: str) -> None:
        if not self._ws:
            raise NotConnectedError()
        try:
            await self._ws.send(data)
        except websockets.ConnectionClosed as e:
            raise ConnectionClosedError(f"Connection closed while sending: {e}") from e

    async def _receive_frames(self) -> AsyncIterator[str | bytes]:
        if not self._ws:
            raise NotConnectedError()

        # Ends on a clean close, raises ConnectionClosedError otherwise
        async for message in self._ws:
            yield message


class MockConnection(BaseConnection):
    """In-memory connection for testing.

    Records sent frames and lets tests play agent frames back in, either
    synchronously with feed() or through the reader task with inject().

    Usage:
        connection = MockConnection()
        dispatcher = CallDispatcher(connection)
        await connection.connect()

        call = await dispatcher.submit(CommandEnvelope.status())
        connection.feed({"requestId": call.request_id, "desktopVersion": "1.0"})
        assert (await call)["desktopVersion"] == "1.0"
    """

    def __init__(self, config: ClientConfig | None = None):
        super().__init__(config)
        self._sent: list[dict[str, Any]] = []
        self._inbound: asyncio.Queue[str | bytes | None] = asyncio.Queue()
        self.connect_error: Exception | None = None

    @property
    def sent_frames(self) -> list[dict[str, Any]]:
        """All frames sent so far, decoded."""
        return self._sent.copy()

    def feed(self, frame: Mapping[str, Any] | str | bytes) -> None:
        """Route an agent frame immediately."""
        self._handle_frame(self._encode(frame))

    def inject(self, frame: Mapping[str, Any] | str | bytes) -> None:
        """Queue an agent frame for the reader task."""
        self._inbound.put_nowait(self._encode(frame))

    def drop(self) -> None:
        """Simulate the agent closing the connection."""
        self._inbound.put_nowait(None)

    @staticmethod
    def _encode(frame: Mapping[str, Any] | str | bytes) -> str | bytes:
        if isinstance(frame, str | bytes):
            return frame
        return json.dumps(dict(frame))

    async def _do_connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error

    async def _do_disconnect(self) -> None:
        pass

    async def _do_send(self, data: str) -> None:
        self._sent.append(json.loads(data))

    async def _receive_frames(self) -> AsyncIterator[str | bytes]:
        while True:
            frame = await self._inbound.get()
            if frame is None:
                break
            yield frame

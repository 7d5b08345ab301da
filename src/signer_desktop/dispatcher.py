"""Call dispatcher: correlates outbound commands with inbound responses.

Every tracked command gets a correlation identifier and a PendingCall in
the pending table. The connection routes inbound frames back here by
identifier, and the matching call is resolved or rejected.

Identifiers are drawn from a strictly monotonic counter seeded with the
wall clock in milliseconds, so they keep the numeric, time-like shape the
agent is used to without two calls from one client ever sharing one.
Caller-supplied identifiers are used as given.

Runs on a single asyncio event loop. The pending table is not protected
against access from other threads.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Generator, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .errors import CallTimeoutError, ConnectionClosedError, NotConnectedError, RequestId
from .protocol.commands import FIRE_AND_FORGET, CommandEnvelope

if TYPE_CHECKING:
    from .connection import BaseConnection

logger = logging.getLogger(__name__)


@dataclass
class PendingCall:
    """One in-flight request awaiting its response.

    Awaiting a PendingCall waits without a timeout; use wait() for one.
    """

    request_id: RequestId
    future: asyncio.Future[dict[str, Any] | None]
    handles_errors: bool = True
    command: str | None = None

    @property
    def key(self) -> str:
        return str(self.request_id)

    @property
    def done(self) -> bool:
        return self.future.done()

    async def wait(self, timeout: float | None = None) -> dict[str, Any] | None:
        """Wait for the response payload.

        Raises:
            CallError: The agent reported a business error for this call
            TransportError: The transport failed or closed before a response
            CallTimeoutError: No response within `timeout` seconds
        """
        if timeout is None:
            return await self.future
        try:
            return await asyncio.wait_for(self.future, timeout=timeout)
        except TimeoutError:
            logger.debug(f"Command [{self.command}] with ID [{self.request_id}] timed out")
            raise CallTimeoutError(self.request_id, timeout) from None

    def cancel(self) -> bool:
        """Abandon the call. Its waiter sees asyncio.CancelledError."""
        return self.future.cancel()

    def __await__(self) -> Generator[Any, None, dict[str, Any] | None]:
        return self.wait().__await__()


class PendingTable:
    """Correlation identifier → PendingCall.

    Keys are normalized with str() so a numeric id echoed back as a string
    (or the other way round) still matches.
    """

    def __init__(self) -> None:
        self._calls: dict[str, PendingCall] = {}

    def __len__(self) -> int:
        return len(self._calls)

    def __contains__(self, request_id: object) -> bool:
        return str(request_id) in self._calls

    def register(self, call: PendingCall) -> PendingCall | None:
        """Store a call, replacing any call already waiting on the same id.

        The replaced call is returned. It stays pending but can no longer
        be reached by a response.
        """
        previous = self._calls.get(call.key)
        self._calls[call.key] = call
        if previous is not None and not previous.done:
            logger.warning(
                f"Request ID [{call.request_id}] reused by [{call.command}] while "
                f"[{previous.command}] was pending; the previous call can no longer complete"
            )
        return previous

    def get(self, request_id: RequestId) -> PendingCall | None:
        return self._calls.get(str(request_id))

    def pop(self, request_id: RequestId) -> PendingCall | None:
        return self._calls.pop(str(request_id), None)

    def discard(self, call: PendingCall) -> None:
        """Remove `call` only if it still owns its identifier."""
        if self._calls.get(call.key) is call:
            del self._calls[call.key]

    def drain(self) -> list[PendingCall]:
        calls = list(self._calls.values())
        self._calls.clear()
        return calls


class CallDispatcher:
    """Turns commands into tracked, identifier-correlated async operations."""

    def __init__(
        self,
        connection: BaseConnection,
        default_timeout: float | None = None,
    ):
        self._connection = connection
        self.default_timeout = default_timeout
        self.pending = PendingTable()
        self._ids = itertools.count(int(time.time() * 1000))
        connection.bind(self)

    def next_request_id(self) -> int:
        return next(self._ids)

    async def submit(
        self,
        envelope: CommandEnvelope | Mapping[str, Any],
        *,
        handle_errors: bool = True,
    ) -> PendingCall:
        """Register and send a tracked command without waiting for the reply.

        Args:
            envelope: Command to send. A missing or empty `requestId` is
                filled in.
            handle_errors: When False, business errors for this call go to
                the connection-wide handler instead of rejecting it.

        Raises:
            NotConnectedError: If the connection is not open
            ValueError: If the command is one the agent never answers
        """
        envelope = CommandEnvelope.from_mapping(envelope)
        if envelope.command in FIRE_AND_FORGET:
            raise ValueError(f"Command [{envelope.command}] is never answered; use notify()")
        if not self._connection.is_connected:
            raise NotConnectedError()

        if not envelope.has_request_id:
            envelope.request_id = self.next_request_id()

        loop = asyncio.get_running_loop()
        call = PendingCall(
            request_id=envelope.request_id,
            future=loop.create_future(),
            handles_errors=handle_errors,
            command=envelope.command,
        )
        call.future.add_done_callback(lambda _: self._call_done(call))
        self.pending.register(call)

        logger.debug(
            f"Sending command [{envelope.command}] with ID [{envelope.request_id}] "
            f"to URI [{self._connection.uri}]"
        )
        try:
            await self._connection.send(envelope)
        except BaseException:
            self.pending.discard(call)
            raise
        return call

    async def dispatch(
        self,
        envelope: CommandEnvelope | Mapping[str, Any],
        *,
        timeout: float | None = None,
        handle_errors: bool = True,
    ) -> dict[str, Any] | None:
        """Send a tracked command and wait for its response payload.

        `timeout` falls back to the dispatcher's default; both None means
        wait until a response arrives or the connection closes. Commands
        the agent never answers are sent with notify() and return None.
        """
        envelope = CommandEnvelope.from_mapping(envelope)
        if envelope.command in FIRE_AND_FORGET:
            await self.notify(envelope)
            return None
        call = await self.submit(envelope, handle_errors=handle_errors)
        return await call.wait(timeout if timeout is not None else self.default_timeout)

    async def notify(self, envelope: CommandEnvelope | Mapping[str, Any]) -> None:
        """Fire-and-forget: send without tracking or waiting."""
        envelope = CommandEnvelope.from_mapping(envelope)
        logger.debug(f"Sending command [{envelope.command}] without tracking")
        await self._connection.send(envelope)

    def _call_done(self, call: PendingCall) -> None:
        # Timeouts and cancellation complete the future without routing
        self.pending.discard(call)
        # Submitted handles may never be awaited
        if not call.future.cancelled():
            call.future.exception()

    # Routing, called by the connection

    def lookup(self, request_id: RequestId) -> PendingCall | None:
        return self.pending.get(request_id)

    def resolve(self, request_id: RequestId, payload: dict[str, Any] | None) -> bool:
        """Complete the call waiting on `request_id`. False if there is none."""
        call = self.pending.pop(request_id)
        if call is None or call.done:
            return False
        call.future.set_result(payload)
        return True

    def reject(self, request_id: RequestId, error: BaseException) -> bool:
        """Fail the call waiting on `request_id`. False if there is none."""
        call = self.pending.pop(request_id)
        if call is None or call.done:
            return False
        call.future.set_exception(error)
        return True

    def release(self, request_id: RequestId) -> bool:
        """Drop a call whose error went elsewhere; its waiter gets None."""
        return self.resolve(request_id, None)

    def cancel(self, request_id: RequestId) -> bool:
        """Cancel the call waiting on `request_id`."""
        call = self.pending.pop(request_id)
        if call is None:
            return False
        return call.cancel()

    def fail_all(self, reason: str) -> int:
        """Reject every outstanding call with ConnectionClosedError."""
        failed = 0
        for call in self.pending.drain():
            if not call.done:
                call.future.set_exception(ConnectionClosedError(reason))
                failed += 1
        if failed:
            logger.debug(f"Rejected {failed} pending call(s): {reason}")
        return failed

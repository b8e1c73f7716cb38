"""Request/response correlation.

Every outbound command carries an integer id. The correlator hands out ids,
keeps a table of pending requests keyed by id, and resolves each pending
request with the reply frame the read loop delivers for that id.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog
from pydantic import ValidationError

from hassws.errors import CommandError, CommandTimeoutError, ConnectionLostError, ProtocolError
from hassws.messages import ResultMessage

logger = structlog.get_logger(__name__)

INITIAL_ID = 1

SendFunc = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass
class PendingRequest:
    """A command awaiting its reply."""

    id: int
    future: asyncio.Future[dict[str, Any]]
    generation: int
    issued_at: float


def decode_result(reply: dict[str, Any]) -> Any:
    """Decode a result frame.

    Returns:
        The ``result`` payload of a successful reply.

    Raises:
        CommandError: If the hub reported ``success: false``.
        ProtocolError: If the frame is not a valid result.
    """
    try:
        message = ResultMessage.model_validate(reply)
    except ValidationError as e:
        raise ProtocolError(f"invalid result frame: {e}") from e

    if not message.success:
        error = message.error
        raise CommandError(error.code if error else "", error.message if error else "")
    return message.result


class Correlator:
    """Assigns request ids and matches replies to waiting callers."""

    def __init__(self, send: SendFunc, default_timeout: float = 10.0) -> None:
        self._send = send
        self._default_timeout = default_timeout
        self._lock = threading.Lock()
        self._next_id = INITIAL_ID
        self._generation = 0
        self._pending: dict[int, PendingRequest] = {}

    @property
    def generation(self) -> int:
        """Incremented by every reset(); replies never cross generations."""
        return self._generation

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def pending_ids(self) -> list[int]:
        with self._lock:
            return sorted(self._pending)

    def next_id(self) -> int:
        """Return the next request id; strictly increasing until reset()."""
        with self._lock:
            request_id = self._next_id
            self._next_id += 1
            return request_id

    async def request(self, frame: dict[str, Any], timeout: float | None = None) -> dict[str, Any]:
        """Send a frame and wait for the reply carrying the same id.

        A frame that already has an ``id`` (pre-allocated with next_id()) keeps it.

        Returns:
            The raw reply frame.

        Raises:
            CommandTimeoutError: No reply within ``timeout``.
            ConnectionLostError: The connection was reset while waiting, or
                before a pre-allocated id was used.
            ValueError: The frame carries an id that is already pending.
        """
        timeout = self._default_timeout if timeout is None else timeout
        request_id = frame.get("id") or self.next_id()
        frame = {**frame, "id": request_id}

        loop = asyncio.get_running_loop()
        with self._lock:
            # Ids from before a reset() would collide with ids handed out after it
            if request_id >= self._next_id:
                raise ConnectionLostError(request_id, "request id predates connection reset")
            if request_id in self._pending:
                raise ValueError(f"request id {request_id} is already pending")
            pending = PendingRequest(
                id=request_id,
                future=loop.create_future(),
                generation=self._generation,
                issued_at=loop.time(),
            )
            self._pending[request_id] = pending

        try:
            await self._send(frame)
            return await asyncio.wait_for(pending.future, timeout)
        except asyncio.TimeoutError:
            logger.error(
                "Request timed out", request_id=request_id, type=frame.get("type"), timeout=timeout
            )
            raise CommandTimeoutError(request_id, timeout) from None
        finally:
            with self._lock:
                if self._pending.get(request_id) is pending:
                    del self._pending[request_id]

    async def send_and_await(self, frame: dict[str, Any], timeout: float | None = None) -> Any:
        """Send a command and return its decoded ``result`` payload.

        Raises:
            CommandError: The hub reported a failure (code, message).
            CommandTimeoutError: No reply within ``timeout``.
            ConnectionLostError: The connection was reset while waiting.
        """
        reply = await self.request(frame, timeout)
        try:
            return decode_result(reply)
        except CommandError as e:
            logger.error(
                "Command failed", request_id=reply.get("id"), code=e.code, message=e.message
            )
            raise

    def resolve(self, frame: dict[str, Any]) -> bool:
        """Deliver a reply frame to its pending request.

        Returns:
            False if no request with that id is pending.
        """
        request_id = frame.get("id")
        with self._lock:
            pending = self._pending.get(request_id) if isinstance(request_id, int) else None
            generation = self._generation
        if pending is None or pending.generation != generation or pending.future.done():
            return False
        pending.future.set_result(frame)
        return True

    def reset(self, reason: str = "connection reset") -> int:
        """Fail every pending request and restart ids at INITIAL_ID.

        Returns:
            Number of requests that were abandoned.
        """
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
            self._next_id = INITIAL_ID
            self._generation += 1

        for request in pending:
            if not request.future.done():
                request.future.set_exception(ConnectionLostError(request.id, reason))

        if pending:
            logger.warning("Abandoned pending requests", count=len(pending), reason=reason)
        return len(pending)

"""Websocket connection lifecycle.

Owns the single socket to Home Assistant:
- Dial and authenticate (with a bounded retry budget)
- Read loop that routes every inbound frame by its ``type``
- Heartbeat (ping/pong) with consecutive-miss detection
- Automatic reconnect on read errors or missed heartbeats
- Single-writer discipline for every outbound frame
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import structlog
import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from hassws.config import ClientSettings
from hassws.correlator import Correlator
from hassws.errors import (
    AuthRetriesExhaustedError,
    CommandTimeoutError,
    ConnectionLostError,
    HASSWSError,
    InvalidAuthError,
    MinimumVersionError,
    NotConnectedError,
    ProtocolError,
    TransportError,
)
from hassws.messages import AuthMessage, MessageType, auth_frame, command_frame
from hassws.version import HAVersion

logger = structlog.get_logger(__name__)

ConnectFactory = Callable[..., Awaitable[Any]]
FrameHandler = Callable[[dict[str, Any]], None]
ReadyHandler = Callable[[], Awaitable[None]]
SleepFunc = Callable[[float], Awaitable[None]]


class ConnectionState(str, Enum):
    """Connection lifecycle states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


async def _default_connect(url: str, **kwargs: Any) -> Any:
    return await websockets.connect(url, max_size=None, **kwargs)


class ConnectionManager:
    """Maintains one authenticated websocket and its background tasks.

    Example:
        manager = ConnectionManager(settings, on_event=handle_event, on_ready=resubscribe)
        await manager.start()
        reply = await manager.correlator.send_and_await({"type": "get_config"})
        await manager.close()
    """

    def __init__(
        self,
        settings: ClientSettings,
        on_event: FrameHandler | None = None,
        on_ready: ReadyHandler | None = None,
        connect_factory: ConnectFactory | None = None,
        sleep: SleepFunc | None = None,
    ) -> None:
        self._settings = settings
        self._on_event = on_event
        self._on_ready = on_ready
        self._connect_factory = connect_factory or _default_connect
        self._sleep = sleep or asyncio.sleep
        self._minimum_version = HAVersion.parse(settings.minimum_version)

        self.correlator = Correlator(self.send, default_timeout=settings.request_timeout)

        self._ws: Any = None
        self._state = ConnectionState.DISCONNECTED
        self._write_lock = asyncio.Lock()
        self._read_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._closing = False
        self._starting = False
        self._closed = asyncio.Event()
        self._fatal_error: BaseException | None = None

        self.ha_version: HAVersion | None = None
        self.reconnect_count = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is ConnectionState.READY

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.info("Connection state changed", old=self._state.value, new=state.value)
            self._state = state

    # =========================================================================
    # Startup
    # =========================================================================

    async def start(self) -> None:
        """Connect, authenticate, start background tasks and run on_ready.

        Raises:
            TransportError: The hub could not be dialed.
            AuthenticationError: Authentication was rejected or never succeeded.
            MinimumVersionError: The hub is too old.
        """
        if self._state is ConnectionState.READY:
            return

        self._closing = False
        self._closed.clear()
        self._fatal_error = None

        # A drop before the first on_ready completes fails start() instead of reconnecting
        self._starting = True
        try:
            await self._establish()
            if self._on_ready is not None:
                await self._on_ready()
        except InvalidAuthError:
            await self._cancel_reconnect()
            await self._teardown()
            self._set_state(ConnectionState.FAILED)
            raise
        except BaseException:
            await self._cancel_reconnect()
            await self._teardown()
            self._set_state(ConnectionState.DISCONNECTED)
            raise
        finally:
            self._starting = False

    async def _establish(self) -> None:
        await self.connect()
        await self.authenticate()
        self._set_state(ConnectionState.READY)
        self._read_task = asyncio.create_task(self._read_loop())
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def connect(self) -> None:
        """Dial the websocket. Failures are not retried here."""
        self._set_state(ConnectionState.CONNECTING)
        url = self._settings.websocket_url
        logger.debug("Connecting to Home Assistant websocket", url=url)
        try:
            self._ws = await self._connect_factory(url)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            logger.error("Unable to dial Home Assistant", url=url, error=str(e))
            raise TransportError(f"unable to dial {url}: {e}") from e

    async def authenticate(self) -> None:
        """Run the auth phase on the freshly dialed socket.

        Raises:
            ProtocolError: The greeting was not auth_required.
            MinimumVersionError: The advertised version is too old.
            InvalidAuthError: The hub rejected the token (not retried).
            AuthRetriesExhaustedError: No auth_ok/auth_invalid within the budget.
        """
        self._set_state(ConnectionState.AUTHENTICATING)

        try:
            greeting = AuthMessage.model_validate(await self._recv_json())
        except (ConnectionClosed, ValidationError, ValueError) as e:
            raise ProtocolError(f"unable to read greeting: {e}") from e

        if greeting.type != MessageType.AUTH_REQUIRED.value:
            raise ProtocolError(f"expected auth_required, got: {greeting.type}")

        self._check_version(greeting.ha_version)

        attempts = self._settings.auth_attempts
        for attempt in range(1, attempts + 1):
            try:
                await self.send(auth_frame(self._settings.token))
                reply = AuthMessage.model_validate(await self._recv_json())
            except (ConnectionClosed, OSError, TransportError, ValidationError, ValueError) as e:
                logger.warning("Auth exchange failed", attempt=attempt, error=str(e))
                await self._sleep(self._settings.auth_retry_delay)
                continue

            if reply.type == MessageType.AUTH_OK.value:
                logger.info("Authenticated with Home Assistant", ha_version=str(self.ha_version))
                return

            if reply.type == MessageType.AUTH_INVALID.value:
                logger.error("Home Assistant rejected access token", message=reply.message)
                raise InvalidAuthError(reply.message or "Invalid access token")

            logger.warning("Unexpected auth reply", type=reply.type, attempt=attempt)
            await self._sleep(self._settings.auth_retry_delay)

        raise AuthRetriesExhaustedError(attempts)

    def _check_version(self, raw_version: str | None) -> None:
        try:
            version = HAVersion.parse(raw_version or "")
        except ValueError as e:
            raise MinimumVersionError(raw_version, str(self._minimum_version)) from e

        self.ha_version = version
        if not version.at_least(self._minimum_version):
            raise MinimumVersionError(raw_version, str(self._minimum_version))

    async def _recv_json(self) -> Any:
        if self._ws is None:
            raise NotConnectedError("websocket is not connected")
        return json.loads(await self._ws.recv())

    # =========================================================================
    # Writing
    # =========================================================================

    async def send(self, frame: dict[str, Any]) -> None:
        """Write one frame; all writers are serialized through one lock.

        Raises:
            NotConnectedError: No socket is open.
            TransportError: The write failed.
        """
        async with self._write_lock:
            ws = self._ws
            if ws is None:
                raise NotConnectedError("websocket is not connected")
            try:
                await ws.send(json.dumps(frame))
            except (ConnectionClosed, OSError) as e:
                raise TransportError(f"error sending message: {e}") from e

    # =========================================================================
    # Reading
    # =========================================================================

    async def _read_loop(self) -> None:
        ws = self._ws
        while True:
            try:
                raw = await ws.recv()
            except asyncio.CancelledError:
                raise
            except (ConnectionClosed, OSError) as e:
                if not self._closing:
                    logger.error("Error reading message", error=str(e))
                    self.request_reconnect()
                return
            self.handle_frame(raw)

    def handle_frame(self, raw: str | bytes) -> None:
        """Route one inbound frame by its ``type``; bad frames are dropped."""
        try:
            frame = json.loads(raw)
        except ValueError:
            logger.warning("Invalid JSON from websocket", frame=str(raw)[:100])
            return

        if not isinstance(frame, dict):
            logger.warning("Unexpected frame shape", frame=str(raw)[:100])
            return

        frame_type = frame.get("type")
        if frame_type in (MessageType.RESULT.value, MessageType.PONG.value):
            if not self.correlator.resolve(frame):
                logger.warning(
                    "Dropping reply for unknown request", id=frame.get("id"), type=frame_type
                )
        elif frame_type == MessageType.EVENT.value:
            if self._on_event is None:
                return
            try:
                self._on_event(frame)
            except Exception:
                logger.exception("Error processing event", id=frame.get("id"))
        else:
            logger.warning("Unknown message type", type=frame_type)

    # =========================================================================
    # Heartbeat
    # =========================================================================

    async def _heartbeat_loop(self) -> None:
        missed = 0
        max_missed = self._settings.max_missed_heartbeats

        while True:
            await self._sleep(self._settings.heartbeat_interval)
            try:
                await self.correlator.request(
                    command_frame(MessageType.PING), timeout=self._settings.heartbeat_timeout
                )
                missed = 0
            except CommandTimeoutError:
                missed += 1
                logger.warning("Ping timeout", missed=missed, max_missed=max_missed)
                if missed >= max_missed:
                    logger.error("Ping failed repeatedly, reconnecting", missed=missed)
                    self.request_reconnect()
                    return
            except (ConnectionLostError, TransportError) as e:
                logger.debug("Heartbeat stopped", error=str(e))
                return

    # =========================================================================
    # Reconnect / Close
    # =========================================================================

    def request_reconnect(self) -> None:
        """Schedule a reconnect unless one is running or the client is closing.

        While start() or a reconnect is still running on_ready, the link is
        abandoned instead so that their pending requests fail promptly.
        """
        if self._closing or self._state is ConnectionState.FAILED:
            return
        reconnecting = self._reconnect_task is not None and not self._reconnect_task.done()
        if self._starting or reconnecting:
            self.correlator.reset("connection lost")
            return
        self._set_state(ConnectionState.RECONNECTING)
        self._reconnect_task = asyncio.create_task(self.reconnect())

    async def reconnect(self) -> None:
        """Tear down the socket and loop connect/authenticate/on_ready until it works.

        Stops only on success, close(), or an explicit credential rejection.
        """
        self.reconnect_count += 1
        logger.warning("Reconnecting to Home Assistant", attempt=self.reconnect_count)

        attempt = 0
        while not self._closing:
            await self._teardown()
            self._set_state(ConnectionState.RECONNECTING)
            attempt += 1
            try:
                await self._establish()
                if self._on_ready is not None:
                    await self._on_ready()
                logger.info("Reconnected to Home Assistant", attempts=attempt)
                return
            except InvalidAuthError as e:
                await self._teardown()
                self._set_state(ConnectionState.FAILED)
                self._fail(e)
                return
            except (HASSWSError, OSError) as e:
                logger.warning("Reconnect failed, trying again", attempt=attempt, error=str(e))
            await self._sleep(self._settings.reconnect_delay)

    async def _teardown(self) -> None:
        """Stop background tasks, close the socket and abandon pending requests."""
        current = asyncio.current_task()
        for task in (self._read_task, self._heartbeat_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._read_task = None
        self._heartbeat_task = None

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug("Error closing websocket", error=str(e))

        self.correlator.reset("connection closed" if self._closing else "connection reset")

    async def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is None or task is asyncio.current_task() or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _fail(self, error: BaseException) -> None:
        self._fatal_error = error
        self._closed.set()

    async def close(self) -> None:
        """Close the connection and stop all background work."""
        self._closing = True
        await self._cancel_reconnect()
        await self._teardown()
        if self._state is not ConnectionState.FAILED:
            self._set_state(ConnectionState.DISCONNECTED)
        self._closed.set()
        logger.info("Disconnected from Home Assistant")

    async def wait_closed(self) -> None:
        """Block until close() or a fatal failure; re-raises the fatal error."""
        await self._closed.wait()
        if self._fatal_error is not None:
            raise self._fatal_error

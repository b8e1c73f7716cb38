"""Tests for the websocket connection lifecycle.

Tests cover:
- Greeting and minimum version checks
- Auth retry budget and explicit rejection
- Frame routing in the read loop
- Heartbeat miss detection
- Reconnect: id reset, orphaned requests, retry and fatal rejection
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest
from conftest import FakeHub, wait_for

from hassws.config import ClientSettings
from hassws.connection import ConnectionManager, ConnectionState
from hassws.correlator import INITIAL_ID
from hassws.errors import (
    AuthRetriesExhaustedError,
    ConnectionLostError,
    InvalidAuthError,
    MinimumVersionError,
    NotConnectedError,
    ProtocolError,
    TransportError,
)
from hassws.messages import command_frame


def make_manager(settings: ClientSettings, hub: FakeHub, **kwargs) -> ConnectionManager:
    return ConnectionManager(settings, connect_factory=hub.connect, **kwargs)


# =============================================================================
# Startup / Authentication Tests
# =============================================================================


class TestAuthentication:
    """Tests for the auth phase."""

    @pytest.mark.asyncio
    async def test_start_reaches_ready(self, settings: ClientSettings, hub: FakeHub) -> None:
        """A normal handshake should end in READY with the hub version recorded."""
        manager = make_manager(settings, hub)
        await manager.start()
        try:
            assert manager.state is ConnectionState.READY
            assert str(manager.ha_version) == "2024.6.0"
            assert hub.ws.sent_of_type("auth") == [{"type": "auth", "access_token": "secret-token"}]
        finally:
            await manager.close()
        assert manager.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_auth_retry_budget_is_bounded(self, settings: ClientSettings, hub: FakeHub) -> None:
        """Five auth_required replies should fail with a fixed number of attempts."""
        hub.auth_replies = [{"type": "auth_required"}] * 5
        manager = make_manager(settings, hub)

        with pytest.raises(AuthRetriesExhaustedError) as exc_info:
            await manager.start()

        assert exc_info.value.attempts == 5
        assert len(hub.ws.sent_of_type("auth")) == 5
        assert manager.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_auth_invalid_fails_immediately(self, settings: ClientSettings, hub: FakeHub) -> None:
        """auth_invalid on attempt 2 should stop without further attempts."""
        hub.auth_replies = [
            {"type": "auth_required"},
            {"type": "auth_invalid", "message": "Invalid access token or password"},
        ]
        manager = make_manager(settings, hub)

        with pytest.raises(InvalidAuthError, match="Invalid access token"):
            await manager.start()

        assert len(hub.ws.sent_of_type("auth")) == 2
        assert manager.state is ConnectionState.FAILED

    @pytest.mark.asyncio
    async def test_unexpected_greeting(self, settings: ClientSettings, hub: FakeHub) -> None:
        """A greeting other than auth_required is a protocol error."""
        hub.greeting = {"type": "auth_ok"}
        manager = make_manager(settings, hub)

        with pytest.raises(ProtocolError):
            await manager.start()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("version", ["2023.12.4", "dev", ""])
    async def test_minimum_version(self, settings: ClientSettings, hub: FakeHub, version: str) -> None:
        """Old or unparseable hub versions should be rejected before auth."""
        hub.version = version
        manager = make_manager(settings, hub)

        with pytest.raises(MinimumVersionError):
            await manager.start()

        assert hub.ws.sent_of_type("auth") == []

    @pytest.mark.asyncio
    async def test_dial_failure_raises_transport_error(self, settings: ClientSettings, hub: FakeHub) -> None:
        """Dial failures should surface as TransportError."""
        hub.dial_errors = 1
        manager = make_manager(settings, hub)

        with pytest.raises(TransportError):
            await manager.start()

    @pytest.mark.asyncio
    async def test_send_without_socket(self, settings: ClientSettings, hub: FakeHub) -> None:
        """Sending before connecting should raise NotConnectedError."""
        manager = make_manager(settings, hub)
        with pytest.raises(NotConnectedError):
            await manager.send({"type": "ping"})


# =============================================================================
# Read Loop Tests
# =============================================================================


class TestFrameRouting:
    """Tests for handle_frame."""

    def test_event_frames_go_to_handler(self, settings: ClientSettings) -> None:
        """Event frames should be handed to on_event."""
        on_event = MagicMock()
        manager = ConnectionManager(settings, on_event=on_event)

        manager.handle_frame('{"id": 4, "type": "event", "event": {}}')

        on_event.assert_called_once_with({"id": 4, "type": "event", "event": {}})

    def test_bad_frames_are_dropped(self, settings: ClientSettings) -> None:
        """Undecodable, non-object and unknown frames should be dropped."""
        on_event = MagicMock()
        manager = ConnectionManager(settings, on_event=on_event)

        manager.handle_frame("not json")
        manager.handle_frame("[1, 2]")
        manager.handle_frame('{"type": "mystery"}')
        manager.handle_frame('{"id": 99, "type": "result", "success": true}')

        on_event.assert_not_called()

    def test_handler_errors_are_contained(self, settings: ClientSettings) -> None:
        """A failing event handler should not break the read loop."""
        manager = ConnectionManager(settings, on_event=MagicMock(side_effect=RuntimeError("boom")))
        manager.handle_frame('{"id": 1, "type": "event", "event": {}}')


# =============================================================================
# Heartbeat / Reconnect Tests
# =============================================================================


class TestReconnect:
    """Tests for heartbeat failure detection and reconnect."""

    @pytest.mark.asyncio
    async def test_missed_pongs_reconnect_once(self, settings: ClientSettings, hub: FakeHub) -> None:
        """Three consecutive missed pongs should trigger exactly one reconnect."""
        settings = settings.model_copy(
            update={"heartbeat_interval": 0.01, "heartbeat_timeout": 0.02, "max_missed_heartbeats": 3}
        )
        hub.muted_pings = {0}
        manager = make_manager(settings, hub)
        await manager.start()
        try:
            await wait_for(lambda: manager.reconnect_count == 1 and manager.is_ready)
            await asyncio.sleep(0.1)

            assert manager.reconnect_count == 1
            assert len(hub.sockets) == 2
            assert len(hub.sockets[0].sent_of_type("ping")) == 3
            assert hub.sockets[0].closed
        finally:
            await manager.close()

    @pytest.mark.asyncio
    async def test_answered_ping_resets_miss_count(
        self, settings: ClientSettings, hub: FakeHub
    ) -> None:
        """Misses separated by a pong never add up to max_missed_heartbeats."""
        settings = settings.model_copy(
            update={"heartbeat_interval": 0.01, "heartbeat_timeout": 0.02, "max_missed_heartbeats": 3}
        )
        hub.ping_every = 3
        manager = make_manager(settings, hub)
        await manager.start()
        try:
            await wait_for(lambda: len(hub.ws.sent_of_type("ping")) >= 10)

            assert manager.reconnect_count == 0
            assert manager.is_ready
            assert len(hub.sockets) == 1
        finally:
            await manager.close()

    @pytest.mark.asyncio
    async def test_drop_during_startup_fails_start(
        self, settings: ClientSettings, hub: FakeHub
    ) -> None:
        """A drop before on_ready finishes fails start() and leaves nothing running."""
        hub.silent = {"get_config"}

        async def on_ready() -> None:
            await manager.correlator.send_and_await(command_frame("get_config"))

        manager = make_manager(settings, hub, on_ready=on_ready)
        start = asyncio.create_task(manager.start())
        await wait_for(lambda: bool(hub.sockets) and bool(hub.ws.sent_of_type("get_config")))

        hub.ws.drop()

        with pytest.raises(ConnectionLostError):
            await start
        await asyncio.sleep(0.05)

        assert manager.state is ConnectionState.DISCONNECTED
        assert manager.reconnect_count == 0
        assert len(hub.sockets) == 1
        assert hub.ws.closed
        await manager.close()

    @pytest.mark.asyncio
    async def test_reconnect_resets_ids_and_fails_orphans(self, settings: ClientSettings, hub: FakeHub) -> None:
        """A dropped socket should fail in-flight requests and restart ids."""
        hub.silent = {"get_config"}
        manager = make_manager(settings, hub)
        await manager.start()
        try:
            for _ in range(3):
                manager.correlator.next_id()
            request = asyncio.create_task(manager.correlator.send_and_await(command_frame("get_config")))
            await wait_for(lambda: manager.correlator.pending_count == 1)
            generation = manager.correlator.generation

            hub.ws.drop()

            with pytest.raises(ConnectionLostError):
                await request
            await wait_for(lambda: manager.is_ready and len(hub.sockets) == 2)

            assert manager.correlator.generation == generation + 1
            assert manager.correlator.pending_count == 0
            assert manager.correlator.next_id() == INITIAL_ID
        finally:
            await manager.close()

    @pytest.mark.asyncio
    async def test_reconnect_retries_dial_failures(self, settings: ClientSettings, hub: FakeHub) -> None:
        """Reconnect should keep dialing until the hub is back."""
        manager = make_manager(settings, hub)
        await manager.start()
        try:
            hub.dial_errors = 2
            hub.ws.drop()

            await wait_for(lambda: manager.is_ready and len(hub.sockets) == 2)
            assert manager.reconnect_count == 1
        finally:
            await manager.close()

    @pytest.mark.asyncio
    async def test_on_ready_runs_after_every_connect(self, settings: ClientSettings, hub: FakeHub) -> None:
        """on_ready should run on start and again after a reconnect."""
        calls = []

        async def on_ready() -> None:
            calls.append(len(hub.sockets))

        manager = make_manager(settings, hub, on_ready=on_ready)
        await manager.start()
        try:
            hub.ws.drop()
            await wait_for(lambda: len(calls) == 2)
            assert calls == [1, 2]
        finally:
            await manager.close()

    @pytest.mark.asyncio
    async def test_rejected_credential_is_fatal(self, settings: ClientSettings, hub: FakeHub) -> None:
        """auth_invalid during reconnect should stop retrying and surface the error."""
        manager = make_manager(settings, hub)
        await manager.start()

        hub.auth_replies = [{"type": "auth_invalid", "message": "revoked"}]
        hub.ws.drop()

        with pytest.raises(InvalidAuthError, match="revoked"):
            await asyncio.wait_for(manager.wait_closed(), 2.0)
        assert manager.state is ConnectionState.FAILED
        assert len(hub.sockets) == 2
        await manager.close()

    @pytest.mark.asyncio
    async def test_close_ends_wait_closed(self, settings: ClientSettings, hub: FakeHub) -> None:
        """close() should release wait_closed() without an error."""
        manager = make_manager(settings, hub)
        await manager.start()

        waiter = asyncio.create_task(manager.wait_closed())
        await manager.close()

        await asyncio.wait_for(waiter, 1.0)
        assert hub.ws.closed

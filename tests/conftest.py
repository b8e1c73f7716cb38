"""Shared fixtures: an in-memory websocket and a scripted Home Assistant hub."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import pytest
from websockets.exceptions import ConnectionClosedError

from hassws.config import ClientSettings

_CLOSE = object()


def state(entity_id: str, value: str, **attributes: Any) -> dict[str, Any]:
    """Build a hub state object."""
    return {
        "entity_id": entity_id,
        "state": value,
        "attributes": attributes,
        "last_changed": "2024-06-01T12:00:00+00:00",
        "last_updated": "2024-06-01T12:00:00+00:00",
        "context": {"id": "ctx", "user_id": None, "parent_id": None},
    }


class FakeWebSocket:
    """In-memory websocket; frames sent by the client are handed to ``responder``."""

    def __init__(self, responder: Callable[[FakeWebSocket, dict[str, Any]], None] | None = None) -> None:
        self.inbox: asyncio.Queue[Any] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.responder = responder
        self.closed = False

    def feed(self, frame: dict[str, Any] | str) -> None:
        self.inbox.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self) -> None:
        """Simulate the hub closing the connection."""
        self.inbox.put_nowait(_CLOSE)

    def sent_of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [frame for frame in self.sent if frame.get("type") == message_type]

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionClosedError(None, None)
        frame = json.loads(data)
        self.sent.append(frame)
        if self.responder is not None:
            self.responder(self, frame)

    async def recv(self) -> str:
        item = await self.inbox.get()
        if item is _CLOSE:
            raise ConnectionClosedError(None, None)
        return item

    async def close(self) -> None:
        self.closed = True
        self.inbox.put_nowait(_CLOSE)


class FakeHub:
    """Scripted hub answering auth, ping and commands on every dialed socket."""

    def __init__(self, version: str = "2024.6.0", states: list[dict[str, Any]] | None = None) -> None:
        self.version = version
        self.states = states or []
        self.greeting: dict[str, Any] | None = None
        self.auth_replies: list[dict[str, Any]] = []
        self.dial_errors = 0
        self.muted_pings: set[int] = set()
        self.ping_every = 1
        self.silent: set[str] = set()
        self.results: dict[str, Any] = {}
        self.failures: dict[str, tuple[str, str]] = {}
        self.sockets: list[FakeWebSocket] = []

    @property
    def ws(self) -> FakeWebSocket:
        return self.sockets[-1]

    async def connect(self, url: str, **kwargs: Any) -> FakeWebSocket:
        if self.dial_errors:
            self.dial_errors -= 1
            raise OSError("connection refused")
        ws = FakeWebSocket(self.respond)
        ws.feed(self.greeting or {"type": "auth_required", "ha_version": self.version})
        self.sockets.append(ws)
        return ws

    def respond(self, ws: FakeWebSocket, frame: dict[str, Any]) -> None:
        message_type = frame["type"]

        if message_type == "auth":
            reply = self.auth_replies.pop(0) if self.auth_replies else {"type": "auth_ok", "ha_version": self.version}
            ws.feed(reply)
            return

        if message_type == "ping":
            answered = len(ws.sent_of_type("ping")) % self.ping_every == 0
            if answered and self.sockets.index(ws) not in self.muted_pings:
                ws.feed({"id": frame["id"], "type": "pong"})
            return

        if message_type in self.silent:
            return

        if message_type in self.failures:
            code, message = self.failures[message_type]
            ws.feed(
                {
                    "id": frame["id"],
                    "type": "result",
                    "success": False,
                    "error": {"code": code, "message": message},
                }
            )
            return

        result = self.states if message_type == "get_states" else self.results.get(message_type)
        ws.feed({"id": frame["id"], "type": "result", "success": True, "result": result})

    def subscription_id(self, event_type: str | None = "state_changed", ws: FakeWebSocket | None = None) -> int:
        ws = ws or self.ws
        for frame in reversed(ws.sent):
            if frame["type"] == "subscribe_events" and frame.get("event_type") == event_type:
                return frame["id"]
        raise AssertionError(f"no subscription for {event_type}")

    def push_state(self, entity_id: str, old: str | None, new: str | None, **attributes: Any) -> None:
        """Push a state_changed event on the current socket."""
        self.ws.feed(
            {
                "id": self.subscription_id(),
                "type": "event",
                "event": {
                    "event_type": "state_changed",
                    "data": {
                        "entity_id": entity_id,
                        "old_state": state(entity_id, old, **attributes) if old is not None else None,
                        "new_state": state(entity_id, new, **attributes) if new is not None else None,
                    },
                    "origin": "LOCAL",
                    "time_fired": "2024-06-01T12:00:01+00:00",
                    "context": {"id": "ctx"},
                },
            }
        )


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def hub() -> FakeHub:
    return FakeHub(
        states=[
            state("light.kitchen", "off", friendly_name="Kitchen"),
            state("switch.garage", "on"),
            state("sensor.temperature", "21.5", unit_of_measurement="°C"),
        ]
    )


@pytest.fixture
def settings() -> ClientSettings:
    return ClientSettings(
        _env_file=None,
        host="hass.local",
        token="secret-token",
        request_timeout=1.0,
        heartbeat_interval=30.0,
        heartbeat_timeout=1.0,
        auth_retry_delay=0,
        reconnect_delay=0,
    )

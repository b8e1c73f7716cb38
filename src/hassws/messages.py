"""Pydantic models for websocket frames.

Home Assistant's WebSocket API flow:
1. Connect to ws://host:port/api/websocket
2. Receive {"type": "auth_required", "ha_version": "..."}
3. Send {"type": "auth", "access_token": "token"}
4. Receive {"type": "auth_ok"} or {"type": "auth_invalid", "message": "..."}
5. Send commands with {"id": n, "type": "command_type", ...}
6. Receive {"id": n, "type": "result", "success": true, "result": ...}
   and {"id": n, "type": "event", "event": {...}} for subscriptions
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MessageType(str, Enum):
    """Frame ``type`` discriminator values."""

    # Auth
    AUTH = "auth"
    AUTH_INVALID = "auth_invalid"
    AUTH_OK = "auth_ok"
    AUTH_REQUIRED = "auth_required"

    # Commands
    RESULT = "result"
    EVENT = "event"
    FIRE_EVENT = "fire_event"
    SUBSCRIBE_EVENTS = "subscribe_events"
    UNSUBSCRIBE_EVENTS = "unsubscribe_events"
    SUBSCRIBE_TRIGGER = "subscribe_trigger"
    CALL_SERVICE = "call_service"
    GET_CONFIG = "get_config"
    GET_PANELS = "get_panels"
    GET_SERVICES = "get_services"
    GET_STATES = "get_states"

    # Heartbeat
    PING = "ping"
    PONG = "pong"


STATE_CHANGED = "state_changed"


class AuthMessage(BaseModel):
    """Greeting and auth replies (auth_required / auth_ok / auth_invalid)."""

    model_config = ConfigDict(extra="allow")

    type: str
    ha_version: str | None = None
    message: str | None = None


class ErrorPayload(BaseModel):
    """Error block of a failed result."""

    code: str = ""
    message: str = ""

    @field_validator("code", "message", mode="before")
    @classmethod
    def stringify(cls, v: Any) -> str:
        """Some integrations report numeric codes."""
        return "" if v is None else str(v)


class ResultMessage(BaseModel):
    """Reply to a command."""

    model_config = ConfigDict(extra="allow")

    id: int
    type: str = MessageType.RESULT.value
    success: bool = False
    error: ErrorPayload | None = None
    result: Any = None


class EventMessage(BaseModel):
    """Event pushed for a subscription."""

    model_config = ConfigDict(extra="allow")

    id: int
    type: str = MessageType.EVENT.value
    event: dict[str, Any] = Field(default_factory=dict)


def auth_frame(access_token: str) -> dict[str, Any]:
    return {"type": MessageType.AUTH.value, "access_token": access_token}


def command_frame(message_type: MessageType | str, **fields: Any) -> dict[str, Any]:
    """Build an outbound command frame; ``id`` is assigned by the correlator."""
    if isinstance(message_type, MessageType):
        message_type = message_type.value
    frame: dict[str, Any] = {"type": message_type}
    frame.update({key: value for key, value in fields.items() if value is not None})
    return frame

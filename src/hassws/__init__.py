"""Async client for Home Assistant's WebSocket API.

Provides:
- WebSocketClient for commands, subscriptions and state-change listeners
- RestClient for the REST API
- Filter options and typed conditions for listeners
- Typed models for entity states and events
"""

from hassws.actions import ActionBuilder
from hassws.client import Subscription, WebSocketClient
from hassws.comparator import Condition, ConditionType, compare
from hassws.config import ClientSettings, get_settings
from hassws.connection import ConnectionState
from hassws.errors import (
    AuthenticationError,
    AuthRetriesExhaustedError,
    CommandError,
    CommandTimeoutError,
    ConfigurationError,
    ConnectionLostError,
    HASSWSError,
    InvalidAuthError,
    InvalidPatternError,
    MinimumVersionError,
    NotConnectedError,
    ProtocolError,
    RestError,
    TransportError,
)
from hassws.listeners import FilterOptions, Matcher
from hassws.logs import setup_logging
from hassws.models import EntitySnapshot, Event, ServiceTarget, StateChangeEvent
from hassws.rest import RestClient
from hassws.state import StateValue
from hassws.version import HAVersion

__version__ = "0.1.0"

__all__ = [
    "ActionBuilder",
    "AuthRetriesExhaustedError",
    "AuthenticationError",
    "ClientSettings",
    "CommandError",
    "CommandTimeoutError",
    "Condition",
    "ConditionType",
    "ConfigurationError",
    "ConnectionLostError",
    "ConnectionState",
    "EntitySnapshot",
    "Event",
    "FilterOptions",
    "HASSWSError",
    "HAVersion",
    "InvalidAuthError",
    "InvalidPatternError",
    "Matcher",
    "MinimumVersionError",
    "NotConnectedError",
    "ProtocolError",
    "RestClient",
    "RestError",
    "ServiceTarget",
    "StateChangeEvent",
    "StateValue",
    "Subscription",
    "TransportError",
    "WebSocketClient",
    "__version__",
    "compare",
    "get_settings",
    "setup_logging",
]

"""Home Assistant websocket client.

Wires the connection, correlator, state cache and listener dispatch together
and exposes the command API. Handles:
- Connecting and authenticating with a long-lived access token
- Keeping a local cache of every entity's state, seeded on (re)connect
- State-change listeners by entity, regex, domain or substring
- Generic event and trigger subscriptions, re-issued after reconnects
- Service calls, event firing and raw commands
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar, Union

import structlog
from pydantic import BaseModel, ValidationError

from hassws.actions import ActionBuilder, Actions
from hassws.cache import StateCache
from hassws.config import ClientSettings, get_settings
from hassws.connection import ConnectFactory, ConnectionManager, ConnectionState
from hassws.dispatcher import Dispatcher, WorkerPool, invoke_callback
from hassws.errors import ConfigurationError
from hassws.listeners import (
    FilterOptions,
    ListenerRegistration,
    ListenerRegistry,
    Matcher,
    StateChangeCallback,
)
from hassws.messages import STATE_CHANGED, EventMessage, MessageType, command_frame
from hassws.models import EntitySnapshot, Event, ServiceTarget, StateChangeEvent
from hassws.rest import RestClient
from hassws.version import HAVersion

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

EventCallback = Callable[[Any], Union[Awaitable[Any], None]]
TriggerCallback = Callable[[dict[str, Any]], Union[Awaitable[Any], None]]
TypedStateCallback = Callable[[Any, Any], Union[Awaitable[Any], None]]


def decode_state(model: type[ModelT], snapshot: EntitySnapshot | None) -> ModelT | None:
    """Validate a full state object into ``model``; None stays None.

    Raises:
        ValidationError: If the state does not fit ``model``.
    """
    if snapshot is None:
        return None
    return model.model_validate(snapshot.to_dict())


class SubscriptionKind(str, Enum):
    EVENT = "event"
    TRIGGER = "trigger"


@dataclass
class Subscription:
    """An application subscription; re-issued with a new id after every reconnect."""

    kind: SubscriptionKind
    callback: Callable[[Any], Any]
    event_type: str | None = None
    trigger: dict[str, Any] | list[dict[str, Any]] | None = None
    model: type[BaseModel] | None = None
    id: int | None = field(default=None, compare=False)

    def frame(self) -> dict[str, Any]:
        if self.kind is SubscriptionKind.TRIGGER:
            return command_frame(MessageType.SUBSCRIBE_TRIGGER, trigger=self.trigger)
        return command_frame(MessageType.SUBSCRIBE_EVENTS, event_type=self.event_type)


class WebSocketClient:
    """Async client for Home Assistant's WebSocket API.

    Example:
        async with WebSocketClient("homeassistant.local", token) as client:
            client.add_domain_listener("light", on_light_change)
            target = ServiceTarget(entity_id=["light.kitchen"])
            await client.call_service("light", "turn_on", target=target)
            await client.run_forever()
    """

    def __init__(
        self,
        host: str | None = None,
        token: str | None = None,
        *,
        settings: ClientSettings | None = None,
        connect_factory: ConnectFactory | None = None,
        pool: WorkerPool | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            host: Hub host, optionally with port or scheme (e.g., "homeassistant.local:8123")
            token: Long-lived access token
            settings: Settings to start from; defaults to the environment
            connect_factory: Coroutine dialing the websocket, mainly for tests
            pool: Worker pool for listener callbacks

        Raises:
            ConfigurationError: If no host or token is available.
        """
        settings = settings or get_settings()
        updates = {key: value.strip() for key, value in (("host", host), ("token", token)) if value}
        if updates:
            settings = settings.model_copy(update=updates)

        if not settings.host:
            raise ConfigurationError("host is required")
        if not settings.token:
            raise ConfigurationError("access token is required")

        self._settings = settings
        self._cache = StateCache()
        self._registry = ListenerRegistry()
        self._pool = pool or WorkerPool(settings.max_workers)
        self._dispatcher = Dispatcher(self._registry, self._pool, ordered=settings.ordered_delivery)
        self._connection = ConnectionManager(
            settings,
            on_event=self._on_event,
            on_ready=self._on_ready,
            connect_factory=connect_factory,
        )

        self._subscriptions: list[Subscription] = []
        self._active: dict[int, Subscription] = {}
        self._state_subscription_id: int | None = None
        self._live = False
        self._rest: RestClient | None = None
        self.actions = Actions(self)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def connected(self) -> bool:
        return self._connection.is_ready

    @property
    def ha_version(self) -> HAVersion | None:
        return self._connection.ha_version

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    @property
    def cache(self) -> StateCache:
        return self._cache

    @property
    def rest(self) -> RestClient:
        """REST client sharing this client's settings, created on first use."""
        if self._rest is None:
            self._rest = RestClient(self._settings)
        return self._rest

    async def __aenter__(self) -> WebSocketClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> None:
        """Connect, authenticate, seed the cache and subscribe to state changes."""
        if self._pool.closed:
            self._pool.reopen()
        await self._connection.start()
        logger.info(
            "Connected to Home Assistant",
            url=self._settings.websocket_url,
            ha_version=str(self.ha_version),
            entities=len(self._cache),
        )

    async def run_forever(self) -> None:
        """Connect if needed and block until closed.

        Raises:
            InvalidAuthError: The hub rejected the token during a reconnect.
        """
        if not self._connection.is_ready:
            await self.connect()
        await self._connection.wait_closed()

    async def close(self) -> None:
        """Close the websocket, stop dispatch and release the REST client."""
        self._live = False
        await self._connection.close()
        await self._dispatcher.shutdown()
        if self._rest is not None:
            await self._rest.close()

    async def join(self) -> None:
        """Wait until every queued event and subscription callback has run."""
        await self._dispatcher.join()
        await self._pool.join()

    async def _on_ready(self) -> None:
        self._live = False
        self._active.clear()
        self._state_subscription_id = None

        states = await self.get_states()
        self._cache.replace_all(states)
        logger.debug("Seeded state cache", entities=len(states))

        subscription_id = self._connection.correlator.next_id()
        self._state_subscription_id = subscription_id
        await self._connection.correlator.send_and_await(
            command_frame(
                MessageType.SUBSCRIBE_EVENTS, id=subscription_id, event_type=STATE_CHANGED
            )
        )

        # Iterates the live list so subscriptions added meanwhile are issued too
        for subscription in self._subscriptions:
            await self._issue(subscription)

        self._live = True

    async def _issue(self, subscription: Subscription) -> None:
        subscription_id = self._connection.correlator.next_id()
        subscription.id = subscription_id
        self._active[subscription_id] = subscription
        try:
            frame = {**subscription.frame(), "id": subscription_id}
            await self._connection.correlator.send_and_await(frame)
        except Exception:
            self._active.pop(subscription_id, None)
            raise
        logger.info(
            "Subscribed",
            kind=subscription.kind.value,
            event_type=subscription.event_type,
            id=subscription_id,
        )

    # =========================================================================
    # Inbound events
    # =========================================================================

    def _on_event(self, frame: dict[str, Any]) -> None:
        try:
            message = EventMessage.model_validate(frame)
        except ValidationError as e:
            logger.warning("Dropping invalid event frame", error=str(e))
            return

        event = message.event
        if message.id == self._state_subscription_id:
            if event.get("event_type") != STATE_CHANGED:
                return
            try:
                change = StateChangeEvent.from_dict(event.get("data") or {})
            except KeyError:
                logger.warning("Dropping state_changed event without entity_id", id=message.id)
                return
            # Cache write happens before dispatch so listeners see the new state
            self._cache.apply(change)
            self._dispatcher.dispatch(change)
            return

        subscription = self._active.get(message.id)
        if subscription is None:
            logger.debug("Dropping event for unknown subscription", id=message.id)
            return

        payload: Any
        if subscription.kind is SubscriptionKind.TRIGGER:
            payload = (event.get("variables") or {}).get("trigger", {})
        elif subscription.model is not None:
            try:
                payload = subscription.model.model_validate(event.get("data") or {})
            except ValidationError as e:
                logger.warning(
                    "Dropping event that does not fit model",
                    id=message.id,
                    model=subscription.model.__name__,
                    error=str(e),
                )
                return
        else:
            payload = Event.from_dict(event)

        try:
            self._pool.spawn(invoke_callback(subscription.callback, payload))
        except RuntimeError:
            logger.debug("Dropping event, worker pool shut down", id=message.id)

    # =========================================================================
    # Cache
    # =========================================================================

    def states(self) -> dict[str, EntitySnapshot]:
        """Copy of every cached entity state."""
        return self._cache.all()

    def get_state(self, entity_id: str) -> EntitySnapshot | None:
        """Cached state of one entity, or None if unknown."""
        return self._cache.get(entity_id)

    def get_typed_state(self, entity_id: str, model: type[ModelT]) -> ModelT | None:
        """Cached state of one entity validated into ``model``, or None if unknown.

        Raises:
            ValidationError: If the cached state does not fit ``model``.
        """
        return decode_state(model, self._cache.get(entity_id))

    # =========================================================================
    # Commands
    # =========================================================================

    async def send_command(
        self, message_type: MessageType | str, timeout: float | None = None, **fields: Any
    ) -> Any:
        """Send any command and return its result payload.

        Raises:
            CommandError: The hub answered success=false.
            CommandTimeoutError: No reply in time.
            ConnectionLostError: The connection was reset while waiting.
            NotConnectedError: No socket is open.
        """
        frame = command_frame(message_type, **fields)
        return await self._connection.correlator.send_and_await(frame, timeout)

    async def get_states(self) -> list[EntitySnapshot]:
        result = await self.send_command(MessageType.GET_STATES)
        snapshots = []
        for item in result or []:
            try:
                snapshots.append(EntitySnapshot.from_dict(item))
            except KeyError:
                logger.warning("Skipping state without entity_id")
        return snapshots

    async def get_config(self) -> dict[str, Any]:
        return await self.send_command(MessageType.GET_CONFIG)

    async def get_services(self) -> dict[str, Any]:
        return await self.send_command(MessageType.GET_SERVICES)

    async def get_panels(self) -> dict[str, Any]:
        return await self.send_command(MessageType.GET_PANELS)

    async def call_service(
        self,
        domain: str,
        service: str,
        service_data: dict[str, Any] | None = None,
        target: ServiceTarget | None = None,
        return_response: bool = False,
    ) -> Any:
        """Call a service.

        Args:
            domain: Service domain (e.g., "light")
            service: Service name (e.g., "turn_on")
            service_data: Service fields (e.g., {"brightness": 255})
            target: Entities, devices, areas, floors or labels to act on
            return_response: Ask the hub for the service's response data

        Returns:
            The result payload (context, plus response when requested).
        """
        result = await self.send_command(
            MessageType.CALL_SERVICE,
            domain=domain,
            service=service,
            service_data=service_data or None,
            target=target.to_dict() if target is not None and not target.is_empty() else None,
            return_response=True if return_response else None,
        )
        logger.info("Called service", domain=domain, service=service)
        return result

    async def fire_event(self, event_type: str, event_data: dict[str, Any] | None = None) -> Any:
        result = await self.send_command(
            MessageType.FIRE_EVENT, event_type=event_type, event_data=event_data
        )
        logger.info("Fired event", event_type=event_type)
        return result

    async def ping(self) -> float:
        """Round-trip a ping; returns the latency in seconds."""
        loop = asyncio.get_running_loop()
        started = loop.time()
        await self._connection.correlator.request(command_frame(MessageType.PING))
        return loop.time() - started

    def action(self, domain: str, service: str) -> ActionBuilder:
        return ActionBuilder(self, domain, service)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def _subscribe(self, subscription: Subscription) -> Subscription:
        self._subscriptions.append(subscription)
        if not self._live:
            return subscription
        try:
            await self._issue(subscription)
        except Exception:
            self._subscriptions.remove(subscription)
            raise
        return subscription

    async def subscribe_events(
        self,
        event_type: str | None,
        callback: EventCallback,
        model: type[BaseModel] | None = None,
    ) -> Subscription:
        """Subscribe to bus events of ``event_type`` (all events when None).

        Subscriptions made before connect() are issued once the client is ready.

        Args:
            event_type: Event type to receive, or None for every event
            callback: Called with an Event, or with the decoded model when given
            model: Pydantic model the event's ``data`` is validated into;
                events whose data does not fit are logged and dropped
        """
        subscription = Subscription(
            SubscriptionKind.EVENT, callback, event_type=event_type, model=model
        )
        return await self._subscribe(subscription)

    async def subscribe_trigger(
        self,
        trigger: dict[str, Any] | list[dict[str, Any]],
        callback: TriggerCallback,
    ) -> Subscription:
        """Subscribe to an automation trigger; the callback gets the trigger variables."""
        subscription = Subscription(SubscriptionKind.TRIGGER, callback, trigger=trigger)
        return await self._subscribe(subscription)

    # =========================================================================
    # State-change listeners
    # =========================================================================

    def register(
        self,
        matcher: Matcher,
        callback: StateChangeCallback,
        options: FilterOptions | None = None,
    ) -> ListenerRegistration:
        return self._registry.register(matcher, callback, options)

    def add_entity_listener(
        self, entity_id: str, callback: StateChangeCallback, options: FilterOptions | None = None
    ) -> ListenerRegistration:
        return self.register(Matcher.entity(entity_id), callback, options)

    def add_entities_listener(
        self,
        entity_ids: Iterable[str],
        callback: StateChangeCallback,
        options: FilterOptions | None = None,
    ) -> list[ListenerRegistration]:
        return [self.add_entity_listener(entity_id, callback, options) for entity_id in entity_ids]

    def add_typed_entity_listener(
        self,
        entity_id: str,
        model: type[ModelT],
        callback: TypedStateCallback,
        options: FilterOptions | None = None,
    ) -> ListenerRegistration:
        """Listen to one entity with its states decoded into a pydantic model.

        ``callback(old, new)`` receives model instances built from the full
        state objects, or None where the entity did not exist. Changes whose
        states fail validation are logged and dropped.

        Example:
            class LightAttributes(BaseModel):
                brightness: int = 0

            class Light(BaseModel):
                state: str
                attributes: LightAttributes

            client.add_typed_entity_listener("light.kitchen", Light, on_light)
        """

        async def decode(event: StateChangeEvent) -> None:
            try:
                old = decode_state(model, event.old_state)
                new = decode_state(model, event.new_state)
            except ValidationError as e:
                logger.warning(
                    "Dropping state change that does not fit model",
                    entity_id=event.entity_id,
                    model=model.__name__,
                    error=str(e),
                )
                return
            await invoke_callback(callback, old, new)

        return self.add_entity_listener(entity_id, decode, options)

    def add_regex_listener(
        self, pattern: str, callback: StateChangeCallback, options: FilterOptions | None = None
    ) -> ListenerRegistration:
        """Raises InvalidPatternError if ``pattern`` does not compile."""
        return self.register(Matcher.pattern(pattern), callback, options)

    def add_domain_listener(
        self, domain: str, callback: StateChangeCallback, options: FilterOptions | None = None
    ) -> ListenerRegistration:
        return self.register(Matcher.domain(domain), callback, options)

    def add_substring_listener(
        self, substring: str, callback: StateChangeCallback, options: FilterOptions | None = None
    ) -> ListenerRegistration:
        return self.register(Matcher.substring(substring), callback, options)

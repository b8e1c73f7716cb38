"""Home Assistant data models.

Dataclasses for the objects pushed and returned by the hub:
- EntitySnapshot (one entity's state + attributes)
- StateChangeEvent (old/new snapshot pair from a state_changed event)
- Event (generic pushed event)
- ServiceTarget (entity/device/area/floor/label targeting)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from hassws.state import StateValue


def get_domain(entity_id: str) -> str:
    """Return the domain of ``domain.name``, or "" for a malformed id."""
    parts = entity_id.split(".")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return ""
    return parts[0]


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO timestamp from the hub; None when missing or invalid."""
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class Context:
    """Context attached to state changes and service calls."""

    id: str = ""
    user_id: str | None = None
    parent_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Context:
        data = data or {}
        return cls(
            id=data.get("id", ""),
            user_id=data.get("user_id"),
            parent_id=data.get("parent_id"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "user_id": self.user_id, "parent_id": self.parent_id}


@dataclass
class EntitySnapshot:
    """State of one entity at a point in time.

    Snapshots are replaced wholesale on every state change, never merged.
    """

    entity_id: str
    state: StateValue
    attributes: dict[str, Any] = field(default_factory=dict)
    last_changed: datetime | None = None
    last_updated: datetime | None = None
    last_reported: datetime | None = None
    context: Context = field(default_factory=Context)

    def __post_init__(self) -> None:
        if not isinstance(self.state, StateValue):
            self.state = StateValue(self.state)

    @property
    def domain(self) -> str:
        return get_domain(self.entity_id)

    @property
    def friendly_name(self) -> str:
        return self.attributes.get("friendly_name", self.entity_id)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntitySnapshot:
        """Parse a state object from get_states or a state_changed event.

        Raises:
            KeyError: If ``entity_id`` is missing.
        """
        state = data.get("state")
        return cls(
            entity_id=data["entity_id"],
            state=StateValue("" if state is None else str(state)),
            attributes=dict(data.get("attributes") or {}),
            last_changed=parse_timestamp(data.get("last_changed")),
            last_updated=parse_timestamp(data.get("last_updated")),
            last_reported=parse_timestamp(data.get("last_reported")),
            context=Context.from_dict(data.get("context")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the hub's JSON shape."""
        return {
            "entity_id": self.entity_id,
            "state": str(self.state),
            "attributes": self.attributes,
            "last_changed": self.last_changed.isoformat() if self.last_changed else None,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "last_reported": self.last_reported.isoformat() if self.last_reported else None,
            "context": self.context.to_dict(),
        }


@dataclass
class StateChangeEvent:
    """A state_changed event: the entity's previous and new snapshot.

    ``old_state`` is None for a newly created entity and ``new_state`` is
    None for a removed one.
    """

    entity_id: str
    old_state: EntitySnapshot | None = None
    new_state: EntitySnapshot | None = None

    @property
    def domain(self) -> str:
        return get_domain(self.entity_id)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StateChangeEvent:
        old_state = data.get("old_state")
        new_state = data.get("new_state")
        return cls(
            entity_id=data["entity_id"],
            old_state=EntitySnapshot.from_dict(old_state) if old_state else None,
            new_state=EntitySnapshot.from_dict(new_state) if new_state else None,
        )


@dataclass
class Event:
    """A generic event pushed through a subscribe_events subscription."""

    event_type: str
    data: dict[str, Any] = field(default_factory=dict)
    origin: str = ""
    time_fired: datetime | None = None
    context: Context = field(default_factory=Context)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        return cls(
            event_type=data.get("event_type", ""),
            data=dict(data.get("data") or {}),
            origin=data.get("origin", ""),
            time_fired=parse_timestamp(data.get("time_fired")),
            context=Context.from_dict(data.get("context")),
        )


@dataclass
class ServiceTarget:
    """Targets of a service call; empty fields are omitted on the wire."""

    entity_id: list[str] = field(default_factory=list)
    device_id: list[str] = field(default_factory=list)
    area_id: list[str] = field(default_factory=list)
    floor_id: list[str] = field(default_factory=list)
    label_id: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not any(self.to_dict().values())

    def to_dict(self) -> dict[str, list[str]]:
        fields = {
            "entity_id": self.entity_id,
            "device_id": self.device_id,
            "area_id": self.area_id,
            "floor_id": self.floor_id,
            "label_id": self.label_id,
        }
        return {key: list(value) for key, value in fields.items() if value}

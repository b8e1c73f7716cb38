"""Local cache of entity states.

The cache is written only by the client's event path (state_changed pushes
and full get_states fetches). Reads return copies so callers never observe a
snapshot that is being replaced.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterable, Iterator

from hassws.models import EntitySnapshot, StateChangeEvent


class StateCache:
    """Mapping of entity_id to its latest EntitySnapshot."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[str, EntitySnapshot] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def __contains__(self, entity_id: object) -> bool:
        with self._lock:
            return entity_id in self._states

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._states))

    def apply(self, change: StateChangeEvent) -> bool:
        """Store the event's new state.

        Returns:
            False when the event carries no new state (cache left untouched).
        """
        if change.new_state is None:
            return False
        with self._lock:
            self._states[change.entity_id] = change.new_state
        return True

    def replace_all(self, snapshots: Iterable[EntitySnapshot]) -> int:
        """Replace the whole cache with a fresh full-state fetch."""
        states = {snapshot.entity_id: snapshot for snapshot in snapshots}
        with self._lock:
            self._states = states
        return len(states)

    def get(self, entity_id: str) -> EntitySnapshot | None:
        with self._lock:
            snapshot = self._states.get(entity_id)
            return copy.deepcopy(snapshot) if snapshot is not None else None

    def all(self) -> dict[str, EntitySnapshot]:
        """Copy of every cached snapshot."""
        with self._lock:
            return copy.deepcopy(self._states)

    def by_domain(self, domain: str) -> list[EntitySnapshot]:
        with self._lock:
            return [copy.deepcopy(s) for s in self._states.values() if s.domain == domain]

    def clear(self) -> None:
        with self._lock:
            self._states.clear()

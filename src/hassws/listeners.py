"""State-change listener registry and filter evaluation.

Listeners are registered under one of four match strategies:
- exact entity_id
- regular expression searched in the entity_id
- domain (the part of ``domain.name`` before the dot)
- substring contained in the entity_id

Each registration carries FilterOptions that decide, per event, whether the
callback actually fires.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

import structlog

from hassws.comparator import Condition, ConditionType, compare
from hassws.errors import ComparisonError, InvalidPatternError
from hassws.models import StateChangeEvent, get_domain

logger = structlog.get_logger(__name__)

StateChangeCallback = Callable[[StateChangeEvent], Union[Awaitable[Any], None]]


@dataclass
class FilterOptions:
    """Suppression flags and conditions for a listener."""

    ignore_unavailable: bool = False
    ignore_unknown: bool = False
    ignore_previous_unavailable: bool = False
    ignore_previous_unknown: bool = False
    ignore_previous_missing: bool = False
    ignore_no_change: bool = False
    for_duration: float = 0.0  # seconds to wait before the callback runs
    conditions: list[Condition] = field(default_factory=list)

    def with_condition(self, condition_type: ConditionType | str, operand: Any) -> FilterOptions:
        """Append a condition and return self for chaining."""
        self.conditions.append(Condition(ConditionType(condition_type), operand))
        return self


def should_fire(event: StateChangeEvent, options: FilterOptions) -> bool:
    """Decide whether a matched listener fires for ``event``.

    Suppression flags are checked first. Conditions are an allow path only:
    the first matching condition returns True early, and a listener whose
    conditions all fail to match still fires.
    """
    old, new = event.old_state, event.new_state

    if options.ignore_previous_missing and old is None:
        return False

    if options.ignore_previous_unknown and old is not None and old.state.is_unknown:
        return False

    if options.ignore_previous_unavailable and old is not None and old.state.is_unavailable:
        return False

    if options.ignore_unknown and new is not None and new.state.is_unknown:
        return False

    if options.ignore_unavailable and new is not None and new.state.is_unavailable:
        return False

    if options.ignore_no_change:
        old_value = None if old is None else str(old.state)
        new_value = None if new is None else str(new.state)
        if old_value == new_value:
            return False

    # TODO: make non-matching conditions suppress once the intended semantics are confirmed
    observed = new.state if new is not None else None
    for condition in options.conditions:
        try:
            if compare(condition, observed):
                return True
        except ComparisonError as e:
            logger.error("Failed to compare state values", entity_id=event.entity_id, error=str(e))

    return True


class MatchKind(str, Enum):
    """How a listener is matched against an entity_id."""

    ENTITY = "entity"
    PATTERN = "pattern"
    DOMAIN = "domain"
    SUBSTRING = "substring"


@dataclass(frozen=True)
class Matcher:
    """Match key for a listener registration."""

    kind: MatchKind
    key: str

    @classmethod
    def entity(cls, entity_id: str) -> Matcher:
        return cls(MatchKind.ENTITY, entity_id)

    @classmethod
    def pattern(cls, pattern: str) -> Matcher:
        return cls(MatchKind.PATTERN, pattern)

    @classmethod
    def domain(cls, domain: str) -> Matcher:
        return cls(MatchKind.DOMAIN, domain)

    @classmethod
    def substring(cls, substring: str) -> Matcher:
        return cls(MatchKind.SUBSTRING, substring)


@dataclass
class ListenerRegistration:
    """A registered callback with its filters."""

    matcher: Matcher
    callback: StateChangeCallback
    options: FilterOptions = field(default_factory=FilterOptions)


class ListenerRegistry:
    """Four independent registries of state-change listeners.

    Registration never checks uniqueness; a listener registered twice fires
    twice. There is no removal.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_entity: dict[str, list[ListenerRegistration]] = {}
        self._by_pattern: dict[re.Pattern[str], list[ListenerRegistration]] = {}
        self._by_domain: dict[str, list[ListenerRegistration]] = {}
        self._by_substring: dict[str, list[ListenerRegistration]] = {}

    def __len__(self) -> int:
        registries = (self._by_entity, self._by_pattern, self._by_domain, self._by_substring)
        with self._lock:
            return sum(
                len(listeners) for registry in registries for listeners in registry.values()
            )

    def register(
        self,
        matcher: Matcher,
        callback: StateChangeCallback,
        options: FilterOptions | None = None,
    ) -> ListenerRegistration:
        """Register ``callback`` under ``matcher``.

        Raises:
            InvalidPatternError: If a PATTERN matcher does not compile.
        """
        registration = ListenerRegistration(matcher, callback, options or FilterOptions())

        if matcher.kind is MatchKind.PATTERN:
            try:
                pattern = re.compile(matcher.key)
            except re.error as e:
                raise InvalidPatternError(f"invalid regex pattern {matcher.key!r}: {e}") from e
            with self._lock:
                self._by_pattern.setdefault(pattern, []).append(registration)
        else:
            registry = {
                MatchKind.ENTITY: self._by_entity,
                MatchKind.DOMAIN: self._by_domain,
                MatchKind.SUBSTRING: self._by_substring,
            }[matcher.kind]
            with self._lock:
                registry.setdefault(matcher.key, []).append(registration)

        logger.debug("Added listener", kind=matcher.kind.value, key=matcher.key)
        return registration

    def match(self, entity_id: str) -> list[ListenerRegistration]:
        """Return every registration matching ``entity_id``.

        Order: exact id, patterns, domain, substrings. A registration matched
        by several keys appears once per key.
        """
        matched: list[ListenerRegistration] = []
        domain = get_domain(entity_id)

        with self._lock:
            matched.extend(self._by_entity.get(entity_id, ()))

            for pattern, listeners in self._by_pattern.items():
                if pattern.search(entity_id):
                    matched.extend(listeners)

            if domain:
                matched.extend(self._by_domain.get(domain, ()))

            for substring, listeners in self._by_substring.items():
                if substring in entity_id:
                    matched.extend(listeners)

        return matched

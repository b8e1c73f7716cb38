"""Raw entity state values.

Home Assistant reports every state as a string. StateValue keeps the raw
text and interprets it on demand.
"""

from __future__ import annotations

import re
from datetime import datetime

UNAVAILABLE = "unavailable"
UNKNOWN = "unknown"

_TRUE_WORDS = frozenset({"on", "true", "locked", "open"})
_FALSE_WORDS = frozenset({"off", "false", "unlocked", "closed"})
INTEGER_RE = re.compile(r"[+-]?\d+")


def string_to_bool(value: str) -> bool:
    """Interpret a state string as a boolean.

    Recognises on/off, true/false, locked/unlocked and open/closed
    (case-insensitive).

    Raises:
        ValueError: If the text is not one of the known words.
    """
    lowered = value.lower()
    if lowered in _TRUE_WORDS:
        return True
    if lowered in _FALSE_WORDS:
        return False
    raise ValueError(f"state is not a boolean: {value}")


class StateValue(str):
    """A Home Assistant state, stored as text and parsed on demand."""

    __slots__ = ()

    @property
    def is_unavailable(self) -> bool:
        return self == UNAVAILABLE

    @property
    def is_unknown(self) -> bool:
        return self == UNKNOWN

    def as_bool(self) -> bool:
        return string_to_bool(self)

    def as_bool_default(self, default: bool) -> bool:
        """Interpret as boolean, falling back to ``default`` for other text."""
        try:
            return string_to_bool(self)
        except ValueError:
            return default

    def as_int(self) -> int:
        if not INTEGER_RE.fullmatch(self):
            raise ValueError(f"state is not an integer: {self!s}")
        return int(self)

    def as_float(self) -> float:
        return float(self)

    def as_time(self, fmt: str | None = None) -> datetime:
        """Parse the state as a timestamp.

        Args:
            fmt: strptime format; ISO 8601 is assumed when omitted.
        """
        if fmt is None:
            return datetime.fromisoformat(self.replace("Z", "+00:00"))
        return datetime.strptime(self, fmt)

"""Home Assistant version parsing and comparison."""

from __future__ import annotations

import re
from dataclasses import dataclass

# Calendar versions such as 2024.1.0, 2024.12.0b3 or 2025.2.0.dev20250101
_VERSION_RE = re.compile(r"^\s*(\d+)\.(\d+)(?:\.(\d+))?")


@dataclass(frozen=True, order=True)
class HAVersion:
    """A major.minor.patch version; ordering compares the three parts."""

    major: int
    minor: int = 0
    patch: int = 0

    @classmethod
    def parse(cls, value: str) -> HAVersion:
        """Parse a version string.

        Pre-release and dev suffixes after the patch number are ignored.

        Raises:
            ValueError: If the string does not start with major.minor.
        """
        match = _VERSION_RE.match(value or "")
        if not match:
            raise ValueError(f"invalid version: {value!r}, expected format Major.Minor.Patch")
        major, minor, patch = match.groups()
        return cls(int(major), int(minor), int(patch or 0))

    def at_least(self, other: HAVersion | str) -> bool:
        if isinstance(other, str):
            other = HAVersion.parse(other)
        return self >= other

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

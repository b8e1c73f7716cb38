"""Typed value comparison for listener conditions.

A Condition pairs a ConditionType with an operand. The operand's kind is
classified into a closed set (OperandKind) and the observed value, usually
the raw state text, is coerced into that kind before comparing. Comparisons
are observed-first: ``Condition(GREATER, 100)`` asks "observed > 100".
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from hassws.errors import CoercionError, UnsupportedOperandError, UnsupportedOperatorError
from hassws.state import INTEGER_RE, string_to_bool


class ConditionType(str, Enum):
    """Comparison requested by a condition."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER = "greater"
    GREATER_EQUAL = "greater_equal"
    LESS = "less"
    LESS_EQUAL = "less_equal"
    IN = "in"
    NOT_IN = "not_in"


class OperandKind(str, Enum):
    """Closed set of operand kinds a condition may carry."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    STRING_LIST = "string_list"
    INTEGER_LIST = "integer_list"
    FLOAT_LIST = "float_list"
    BOOLEAN_LIST = "boolean_list"


_SCALAR_TO_LIST = {
    OperandKind.STRING: OperandKind.STRING_LIST,
    OperandKind.INTEGER: OperandKind.INTEGER_LIST,
    OperandKind.FLOAT: OperandKind.FLOAT_LIST,
    OperandKind.BOOLEAN: OperandKind.BOOLEAN_LIST,
}

_EQUALITY = frozenset({ConditionType.EQUALS, ConditionType.NOT_EQUALS})
_ORDERING = frozenset(
    {
        ConditionType.EQUALS,
        ConditionType.NOT_EQUALS,
        ConditionType.GREATER,
        ConditionType.GREATER_EQUAL,
        ConditionType.LESS,
        ConditionType.LESS_EQUAL,
    }
)
_MEMBERSHIP = frozenset({ConditionType.IN, ConditionType.NOT_IN})


def _scalar_kind(value: Any) -> OperandKind | None:
    # bool must be tested before int
    if isinstance(value, bool):
        return OperandKind.BOOLEAN
    if isinstance(value, int):
        return OperandKind.INTEGER
    if isinstance(value, float):
        return OperandKind.FLOAT
    if isinstance(value, str):
        return OperandKind.STRING
    return None


def operand_kind(operand: Any) -> OperandKind:
    """Classify an operand.

    Lists and tuples must be homogeneous; a mix of ints and floats counts as
    a float list and an empty sequence as a string list.

    Raises:
        UnsupportedOperandError: For any other type or a mixed sequence.
    """
    kind = _scalar_kind(operand)
    if kind is not None:
        return kind

    if isinstance(operand, (list, tuple, frozenset, set)):
        kinds = {_scalar_kind(item) for item in operand}
        if not kinds:
            return OperandKind.STRING_LIST
        if None in kinds:
            raise UnsupportedOperandError(f"unsupported element type in {operand!r}")
        if kinds == {OperandKind.INTEGER, OperandKind.FLOAT}:
            return OperandKind.FLOAT_LIST
        if len(kinds) == 1:
            return _SCALAR_TO_LIST[kinds.pop()]
        raise UnsupportedOperandError(f"mixed element types in {operand!r}")

    raise UnsupportedOperandError(f"unsupported data type: {type(operand).__name__}")


@dataclass(frozen=True)
class Condition:
    """A single comparison against an entity's new state."""

    type: ConditionType
    operand: Any

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", ConditionType(self.type))

    @property
    def kind(self) -> OperandKind:
        return operand_kind(self.operand)


# =============================================================================
# Coercion
# =============================================================================


def to_string(value: Any) -> str:
    if isinstance(value, str):
        return str(value)
    raise CoercionError(f"type {type(value).__name__} is not convertible to string: {value!r}")


def to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise CoercionError(f"type bool is not convertible to integer: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and INTEGER_RE.fullmatch(value):
        return int(value)
    raise CoercionError(f"value is not convertible to integer: {value!r}")


def to_float(value: Any) -> float:
    if isinstance(value, bool):
        raise CoercionError(f"type bool is not convertible to float: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            pass
    raise CoercionError(f"value is not convertible to float: {value!r}")


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        try:
            return string_to_bool(value)
        except ValueError as e:
            raise CoercionError(str(e)) from e
    raise CoercionError(f"type {type(value).__name__} is not convertible to bool: {value!r}")


_COERCE = {
    OperandKind.STRING: to_string,
    OperandKind.INTEGER: to_int,
    OperandKind.FLOAT: to_float,
    OperandKind.BOOLEAN: to_bool,
}

# =============================================================================
# Comparison
# =============================================================================


def _compare_ordered(condition_type: ConditionType, observed: Any, operand: Any) -> bool:
    if condition_type is ConditionType.EQUALS:
        return observed == operand
    if condition_type is ConditionType.NOT_EQUALS:
        return observed != operand
    if condition_type is ConditionType.GREATER:
        return observed > operand
    if condition_type is ConditionType.GREATER_EQUAL:
        return observed >= operand
    if condition_type is ConditionType.LESS:
        return observed < operand
    return observed <= operand


def _compare_membership(
    condition_type: ConditionType, observed: Any, operand: Sequence[Any]
) -> bool:
    contained = observed in operand
    return contained if condition_type is ConditionType.IN else not contained


def _require(condition: Condition, kind: OperandKind, allowed: frozenset[ConditionType]) -> None:
    if condition.type not in allowed:
        raise UnsupportedOperatorError(
            f"unsupported conditional type for {kind.value}: {condition.type.value}"
        )


def compare(condition: Condition, observed: Any) -> bool:
    """Evaluate ``condition`` against an observed value.

    Raises:
        UnsupportedOperandError: The operand is not a supported kind.
        UnsupportedOperatorError: The condition type is invalid for the kind.
        CoercionError: The observed value cannot be converted to the kind.
    """
    kind = condition.kind

    if kind in (OperandKind.STRING, OperandKind.INTEGER):
        _require(condition, kind, _ORDERING)
        return _compare_ordered(condition.type, _COERCE[kind](observed), condition.operand)

    if kind is OperandKind.FLOAT:
        _require(condition, kind, _ORDERING)
        return _compare_ordered(condition.type, to_float(observed), float(condition.operand))

    if kind is OperandKind.BOOLEAN:
        _require(condition, kind, _EQUALITY)
        return _compare_ordered(condition.type, to_bool(observed), condition.operand)

    if kind is OperandKind.STRING_LIST:
        _require(condition, kind, _MEMBERSHIP)
        return _compare_membership(condition.type, to_string(observed), list(condition.operand))

    if kind is OperandKind.INTEGER_LIST:
        _require(condition, kind, _MEMBERSHIP)
        return _compare_membership(condition.type, to_int(observed), list(condition.operand))

    if kind is OperandKind.FLOAT_LIST:
        _require(condition, kind, _MEMBERSHIP)
        values = [float(item) for item in condition.operand]
        return _compare_membership(condition.type, to_float(observed), values)

    if kind is OperandKind.BOOLEAN_LIST:
        _require(condition, kind, _MEMBERSHIP)
        return _compare_membership(condition.type, to_bool(observed), list(condition.operand))

    raise UnsupportedOperandError(f"unhandled operand kind: {kind}")

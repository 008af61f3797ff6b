"""Total ordering and structural equality over RethinkDB values.

RethinkDB orders values of different types by a fixed ranking of type
classes and values of the same class by class-specific rules. Both sides of a
sync are read in that native index order, so the diff engine has to compare
primary keys with exactly the same rules or the merge-join walks off course.
"""

import base64
import binascii
import math
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from functools import cmp_to_key
from numbers import Real
from typing import Any, Callable

REQL_TYPE = "$reql_type$"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class ValueClass(IntEnum):
    """Type classes in ascending index order."""

    ARRAY = 0
    BOOLEAN = 1
    NULL = 2
    NUMBER = 3
    OBJECT = 4
    BINARY = 5
    TIME = 6
    STRING = 7
    # Non-finite numbers. RethinkDB cannot store them, they only show up
    # in client-side values and are not ordered against themselves.
    INDETERMINATE = 8


def _pseudo_type(value: dict) -> str | None:
    reql_type = value.get(REQL_TYPE)
    return reql_type if isinstance(reql_type, str) else None


def classify(value: Any) -> ValueClass | None:
    """Return the value class of ``value`` or None when it has none."""
    if isinstance(value, bool):
        return ValueClass.BOOLEAN
    if value is None:
        return ValueClass.NULL
    if isinstance(value, Real):
        try:
            finite = math.isfinite(value)
        except OverflowError:
            # Integers beyond the double range
            finite = False
        return ValueClass.NUMBER if finite else ValueClass.INDETERMINATE
    if isinstance(value, str):
        return ValueClass.STRING
    if isinstance(value, (list, tuple)):
        return ValueClass.ARRAY
    if isinstance(value, (bytes, bytearray, memoryview)):
        return ValueClass.BINARY
    if isinstance(value, datetime):
        return ValueClass.TIME
    if isinstance(value, dict):
        pseudo = _pseudo_type(value)
        if pseudo is None:
            if all(isinstance(key, str) for key in value):
                return ValueClass.OBJECT
            return None
        if pseudo == "TIME":
            return ValueClass.TIME if _epoch_offset(value) is not None else None
        if pseudo == "BINARY":
            return ValueClass.BINARY
        return None
    return None


def _cmp(a: Any, b: Any) -> int:
    return (a > b) - (a < b)


def _epoch_offset(value: dict) -> timedelta | None:
    """Time since the epoch of a TIME pseudo-type, or None if it has none."""
    epoch_time = value.get("epoch_time")
    if isinstance(epoch_time, bool) or not isinstance(epoch_time, Real):
        return None
    try:
        return timedelta(seconds=float(epoch_time))
    except (ValueError, OverflowError):
        return None


def _instant(value: datetime | dict) -> timedelta:
    if isinstance(value, dict):
        return _epoch_offset(value) or timedelta(0)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value - EPOCH


def _offset(value: datetime | dict) -> str:
    if isinstance(value, dict):
        return str(value.get("timezone", "+00:00"))
    offset = value.utcoffset() or timedelta(0)
    sign = "-" if offset < timedelta(0) else "+"
    minutes = abs(offset) // timedelta(minutes=1)
    return f"{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def _raw_bytes(value: Any) -> bytes | None:
    if isinstance(value, dict):
        try:
            return base64.b64decode(value["data"], validate=True)
        except (KeyError, TypeError, ValueError, binascii.Error):
            return None
    return bytes(value)


def _compare_arrays(a: Any, b: Any) -> int | None:
    for left, right in zip(a, b):
        result = compare_values(left, right)
        if result != 0:
            return result
    return _cmp(len(a), len(b))


def _compare_objects(a: dict, b: dict) -> int | None:
    left_keys = sorted(a)
    right_keys = sorted(b)
    for left_key, right_key in zip(left_keys, right_keys):
        result = _cmp(left_key, right_key)
        if result != 0:
            return result
        result = compare_values(a[left_key], b[right_key])
        if result != 0:
            return result
    return _cmp(len(left_keys), len(right_keys))


def _compare_binaries(a: Any, b: Any) -> int | None:
    left, right = _raw_bytes(a), _raw_bytes(b)
    if left is None or right is None:
        return None
    return _cmp(left, right)


def _compare_times(a: Any, b: Any) -> int | None:
    return _cmp(_instant(a), _instant(b))


def _compare_indeterminate(a: Any, b: Any) -> int | None:
    return None


_SAME_CLASS: dict[ValueClass, Callable[[Any, Any], int | None]] = {
    ValueClass.ARRAY: _compare_arrays,
    ValueClass.BOOLEAN: _cmp,
    ValueClass.NULL: lambda a, b: 0,
    ValueClass.NUMBER: _cmp,
    ValueClass.OBJECT: _compare_objects,
    ValueClass.BINARY: _compare_binaries,
    ValueClass.TIME: _compare_times,
    ValueClass.STRING: _cmp,
    ValueClass.INDETERMINATE: _compare_indeterminate,
}


def compare_values(a: Any, b: Any) -> int | None:
    """Compare two values in RethinkDB index order.

    Args:
        a: Left value
        b: Right value

    Returns:
        -1, 0 or 1, or None when the pair cannot be ordered (a non-finite
        number against itself, or an operand with no value class). Never
        raises for unordered input.
    """
    left_class = classify(a)
    right_class = classify(b)
    if left_class is None or right_class is None:
        return None
    if left_class != right_class:
        return _cmp(left_class, right_class)
    return _SAME_CLASS[left_class](a, b)


def values_equal(a: Any, b: Any) -> bool:
    """Structural equality as the database stores values.

    Stricter than ``==``: booleans never equal numbers, and two times are
    equal only when both the instant and the stored UTC offset match.
    """
    value_class = classify(a)
    if value_class is None or value_class != classify(b):
        return False

    if value_class == ValueClass.ARRAY:
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    if value_class == ValueClass.OBJECT:
        return a.keys() == b.keys() and all(values_equal(a[key], b[key]) for key in a)
    if value_class == ValueClass.BINARY:
        left, right = _raw_bytes(a), _raw_bytes(b)
        return left is not None and left == right
    if value_class == ValueClass.TIME:
        return _instant(a) == _instant(b) and _offset(a) == _offset(b)
    if value_class == ValueClass.INDETERMINATE:
        return False
    return a == b


def _strict_compare(a: Any, b: Any) -> int:
    result = compare_values(a, b)
    if result is None:
        raise TypeError(f"values cannot be ordered: {a!r} vs {b!r}")
    return result


sort_key = cmp_to_key(_strict_compare)

"""
cohort_config.tier0_core.values
────────────────────────────────
Structural operations on JSON-like config values: deep equality and
default reconciliation.

Values are scalars (str, int, float, bool, None), mappings, or sequences.
``None`` means "absent": a mapping entry holding None is the same as a
missing entry.
"""
from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from typing import Any

Value = Any


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def equals(a: Value, b: Value) -> bool:
    """
    Deep structural equality.

    Mappings compare key-by-key in both directions, so an extra key on either
    side makes them unequal. Booleans never equal numbers.
    """
    if a is b:
        return True

    if isinstance(a, Mapping) and isinstance(b, Mapping):
        for key, value in a.items():
            if not equals(value, b.get(key)):
                return False
        for key, value in b.items():
            if not equals(value, a.get(key)):
                return False
        return True

    if _is_sequence(a) and _is_sequence(b):
        if len(a) != len(b):
            return False
        return all(equals(x, y) for x, y in zip(a, b))

    if isinstance(a, (Mapping, list, tuple)) or isinstance(b, (Mapping, list, tuple)):
        return False
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


def reconcile(value: Value, default: Value) -> Value:
    """
    Fill missing fields of ``value`` from ``default``, recursively.

    Returns ``value`` untouched unless both sides are mappings. Never mutates
    either input; fields taken from ``default`` are deep copies.

    >>> reconcile({"x": 1}, {"x": 0, "y": 2})
    {'x': 1, 'y': 2}
    """
    if not isinstance(value, Mapping) or not isinstance(default, Mapping):
        return value

    result: dict[str, Any] = {}
    for key, current in value.items():
        if current is None:
            continue
        result[key] = reconcile(current, default.get(key))

    for key, default_value in default.items():
        if result.get(key) is None and default_value is not None:
            result[key] = copy.deepcopy(default_value)
    return result


def resolve_or_default(value: Value, default: Value) -> Value:
    """``reconcile(value ?? default, default)``; the control-value rule."""
    if value is None:
        return copy.deepcopy(default)
    return reconcile(value, default)


__all__ = ["Value", "equals", "reconcile", "resolve_or_default"]

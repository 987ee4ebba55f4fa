"""Structural comparison of JSON-like values.

Compares an original resource with its recreated copy to detect:
- Fields added in the recreated resource
- Fields removed from the recreated resource
- Changed values, including array length changes

Volatile fields (identifiers, timestamps) are stripped before comparison so
that a freshly recreated resource can still compare equal to the original.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

DEFAULT_META_FIELDS = (
    "id",
    "_id",
    "createdAt",
    "updatedAt",
    "created_at",
    "updated_at",
    "timestamp",
)


class DiffType(Enum):
    """Types of structural differences."""

    ADDED = "added"  # Key only present in the actual value
    REMOVED = "removed"  # Key only present in the expected value
    CHANGED = "changed"  # Value differs at this path


@dataclass(frozen=True)
class Difference:
    """A single structural difference."""

    path: str  # Accessor path (e.g., "spec.ports[0].name")
    expected: Any
    actual: Any
    type: DiffType

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "path": self.path,
            "expected": self.expected,
            "actual": self.actual,
            "type": self.type.value,
        }


class _Missing:
    """Marker for an array element or key that does not exist."""

    def __repr__(self) -> str:
        return "<missing>"


_MISSING = _Missing()


def _external(value: Any) -> Any:
    return None if value is _MISSING else value


def _is_container(value: Any) -> bool:
    return isinstance(value, (dict, list))


def _primitives_equal(a: Any, b: Any) -> bool:
    # True == 1 in Python, but a boolean and a number are different JSON values
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


def deep_compare(expected: Any, actual: Any) -> list[Difference]:
    """Recursively compare two JSON-like values.

    Object keys are visited in the insertion order of the union (keys of
    ``expected`` first, then keys only present in ``actual``), so identical
    inputs always produce the same output.

    Args:
        expected: Original value
        actual: Value to compare against the original

    Returns:
        List of differences, empty when both values are structurally equal
    """
    differences: list[Difference] = []
    _compare(expected, actual, "", differences)
    return differences


def _compare(a: Any, b: Any, path: str, differences: list[Difference]) -> None:
    # Null or missing on either side
    if a is None or a is _MISSING or b is None or b is _MISSING:
        if a is not b:
            differences.append(
                Difference(path or "root", _external(a), _external(b), DiffType.CHANGED),
            )
        return

    # Primitives, or a primitive against a container
    if not _is_container(a) or not _is_container(b):
        if not _primitives_equal(a, b):
            differences.append(Difference(path or "root", a, b, DiffType.CHANGED))
        return

    if isinstance(a, list) and isinstance(b, list):
        if len(a) != len(b):
            length_path = f"{path}.length" if path else "length"
            differences.append(Difference(length_path, len(a), len(b), DiffType.CHANGED))

        for index in range(max(len(a), len(b))):
            left = a[index] if index < len(a) else _MISSING
            right = b[index] if index < len(b) else _MISSING
            _compare(left, right, f"{path}[{index}]", differences)
        return

    # An array against an object
    if isinstance(a, list) or isinstance(b, list):
        differences.append(Difference(path or "root", a, b, DiffType.CHANGED))
        return

    keys = list(a.keys())
    keys.extend(key for key in b if key not in a)

    for key in keys:
        key_path = f"{path}.{key}" if path else str(key)

        if key not in a:
            differences.append(Difference(key_path, None, b[key], DiffType.ADDED))
        elif key not in b:
            differences.append(Difference(key_path, a[key], None, DiffType.REMOVED))
        else:
            _compare(a[key], b[key], key_path, differences)


def strip_meta_fields(data: Any, extra_fields: list[str] | tuple[str, ...] = ()) -> Any:
    """Return a deep copy of ``data`` without volatile fields.

    Args:
        data: JSON-like value
        extra_fields: Field names removed in addition to DEFAULT_META_FIELDS

    Returns:
        Cleaned copy; the input is never modified
    """
    ignored = set(DEFAULT_META_FIELDS).union(extra_fields)
    return _strip(data, ignored)


def _strip(data: Any, ignored: set[str]) -> Any:
    if isinstance(data, list):
        return [_strip(item, ignored) for item in data]

    if isinstance(data, dict):
        return {key: _strip(value, ignored) for key, value in data.items() if key not in ignored}

    return data

"""Resource extraction from loosely shaped list responses.

List endpoints answer in several shapes: a bare array, an array wrapped
under ``data``/``items``/``results``, a paginated ``{"data": {"items": [...]}}``
envelope, or an object keyed by resource name. ``unwrap_items`` resolves
these in a fixed precedence; ``extract_records`` then derives an identifier
and display name for each raw item with ordered field probes.
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

# Envelope keys that never name a resource
WRAPPER_KEYS = frozenset({"data", "items", "results", "response", "payload", "_links"})

DEFAULT_SAMPLE_SIZE = 10

Accessor = Callable[[Mapping[str, Any]], Any]


def unwrap_items(body: Any) -> list[Any]:
    """Locate the resource collection inside a response body.

    Precedence:
    1. A bare array is the collection.
    2. ``data`` holding an object with an ``items`` array.
    3. ``data`` holding an array.
    4. ``items`` or ``results`` holding an array.
    5. The object's own keys as pseudo-records, skipping wrapper keys.

    Args:
        body: Decoded JSON response

    Returns:
        Raw items, empty for scalars and null
    """
    if isinstance(body, list):
        return body

    if not isinstance(body, dict):
        return []

    data = body.get("data")
    if isinstance(data, dict) and isinstance(data.get("items"), list):
        return data["items"]
    if isinstance(data, list):
        return data

    for key in ("items", "results"):
        if isinstance(body.get(key), list):
            return body[key]

    return [{"id": key, "name": key} for key in body if str(key).lower() not in WRAPPER_KEYS]


def field_accessor(name: str) -> Accessor:
    """Accessor reading one top-level field."""

    def access(item: Mapping[str, Any]) -> Any:
        return item.get(name)

    access.__name__ = f"field_{name}"
    return access


def field_chain(*names: str) -> tuple[Accessor, ...]:
    """Ordered accessors, one per field name."""
    return tuple(field_accessor(name) for name in names)


def _usable(value: Any) -> bool:
    if value is None or isinstance(value, (dict, list, bool)):
        return False
    return str(value) != ""


def first_match(item: Mapping[str, Any], accessors: Iterable[Accessor]) -> str | None:
    """Value of the first accessor yielding a non-empty scalar, as a string."""
    for accessor in accessors:
        value = accessor(item)
        if _usable(value):
            return str(value)
    return None


@dataclass(frozen=True)
class ExtractionRule:
    """Field probes for one discovery category."""

    id_fields: tuple[str, ...] = ("id", "_id", "name")
    name_fields: tuple[str, ...] = ("name", "alias", "displayName", "description")
    system_fields: tuple[str, ...] = ("system", "sourcesystem")

    @property
    def id_accessors(self) -> tuple[Accessor, ...]:
        return field_chain(*self.id_fields)

    @property
    def name_accessors(self) -> tuple[Accessor, ...]:
        return field_chain(*self.name_fields)

    @property
    def system_accessors(self) -> tuple[Accessor, ...]:
        return field_chain(*self.system_fields)


@dataclass(frozen=True)
class ResourceRecord:
    """A discovered resource usable as a path parameter value."""

    id: str | None = None
    name: str | None = None
    system: str | None = None
    raw: Any = None

    @property
    def identifier(self) -> str | None:
        """Value substituted into paths: the id, else the name."""
        return self.id or self.name

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "system": self.system}


def to_record(item: Any, rule: ExtractionRule) -> ResourceRecord | None:
    """Derive a record from one raw item, None when it has neither id nor name."""
    if isinstance(item, dict):
        record = ResourceRecord(
            id=first_match(item, rule.id_accessors),
            name=first_match(item, rule.name_accessors),
            system=first_match(item, rule.system_accessors),
            raw=item,
        )
    elif _usable(item):
        record = ResourceRecord(id=str(item), raw=item)
    else:
        return None

    if not record.identifier:
        return None
    return record


def extract_records(
    body: Any,
    rule: ExtractionRule | None = None,
    limit: int = DEFAULT_SAMPLE_SIZE,
) -> list[ResourceRecord]:
    """Extract up to ``limit`` usable records from a response body.

    Args:
        body: Decoded JSON response
        rule: Field probes, generic id/name probes when omitted
        limit: Maximum number of records kept

    Returns:
        Records in response order
    """
    rule = rule or ExtractionRule()
    records: list[ResourceRecord] = []

    for item in unwrap_items(body):
        record = to_record(item, rule)
        if record is not None:
            records.append(record)
        if len(records) >= limit:
            break

    return records

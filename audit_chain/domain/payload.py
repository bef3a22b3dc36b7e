"""
Event payload -- the schema-less value carried by every block.

Responsibility:
    Defines the JSON value sum type used for ``event_data`` and
    ``metadata`` and normalizes producer payloads into it.

    JSONValue = str | int | float | bool | None
              | list[JSONValue]
              | dict[str, JSONValue]

Invariants enforced:
    - The payload that is hashed is exactly the payload that is stored.
      Producer conveniences (Decimal, datetime, UUID, Enum, tuple) are
      converted here, once, so the JSON column round-trips to the hashed
      value on every backend.
    - Object keys are strings.  Integer keys would silently become strings
      after a JSON round-trip and change the hash, so they are rejected.
    - Non-finite floats have no JSON encoding and are rejected.  Integral
      floats become ints: JSONB stores numbers as ``numeric``, so ``1e16``
      reads back as ``10000000000000000`` and ``-0.0`` as ``0``, and the
      hash must not change with the round trip.

Failure modes:
    - InvalidPayloadError naming the offending path (e.g. ``$.lines[2].amount``).
"""

import math
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Union
from uuid import UUID

from audit_chain.exceptions import InvalidPayloadError
from audit_chain.utils.hashing import canonical_timestamp

JSONScalar = Union[str, int, float, bool, None]
JSONValue = Union[JSONScalar, list["JSONValue"], dict[str, "JSONValue"]]
Payload = dict[str, JSONValue]


def normalize_payload(value: Mapping[str, Any] | None) -> Payload:
    """
    Validate a producer payload and convert it to canonical JSON values.

    Preconditions:
        - ``value`` is a mapping with string keys, or None (empty payload).

    Postconditions:
        - Returns a new ``dict`` containing only JSONValue members.
        - ``normalize_payload(normalize_payload(x)) == normalize_payload(x)``.

    Raises:
        InvalidPayloadError: If any value has no canonical encoding.
    """
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise InvalidPayloadError(
            "$", f"payload must be a mapping, got {type(value).__name__}"
        )
    return _normalize_mapping(value, "$")


def _normalize_mapping(value: Mapping, path: str) -> Payload:
    result: Payload = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise InvalidPayloadError(
                path, f"object keys must be str, got {type(key).__name__}"
            )
        result[key] = _normalize_value(item, f"{path}.{key}")
    return result


def _normalize_value(value: Any, path: str) -> JSONValue:
    # Enum before str (str-mixin enums), bool before int (int subclass)
    if isinstance(value, Enum):
        return _normalize_value(value.value, path)
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str):
        return str(value)
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidPayloadError(path, f"non-finite float {value!r}")
        # numeric JSON columns return integral values (1e16, -0.0) as integers
        if value.is_integer():
            return int(value)
        return value
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise InvalidPayloadError(path, f"non-finite decimal {value!r}")
        return format(value.normalize(), "f")
    if isinstance(value, datetime):
        return canonical_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Mapping):
        return _normalize_mapping(value, path)
    if isinstance(value, (list, tuple)):
        return [
            _normalize_value(item, f"{path}[{i}]")
            for i, item in enumerate(value)
        ]
    raise InvalidPayloadError(
        path, f"unsupported type {type(value).__name__}"
    )

"""Conversion of Python values into insertAll-compatible structured values.

A structured value is one of three variants:

* scalar  -- ``None``, ``bool``, ``int``, finite ``float`` or ``str``
* list    -- ``list`` of structured values (BigQuery ``REPEATED`` fields)
* record  -- ``dict`` mapping field name to structured value

Records may nest to any depth. The walk below keeps its own stack instead of
recursing, so deep rows are limited by memory and not by the interpreter's
recursion limit. :class:`~bq_stream.core.batch.RowBatch` additionally checks
that each row encodes on the wire, where nesting is capped by the encoder.
"""

from __future__ import annotations

import base64
import dataclasses
import datetime
import decimal
import enum
import math
from collections.abc import Mapping
from typing import Any, Dict, Iterator, List, Tuple

from bq_stream.errors import SerializationError

Structured = Any  # None | bool | int | float | str | List[Structured] | Dict[str, Structured]

_CONTAINER = object()  # sentinel returned by _scalar for list/record inputs


def _join(path: str, key: Any) -> str:
    if isinstance(key, int):
        return f"{path}[{key}]"
    return f"{path}.{key}" if path else key


def _unwrap(value: Any) -> Any:
    while isinstance(value, enum.Enum):
        value = value.value
    return value


# BigQuery INT64; wider integers must be sent as Decimal (NUMERIC/BIGNUMERIC)
INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


def _check_utf8(text: str, path: str, what: str = "string") -> str:
    try:
        text.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise SerializationError(path, f"{what} is not valid UTF-8: {exc.reason}") from None
    return text


def _scalar(value: Any, path: str) -> Any:
    """Return the wire form of a scalar, or ``_CONTAINER`` for lists/records."""
    # bool before int, datetime before date: both are subclasses
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str):
        return _check_utf8(value, path)
    if isinstance(value, int):
        if not INT64_MIN <= value <= INT64_MAX:
            raise SerializationError(
                path, f"integer {value} is outside the INT64 range; use decimal.Decimal for NUMERIC")
        return int(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise SerializationError(path, f"non-finite float {value!r} is not JSON compliant")
        return float(value)
    if isinstance(value, decimal.Decimal):
        if not value.is_finite():
            raise SerializationError(path, f"non-finite decimal {value!r}")
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, (list, tuple, Mapping)) or _is_record_object(value):
        return _CONTAINER
    raise SerializationError(path, f"unsupported type {type(value).__name__}")


def _is_record_object(value: Any) -> bool:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return True
    return callable(getattr(value, "to_row", None))


def _open(value: Any, path: str) -> Tuple[Any, List[Any] | Dict[str, Any], Iterator[Tuple[Any, Any]]]:
    """Return ``(source, empty_output, item_iterator)`` for a container."""
    if isinstance(value, tuple) and hasattr(value, "_asdict"):  # NamedTuple
        value = value._asdict()
    elif dataclasses.is_dataclass(value) and not isinstance(value, (type, Mapping)):
        items = [(f.name, getattr(value, f.name)) for f in dataclasses.fields(value)]
        return value, {}, iter(items)
    elif not isinstance(value, (list, tuple, Mapping)):
        produced = value.to_row()
        if not isinstance(produced, Mapping):
            raise SerializationError(
                path, f"{type(value).__name__}.to_row() returned {type(produced).__name__}, expected a mapping"
            )
        value = produced

    if isinstance(value, Mapping):
        for key in value:
            if not isinstance(key, str):
                raise SerializationError(path, f"field name {key!r} is not a string")
            _check_utf8(key, _join(path, key), "field name")
        return value, {}, iter(list(value.items()))
    return value, [], enumerate(value)


def to_structured(value: Any, path: str = "") -> Structured:
    """Convert ``value`` into its structured representation.

    Field names are preserved exactly and nested records are converted in
    declaration (or mapping iteration) order. Raises
    :class:`~bq_stream.errors.SerializationError` naming the dotted path of
    the first value that cannot be converted.
    """
    value = _unwrap(value)
    converted = _scalar(value, path)
    if converted is not _CONTAINER:
        return converted

    # each frame: (original value, converted source, output, items, path)
    source, root, items = _open(value, path)
    stack = [(value, source, root, items, path)]
    active = {id(value)}

    while stack:
        original, source, out, items, cur_path = stack[-1]
        try:
            key, child = next(items)
        except StopIteration:
            stack.pop()
            active.discard(id(original))
            continue

        child_path = _join(cur_path, key)
        child = _unwrap(child)
        converted = _scalar(child, child_path)
        if converted is _CONTAINER:
            if id(child) in active:
                raise SerializationError(child_path, "reference cycle detected")
            child_source, converted, child_items = _open(child, child_path)
            active.add(id(child))
            stack.append((child, child_source, converted, child_items, child_path))

        if isinstance(out, list):
            out.append(converted)
        else:
            out[key] = converted

    return root


def serialize_row(row: Any) -> Dict[str, Structured]:
    """Serialize a top-level row, which must produce a record."""
    structured = to_structured(row)
    if not isinstance(structured, dict):
        raise SerializationError(
            "", f"a row must serialize to a record, got {type(row).__name__}"
        )
    return structured

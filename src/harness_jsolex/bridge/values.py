import math
import numbers
import reprlib
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from harness_jsolex.bridge.protocol import MarshalError


class ValueKind(Enum):
    HANDLE = "handle"
    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "boolean"
    NULL = "null"
    SEQUENCE = "sequence"
    MAPPING = "mapping"


class ValueMarshaler:
    """Converts values crossing the script boundary.

    Instances of ``handle_types`` are opaque handles: they are tagged by type
    and passed through by identity, never inspected. Everything else must be
    one of the plain kinds of :class:`ValueKind` or conversion fails with
    :class:`MarshalError`.
    """

    def __init__(self, handle_types: Tuple[type, ...] = ()):
        self.handle_types = tuple(handle_types)

    def is_handle(self, value: Any) -> bool:
        return bool(self.handle_types) and isinstance(value, self.handle_types)

    def kind_of(self, value: Any) -> ValueKind:
        if value is None:
            return ValueKind.NULL
        if self.is_handle(value):
            return ValueKind.HANDLE
        # bool is an Integral, check it first
        if isinstance(value, bool):
            return ValueKind.BOOLEAN
        if isinstance(value, numbers.Real):
            return ValueKind.NUMBER
        if isinstance(value, str):
            return ValueKind.STRING
        if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray, memoryview)):
            return ValueKind.SEQUENCE
        if isinstance(value, Mapping):
            return ValueKind.MAPPING
        raise MarshalError(f"Unsupported value type: {type(value).__name__}")

    def to_script(self, value: Any) -> Any:
        return self._convert(value, {})

    def to_host(self, value: Any) -> Any:
        return self._convert(value, {})

    def _convert(self, value: Any, visited: Dict[int, Any]) -> Any:
        kind = self.kind_of(value)
        if kind in (ValueKind.NULL, ValueKind.HANDLE, ValueKind.STRING, ValueKind.BOOLEAN):
            return value
        if kind is ValueKind.NUMBER:
            if isinstance(value, numbers.Integral):
                return int(value)
            return _exact_float(value)
        if id(value) in visited:
            return visited[id(value)]
        if kind is ValueKind.SEQUENCE:
            items: list = []
            visited[id(value)] = items
            items.extend(self._convert(item, visited) for item in value)
            return items
        mapping: Dict[str, Any] = {}
        visited[id(value)] = mapping
        for key, item in value.items():
            if not isinstance(key, str):
                raise MarshalError(f"Mapping keys must be strings, got {type(key).__name__}: {key!r}")
            mapping[key] = self._convert(item, visited)
        return mapping


def _exact_float(value: Any) -> float:
    if isinstance(value, float):
        return float(value)
    try:
        converted = float(value)
    except OverflowError as exc:
        raise MarshalError(f"{type(value).__name__} {value} is out of float range") from exc
    # non-float reals must convert without rounding
    if converted != value and not math.isnan(converted):
        raise MarshalError(f"{type(value).__name__} {value} has no exact float representation")
    return converted


_summary_repr = reprlib.Repr()
_summary_repr.maxstring = 40
_summary_repr.maxother = 40


def summarize(value: Any, marshaler: Optional[ValueMarshaler] = None) -> str:
    if marshaler is not None and marshaler.is_handle(value):
        return f"<{type(value).__name__}>"
    if isinstance(value, (list, tuple)):
        inner = ", ".join(summarize(v, marshaler) for v in list(value)[:5])
        return f"[{inner}{', ...' if len(value) > 5 else ''}]"
    if isinstance(value, Mapping):
        inner = ", ".join(f"{k!r}: {summarize(v, marshaler)}" for k, v in list(value.items())[:5])
        return "{" + inner + (", ..." if len(value) > 5 else "") + "}"
    return _summary_repr.repr(value)


def summarize_arguments(
    args: Tuple[Any, ...], kwargs: Dict[str, Any], marshaler: Optional[ValueMarshaler] = None
) -> str:
    parts = [summarize(a, marshaler) for a in args]
    parts.extend(f"{k}={summarize(v, marshaler)}" for k, v in kwargs.items())
    return ", ".join(parts)


def to_json(value: Any, marshaler: ValueMarshaler, describe_handle: Optional[Callable[[Any], Dict[str, Any]]] = None) -> Any:
    """Encode a Value for the wire, replacing handles by a host-supplied summary."""
    kind = marshaler.kind_of(value)
    if kind is ValueKind.HANDLE:
        summary = describe_handle(value) if describe_handle else {}
        return {"$handle": type(value).__name__, **summary}
    if kind is ValueKind.SEQUENCE:
        return [to_json(v, marshaler, describe_handle) for v in value]
    if kind is ValueKind.MAPPING:
        return {k: to_json(v, marshaler, describe_handle) for k, v in marshaler.to_script(value).items()}
    return marshaler.to_script(value)

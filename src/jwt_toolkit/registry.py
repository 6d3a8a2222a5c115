from __future__ import annotations

import dataclasses
import threading
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

from .errors import ClaimDecodeError
from .token import STANDARD_CLAIMS, decode_standard_claim

ClaimShape = Callable[[Any], Any]

_JSON_TYPES: tuple[type[Any], ...] = (str, int, float, bool, list, dict)


def _shape_name(shape: ClaimShape) -> str:
    return getattr(shape, "__name__", repr(shape))


def _decode_json_type(value: Any, shape: type[Any]) -> Any:
    if shape is bool:
        if isinstance(value, bool):
            return value
    elif shape is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif shape is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif isinstance(value, shape):
        return value
    raise TypeError(f"expected {shape.__name__}, got {type(value).__name__}")


def _decode_datetime(value: Any) -> datetime:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"expected a numeric timestamp, got {type(value).__name__}")
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _decode_dataclass(value: Any, shape: type[Any]) -> Any:
    if not isinstance(value, dict):
        raise TypeError(f"expected an object, got {type(value).__name__}")
    known = {field.name for field in dataclasses.fields(shape) if field.init}
    unknown = sorted(set(value) - known)
    if unknown:
        raise ValueError(f"unexpected field(s): {', '.join(unknown)}")
    return shape(**value)


def decode_claim(name: str, value: Any, shape: ClaimShape) -> Any:
    """Decode the JSON ``value`` of claim ``name`` into ``shape``.

    JSON types are checked strictly (``True`` is not an ``int``), ``datetime``
    reads a numeric timestamp as UTC, dataclasses are built field-by-field from
    an object, and pydantic-style models go through ``model_validate``. Any
    other callable is called with the value. A mismatch raises
    ``ClaimDecodeError``; nothing falls back to the generic value.
    """
    try:
        if shape in _JSON_TYPES:
            return _decode_json_type(value, shape)  # type: ignore[arg-type]
        if shape is datetime:
            return _decode_datetime(value)
        if isinstance(shape, type) and dataclasses.is_dataclass(shape):
            return _decode_dataclass(value, shape)
        model_validate = getattr(shape, "model_validate", None)
        if callable(model_validate):
            return model_validate(value)
        return shape(value)
    except ClaimDecodeError:
        raise
    except Exception as exc:
        raise ClaimDecodeError(name, f"does not match {_shape_name(shape)}: {exc}") from exc


def check_registrable(name: str, shape: ClaimShape) -> None:
    if not isinstance(name, str) or not name:
        raise ValueError("claim name must be a non-empty string")
    if name in STANDARD_CLAIMS:
        raise ValueError(f"{name} is a registered JWT claim with a fixed shape")
    if not callable(shape):
        raise ValueError(f"claim shape for {name} must be a type or callable")


class ClaimRegistry:
    """Claim name -> shape table used when decoding private claims.

    Writes copy the table and swap it in under a lock; reads take the current
    table without locking, so a decode sees either the old or the new entry.
    """

    def __init__(self, shapes: Mapping[str, ClaimShape] | None = None) -> None:
        self._lock = threading.Lock()
        self._shapes: Mapping[str, ClaimShape] = MappingProxyType({})
        for name, shape in (shapes or {}).items():
            self.register(name, shape)

    def register(self, name: str, shape: ClaimShape) -> None:
        check_registrable(name, shape)
        with self._lock:
            table = dict(self._shapes)
            table[name] = shape
            self._shapes = MappingProxyType(table)

    def unregister(self, name: str) -> None:
        with self._lock:
            if name not in self._shapes:
                return
            table = dict(self._shapes)
            del table[name]
            self._shapes = MappingProxyType(table)

    def snapshot(self) -> Mapping[str, ClaimShape]:
        return self._shapes

    def shape_for(
        self, name: str, overrides: Mapping[str, ClaimShape] | None = None
    ) -> ClaimShape | None:
        if overrides and name in overrides:
            return overrides[name]
        return self._shapes.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._shapes

    def __len__(self) -> int:
        return len(self._shapes)


def decode_claims(
    claims: Mapping[str, Any],
    table: Mapping[str, ClaimShape],
    overrides: Mapping[str, ClaimShape] | None = None,
) -> dict[str, Any]:
    decoded: dict[str, Any] = {}
    for name, value in claims.items():
        shape = overrides.get(name) if overrides else None
        if shape is None:
            shape = table.get(name)
        if shape is not None:
            decoded[name] = decode_claim(name, value, shape)
        elif name in STANDARD_CLAIMS:
            decoded[name] = decode_standard_claim(name, value)
        else:
            decoded[name] = value
    return decoded


default_registry = ClaimRegistry()


def register_claim(name: str, shape: ClaimShape) -> None:
    default_registry.register(name, shape)

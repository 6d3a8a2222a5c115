from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Literal

from .errors import MissingTokenError


@dataclass(frozen=True)
class TokenLocation:
    """Where to look for a token in a request.

    ``scheme`` only applies to headers: the value must start with it (any
    case) followed by whitespace. ``None`` takes the whole header value.
    """

    source: Literal["header", "form"]
    name: str
    scheme: str | None = None


DEFAULT_LOCATIONS: tuple[TokenLocation, ...] = (
    TokenLocation("header", "Authorization", "Bearer"),
)


def _header_value(headers: Mapping[str, Any], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        wanted = name.lower()
        for key, candidate in headers.items():
            if isinstance(key, str) and key.lower() == wanted:
                value = candidate
                break
    if isinstance(value, bytes):
        value = value.decode("latin-1")
    return value if isinstance(value, str) else None


def _strip_scheme(value: str, scheme: str | None) -> str | None:
    value = value.strip()
    if scheme is None:
        return value or None
    parts = value.split(None, 1)
    if len(parts) != 2 or parts[0].lower() != scheme.lower():
        return None
    return parts[1].strip() or None


def _lookup(request: Any, location: TokenLocation) -> str | None:
    if location.source == "header":
        headers = getattr(request, "headers", None)
        if headers is None:
            return None
        raw = _header_value(headers, location.name)
        return None if raw is None else _strip_scheme(raw, location.scheme)
    if location.source == "form":
        form = getattr(request, "form", None)
        if form is None:
            return None
        value = form.get(location.name)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None
    raise ValueError(f"unknown token location source: {location.source}")


def extract_token(
    request: Any, locations: Iterable[TokenLocation] = DEFAULT_LOCATIONS
) -> str:
    """Return the first token found in ``request``, trying ``locations`` in order.

    ``request`` only needs a ``headers`` mapping and/or a ``form`` mapping.
    """
    for location in locations:
        token = _lookup(request, location)
        if token is not None:
            return token
    raise MissingTokenError("no token found in request")

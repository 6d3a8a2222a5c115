from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any, cast

from .errors import ClaimDecodeError

STANDARD_CLAIMS = frozenset({"iss", "sub", "aud", "exp", "nbf", "iat", "jti"})

_STRING_CLAIMS = frozenset({"iss", "sub", "jti"})
_TIME_CLAIMS = frozenset({"exp", "nbf", "iat"})


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def decode_standard_claim(name: str, value: Any) -> Any:
    """Check a registered JWT claim against its fixed shape.

    ``iss``/``sub``/``jti`` are strings, ``exp``/``nbf``/``iat`` are numeric
    timestamps and ``aud`` is a string or a list of strings, kept as a tuple so
    the token stays read-only. Anything else raises ``ClaimDecodeError``.
    """
    if name in _STRING_CLAIMS:
        if not isinstance(value, str):
            raise ClaimDecodeError(name, "must be a string")
        return value
    if name in _TIME_CLAIMS:
        if not _is_number(value):
            raise ClaimDecodeError(name, "must be a numeric timestamp")
        return value
    if name == "aud":
        if isinstance(value, str):
            return value
        if isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value):
            return tuple(value)
        raise ClaimDecodeError(name, "must be a string or a list of strings")
    raise ValueError(f"not a standard claim: {name}")


class Token(Mapping[str, Any]):
    """A decoded JWT: read-only claim mapping plus the parts it was decoded from.

    ``header`` is empty and ``signing_input``/``signature`` are ``None`` for
    tokens parsed from a plain JSON claim set.
    """

    __slots__ = ("_claims", "header", "signing_input", "signature")

    def __init__(
        self,
        claims: Mapping[str, Any],
        *,
        header: Mapping[str, Any] | None = None,
        signing_input: bytes | None = None,
        signature: bytes | None = None,
    ) -> None:
        decoded: dict[str, Any] = {}
        for name, value in claims.items():
            if name in STANDARD_CLAIMS:
                value = decode_standard_claim(name, value)
            decoded[name] = value
        self._claims = decoded
        self.header: dict[str, Any] = dict(header or {})
        self.signing_input = signing_input
        self.signature = signature

    def __getitem__(self, name: str) -> Any:
        return self._claims[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._claims)

    def __len__(self) -> int:
        return len(self._claims)

    def __repr__(self) -> str:
        return f"Token({self._claims!r})"

    def get_as(self, name: str, shape: type[Any]) -> Any:
        """Return claim ``name`` if it is an instance of ``shape``, else ``None``."""
        value = self._claims.get(name)
        if isinstance(value, shape):
            return value
        return None

    def to_dict(self) -> dict[str, Any]:
        claims = dict(self._claims)
        if isinstance(claims.get("aud"), tuple):
            claims["aud"] = list(claims["aud"])
        return claims

    @property
    def algorithm(self) -> str | None:
        return cast("str | None", self.header.get("alg"))

    @property
    def key_id(self) -> str | None:
        return cast("str | None", self.header.get("kid"))

    @property
    def issuer(self) -> str | None:
        return cast("str | None", self._claims.get("iss"))

    @property
    def subject(self) -> str | None:
        return cast("str | None", self._claims.get("sub"))

    @property
    def audience(self) -> tuple[str, ...] | None:
        aud = self._claims.get("aud")
        if aud is None:
            return None
        if isinstance(aud, str):
            return (aud,)
        return tuple(aud)

    @property
    def expires_at(self) -> int | float | None:
        return cast("int | float | None", self._claims.get("exp"))

    @property
    def not_before(self) -> int | float | None:
        return cast("int | float | None", self._claims.get("nbf"))

    @property
    def issued_at(self) -> int | float | None:
        return cast("int | float | None", self._claims.get("iat"))

    @property
    def jwt_id(self) -> str | None:
        return cast("str | None", self._claims.get("jti"))

from __future__ import annotations

import base64
import hashlib
import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa
from cryptography.hazmat.primitives.serialization import (
    load_pem_private_key,
    load_pem_public_key,
)
from jwt import PyJWK, algorithms
from jwt import exceptions as jwt_exceptions

from .errors import UnsupportedAlgorithmError

_ALGORITHMS = algorithms.get_default_algorithms()


def algorithm_for(name: str) -> algorithms.Algorithm:
    if name == "none" or name not in _ALGORITHMS:
        raise UnsupportedAlgorithmError(f"unsupported algorithm: {name}")
    return _ALGORITHMS[name]


def _is_hmac(alg: str) -> bool:
    return alg.startswith("HS")


def _looks_like_pem(text: str) -> bool:
    return "BEGIN" in text and "KEY" in text


def _looks_like_json(text: str) -> bool:
    return text.strip().startswith("{")


def _expected_jwk_kty_for_alg(alg: str) -> str | None:
    if _is_hmac(alg):
        return "oct"
    if alg.startswith(("RS", "PS")):
        return "RSA"
    if alg.startswith("ES"):
        return "EC"
    if alg == "EdDSA":
        return "OKP"
    return None


_EC_CURVE_ALGORITHMS = {
    "P-256": "ES256",
    "P-384": "ES384",
    "P-521": "ES512",
    "secp256k1": "ES256K",
}


def _default_alg_for_jwk(jwk: dict[str, Any]) -> str | None:
    kty = jwk.get("kty")
    if kty == "oct":
        return "HS256"
    if kty == "RSA":
        return "RS256"
    if kty == "EC":
        return _EC_CURVE_ALGORITHMS.get(cast(str, jwk.get("crv")))
    if kty == "OKP":
        return "EdDSA"
    return None


@dataclass(frozen=True, eq=False)
class Key:
    """A verification (and possibly signing) key bound to one algorithm.

    ``material`` is whatever PyJWT accepts for ``algorithm``: secret bytes for
    HMAC, PEM text or a ``cryptography`` key object otherwise. It is prepared
    once here; the caller's object is never modified.
    """

    algorithm: str
    material: Any = field(repr=False)
    kid: str | None = None
    _impl: algorithms.Algorithm = field(init=False, repr=False)
    _prepared: Any = field(init=False, repr=False)

    def __post_init__(self) -> None:
        impl = algorithm_for(self.algorithm)
        try:
            prepared = impl.prepare_key(self.material)
        except jwt_exceptions.InvalidKeyError as exc:
            raise ValueError(f"invalid key for {self.algorithm}: {exc}") from exc
        except (TypeError, ValueError) as exc:
            raise ValueError(f"invalid key for {self.algorithm}") from exc
        object.__setattr__(self, "_impl", impl)
        object.__setattr__(self, "_prepared", prepared)

    @property
    def can_sign(self) -> bool:
        return _is_hmac(self.algorithm) or hasattr(self._prepared, "public_key")

    def verify(self, data: bytes, signature: bytes) -> bool:
        key = self._prepared
        if not _is_hmac(self.algorithm) and hasattr(key, "public_key"):
            key = key.public_key()
        return bool(self._impl.verify(data, key, signature))

    def sign(self, data: bytes) -> bytes:
        if not self.can_sign:
            raise ValueError(f"key {self.kid or self.algorithm} is a public key and cannot sign")
        return self._impl.sign(data, self._prepared)

    @classmethod
    def from_secret(cls, secret: str | bytes, algorithm: str = "HS256", kid: str | None = None) -> Key:
        if not _is_hmac(algorithm):
            raise ValueError(f"shared secrets only apply to HMAC algorithms, not {algorithm}")
        text = secret.decode("utf-8", "replace") if isinstance(secret, bytes) else secret
        if _looks_like_pem(text) or _looks_like_json(text):
            raise ValueError("refusing to use PEM/JWK as HMAC secret")
        material = secret.encode("utf-8") if isinstance(secret, str) else secret
        return cls(algorithm, material, kid)

    @classmethod
    def from_pem(cls, pem_text: str | bytes, algorithm: str, kid: str | None = None) -> Key:
        if _is_hmac(algorithm):
            raise ValueError("refusing to use PEM as HMAC secret")
        text = pem_text.decode("utf-8") if isinstance(pem_text, bytes) else pem_text
        if _looks_like_json(text):
            raise ValueError("expected PEM text, got JSON")
        return cls(algorithm, text, kid)

    @classmethod
    def from_jwk(cls, jwk: dict[str, Any] | str, algorithm: str | None = None) -> Key:
        if isinstance(jwk, str):
            obj = json.loads(jwk)
            if not isinstance(obj, dict):
                raise ValueError("JWK must be an object")
            jwk = cast(dict[str, Any], obj)
        if "keys" in jwk:
            raise ValueError("use KeySet.from_jwks for multiple keys")
        kty = jwk.get("kty")
        if not isinstance(kty, str) or not kty.strip():
            raise ValueError("JWK missing kty")
        alg = algorithm or jwk.get("alg") or _default_alg_for_jwk(jwk)
        if not isinstance(alg, str):
            raise ValueError(f"cannot determine algorithm for JWK kty {kty}")
        expected_kty = _expected_jwk_kty_for_alg(alg)
        if expected_kty and kty != expected_kty:
            raise ValueError(f"JWK kty {kty} does not match algorithm {alg} (expected {expected_kty})")
        algorithm_for(alg)
        try:
            parsed = PyJWK(jwk, algorithm=alg)
        except (jwt_exceptions.PyJWKError, jwt_exceptions.InvalidKeyError) as exc:
            raise ValueError(f"unusable JWK: {exc}") from exc
        kid = jwk.get("kid")
        return cls(alg, parsed.key, kid if isinstance(kid, str) else None)


class KeySet:
    """Ordered, immutable collection of keys with lookup by ``kid``."""

    def __init__(self, keys: Iterable[Key] = ()) -> None:
        self._keys: tuple[Key, ...] = tuple(keys)

    def __iter__(self) -> Iterator[Key]:
        return iter(self._keys)

    def __len__(self) -> int:
        return len(self._keys)

    def __repr__(self) -> str:
        kids = [key.kid for key in self._keys]
        return f"KeySet(kids={kids!r})"

    def find(self, kid: str) -> Key | None:
        for key in self._keys:
            if key.kid == kid:
                return key
        return None

    @classmethod
    def from_jwks(cls, jwks: dict[str, Any] | str) -> KeySet:
        """Build a key set from a JWKS document.

        Encryption keys (``use: enc``) and keys PyJWT cannot load are skipped;
        a document with no usable key at all is rejected.
        """
        if isinstance(jwks, str):
            obj = json.loads(jwks)
            if not isinstance(obj, dict):
                raise ValueError("JWKS must be an object")
            jwks = cast(dict[str, Any], obj)
        entries = jwks.get("keys", [])
        if not isinstance(entries, list):
            raise ValueError("JWKS keys must be a list")
        if not entries:
            raise ValueError("JWKS has no keys")

        keys: list[Key] = []
        for item in entries:
            if not isinstance(item, dict) or item.get("use") == "enc":
                continue
            try:
                keys.append(Key.from_jwk(cast(dict[str, Any], item)))
            except ValueError:
                continue
        if not keys:
            raise ValueError("JWKS has no usable signing keys")
        return cls(keys)


def load_key_from_material(key_text: str, alg: str, kind: str, kid: str | None = None) -> Key:
    if kind == "secret":
        return Key.from_secret(key_text, alg, kid)
    if kind == "pem":
        return Key.from_pem(key_text, alg, kid)
    if kind == "jwk":
        key = Key.from_jwk(key_text, algorithm=alg)
        if kid and key.kid is None:
            return Key(key.algorithm, key.material, kid)
        return key
    raise ValueError(f"unknown key kind: {kind}")


def load_key_from_file(path: str | Path, alg: str, kid: str | None = None) -> Key:
    content = Path(path).read_text(encoding="utf-8").strip()
    if _looks_like_json(content):
        obj = json.loads(content)
        if not isinstance(obj, dict):
            raise ValueError("invalid JWK file")
        if "keys" in obj:
            raise ValueError("use a JWKS source for JWKS files")
        if _is_hmac(alg):
            raise ValueError("refusing to use JWK file as HMAC secret")
        return load_key_from_material(content, alg, "jwk", kid)
    if _looks_like_pem(content):
        return Key.from_pem(content, alg, kid)
    return Key.from_secret(content, alg, kid)


def _public_key_from_pem_text(pem_text: str) -> Any:
    data = pem_text.encode("utf-8")
    try:
        key_any: Any = load_pem_public_key(data)
    except ValueError:
        key_any = load_pem_private_key(data, password=None)
    return key_any.public_key() if hasattr(key_any, "public_key") else key_any


def jwk_from_pem(pem_text: str, kid: str | None = None) -> dict[str, Any]:
    key = _public_key_from_pem_text(pem_text)
    if isinstance(key, rsa.RSAPublicKey):
        jwk_any = json.loads(algorithms.RSAAlgorithm.to_jwk(key))
    elif isinstance(key, ec.EllipticCurvePublicKey):
        jwk_any = json.loads(algorithms.ECAlgorithm.to_jwk(key))
    elif isinstance(key, (ed25519.Ed25519PublicKey, ed448.Ed448PublicKey)):
        jwk_any = json.loads(algorithms.OKPAlgorithm.to_jwk(key))
    else:
        raise ValueError("unsupported key type for JWK conversion")

    if not isinstance(jwk_any, dict):
        raise ValueError("invalid JWK output")
    jwk = cast(dict[str, Any], jwk_any)
    if kid:
        jwk["kid"] = kid
    return jwk


def jwks_from_pem(pem_text: str, kid: str | None = None) -> dict[str, Any]:
    return {"keys": [jwk_from_pem(pem_text, kid=kid)]}


_THUMBPRINT_MEMBERS = {
    "RSA": ("e", "n"),
    "EC": ("crv", "x", "y"),
    "OKP": ("crv", "x"),
}


def jwk_thumbprint_sha256(jwk: dict[str, Any]) -> str:
    """RFC 7638 thumbprint: SHA-256 over the required members, sorted, no spaces."""
    kty = jwk.get("kty")
    if not isinstance(kty, str) or not kty.strip():
        raise ValueError("JWK missing kty")
    members = _THUMBPRINT_MEMBERS.get(kty)
    if members is None:
        raise ValueError(f"unsupported JWK kty for thumbprint: {kty}")

    thumb_obj: dict[str, str] = {"kty": kty}
    for member in members:
        value = jwk.get(member)
        if not isinstance(value, str) or not value:
            raise ValueError(f"{kty} JWK missing {member}")
        thumb_obj[member] = value

    canonical = json.dumps(thumb_obj, separators=(",", ":"), sort_keys=True).encode("utf-8")
    digest = hashlib.sha256(canonical).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")

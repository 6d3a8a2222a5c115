from __future__ import annotations

import binascii
import json
import re
from dataclasses import dataclass
from typing import Any, Union, cast

from jwt.utils import base64url_decode

from .errors import StructuralError, VerificationError, VerificationFailure
from .keys import Key
from .registry import ClaimRegistry, ClaimShape, check_registrable, decode_claims, default_registry
from .token import Token
from .verifier import KeySource, VerificationResult, verify_signature
from .verifier import verify_with_keyset as verify_keyset_signature

_BASE64URL = re.compile(r"[A-Za-z0-9_-]*={0,2}")


@dataclass(frozen=True)
class VerifyWith:
    algorithm: str
    key: Key


@dataclass(frozen=True)
class VerifyWithKeySet:
    keys: KeySource


@dataclass(frozen=True)
class TypedClaim:
    name: str
    shape: ClaimShape


ParseOption = Union[VerifyWith, VerifyWithKeySet, TypedClaim]


def verify_with(algorithm: str, key: Key) -> VerifyWith:
    """Verify the signature with ``key``; the token must use exactly ``algorithm``."""
    return VerifyWith(algorithm, key)


def verify_with_keyset(keys: KeySource) -> VerifyWithKeySet:
    """Verify the signature with the key selected from ``keys`` by the header ``kid``."""
    return VerifyWithKeySet(keys)


def typed_claim(name: str, shape: ClaimShape) -> TypedClaim:
    """Decode claim ``name`` into ``shape`` for this parse only."""
    check_registrable(name, shape)
    return TypedClaim(name, shape)


def _b64_segment(segment: str, label: str) -> bytes:
    if not _BASE64URL.fullmatch(segment):
        raise StructuralError(f"{label} segment is not base64url")
    try:
        return base64url_decode(segment)
    except (binascii.Error, ValueError) as exc:
        raise StructuralError(f"{label} segment is not base64url") from exc


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant: {name}")


def _json_object(raw: bytes | str, label: str) -> dict[str, Any]:
    try:
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        obj = json.loads(text, parse_constant=_reject_constant)
    except (UnicodeDecodeError, ValueError) as exc:
        raise StructuralError(f"{label} is not valid JSON") from exc
    if not isinstance(obj, dict):
        raise StructuralError(f"{label} must be a JSON object")
    return cast(dict[str, Any], obj)


@dataclass(frozen=True)
class _Decoded:
    header: dict[str, Any]
    claims: dict[str, Any]
    signing_input: bytes | None
    signature: bytes | None


def _decode_compact(text: str) -> _Decoded:
    parts = text.split(".")
    if len(parts) != 3:
        raise StructuralError(f"expected 3 dot-separated segments, got {len(parts)}")
    header_seg, payload_seg, signature_seg = parts

    header = _json_object(_b64_segment(header_seg, "header"), "header")
    alg = header.get("alg")
    if not isinstance(alg, str) or not alg:
        raise StructuralError("header is missing the alg field")
    if "kid" in header and not isinstance(header["kid"], str):
        raise StructuralError("header kid must be a string")

    claims = _json_object(_b64_segment(payload_seg, "payload"), "payload")
    signature = _b64_segment(signature_seg, "signature")
    signing_input = f"{header_seg}.{payload_seg}".encode("ascii")
    return _Decoded(header, claims, signing_input, signature)


def _decode(data: bytes | str) -> _Decoded:
    if isinstance(data, bytes):
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise StructuralError("token is not valid UTF-8") from exc
    else:
        text = data
    text = text.strip()
    if not text:
        raise StructuralError("token is empty")
    if text.startswith("{"):
        return _Decoded({}, _json_object(text, "claim set"), None, None)
    return _decode_compact(text)


class Parser:
    """Turns token bytes into a ``Token``.

    Without options nothing is verified or validated, so expired and
    unverifiable tokens can still be inspected.
    """

    def __init__(self, registry: ClaimRegistry | None = None) -> None:
        self.registry = registry if registry is not None else default_registry

    def parse(self, data: bytes | str, *options: ParseOption) -> Token:
        verification: VerifyWith | VerifyWithKeySet | None = None
        overrides: dict[str, ClaimShape] = {}
        for option in options:
            if isinstance(option, TypedClaim):
                overrides[option.name] = option.shape
            elif isinstance(option, (VerifyWith, VerifyWithKeySet)):
                if verification is not None:
                    raise ValueError("use only one of verify_with or verify_with_keyset")
                verification = option
            else:
                raise ValueError(f"unknown parse option: {option!r}")

        table = self.registry.snapshot()
        decoded = _decode(data)
        if verification is not None:
            result = self._verify(decoded, verification)
            if result.failure is not None:
                raise VerificationError(result.failure, result.detail)

        claims = decode_claims(decoded.claims, table, overrides)
        return Token(
            claims,
            header=decoded.header,
            signing_input=decoded.signing_input,
            signature=decoded.signature,
        )

    @staticmethod
    def _verify(
        decoded: _Decoded, verification: VerifyWith | VerifyWithKeySet
    ) -> VerificationResult:
        if decoded.signing_input is None or decoded.signature is None:
            return VerificationResult(
                failure=VerificationFailure.MALFORMED, detail="plain JSON claim set is unsigned"
            )
        if isinstance(verification, VerifyWith):
            return verify_signature(
                decoded.signing_input,
                decoded.signature,
                decoded.header,
                verification.key,
                algorithm=verification.algorithm,
            )
        return verify_keyset_signature(
            decoded.signing_input, decoded.signature, decoded.header, verification.keys
        )


def parse(
    data: bytes | str,
    *options: ParseOption,
    registry: ClaimRegistry | None = None,
) -> Token:
    return Parser(registry).parse(data, *options)


def decode_header(data: bytes | str) -> dict[str, Any]:
    """Return the header of a token without verifying it (empty for a plain JSON claim set)."""
    return dict(_decode(data).header)

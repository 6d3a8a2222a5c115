"""Signature verification and key selection.

Every function here is pure: it returns a ``VerificationResult`` instead of
raising, and failure results carry only a tag and a short, secret-free detail.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from .errors import KeySetUnavailableError, UnsupportedAlgorithmError, VerificationFailure
from .keys import Key, KeySet, algorithm_for


class KeySource(Protocol):
    """Anything iterable over ``Key`` with lookup by ``kid`` (``KeySet``, ``RemoteKeySet``)."""

    def __iter__(self) -> Iterator[Key]: ...

    def find(self, kid: str) -> Key | None: ...


@dataclass(frozen=True)
class VerificationResult:
    failure: VerificationFailure | None = None
    key: Key | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    def __bool__(self) -> bool:
        return self.ok


def _failed(failure: VerificationFailure, detail: str | None = None) -> VerificationResult:
    return VerificationResult(failure=failure, detail=detail)


def _header_alg(header: Mapping[str, Any]) -> str | None:
    alg = header.get("alg")
    return alg if isinstance(alg, str) and alg else None


def _check_supported(alg: str) -> VerificationResult | None:
    try:
        algorithm_for(alg)
    except UnsupportedAlgorithmError:
        return _failed(VerificationFailure.UNSUPPORTED_ALGORITHM, alg)
    return None


def _verify_bytes(
    signing_input: bytes, signature: bytes, key: Key
) -> VerificationResult:
    if key.verify(signing_input, signature):
        return VerificationResult(key=key)
    return _failed(VerificationFailure.SIGNATURE_MISMATCH)


def verify_signature(
    signing_input: bytes,
    signature: bytes,
    header: Mapping[str, Any],
    key: Key,
    *,
    algorithm: str,
) -> VerificationResult:
    """Single-key mode: header ``alg`` and ``key.algorithm`` must both equal ``algorithm``.

    The header is never trusted to pick the algorithm, even when the key
    would accept the bytes under it.
    """
    alg = _header_alg(header)
    if alg is None:
        return _failed(VerificationFailure.MALFORMED, "header has no alg")
    unsupported = _check_supported(alg) or _check_supported(algorithm)
    if unsupported is not None:
        return unsupported
    if alg != algorithm:
        return _failed(VerificationFailure.ALGORITHM_MISMATCH, f"token uses {alg}, expected {algorithm}")
    if key.algorithm != algorithm:
        return _failed(
            VerificationFailure.ALGORITHM_MISMATCH,
            f"key is for {key.algorithm}, expected {algorithm}",
        )
    return _verify_bytes(signing_input, signature, key)


def _select_key(alg: str, kid: str | None, keys: KeySource) -> Key | VerificationResult:
    if kid is not None:
        key = keys.find(kid)
        if key is None:
            return _failed(VerificationFailure.NO_MATCHING_KEY, f"kid {kid}")
        if key.algorithm != alg:
            return _failed(
                VerificationFailure.ALGORITHM_MISMATCH,
                f"key {kid} is for {key.algorithm}, token uses {alg}",
            )
        return key

    available = list(keys)
    candidates = [key for key in available if key.algorithm == alg]
    if len(candidates) == 1:
        return candidates[0]
    if len(candidates) > 1:
        return _failed(VerificationFailure.AMBIGUOUS_KEY)
    if len(available) == 1:
        return _failed(
            VerificationFailure.ALGORITHM_MISMATCH,
            f"key is for {available[0].algorithm}, token uses {alg}",
        )
    return _failed(VerificationFailure.NO_MATCHING_KEY)


def verify_with_keyset(
    signing_input: bytes,
    signature: bytes,
    header: Mapping[str, Any],
    keys: KeySource,
) -> VerificationResult:
    alg = _header_alg(header)
    if alg is None:
        return _failed(VerificationFailure.MALFORMED, "header has no alg")
    unsupported = _check_supported(alg)
    if unsupported is not None:
        return unsupported
    kid = header.get("kid")
    if kid is not None and not isinstance(kid, str):
        return _failed(VerificationFailure.MALFORMED, "kid must be a string")

    try:
        selected = _select_key(alg, kid, keys)
    except KeySetUnavailableError:
        return _failed(VerificationFailure.NO_MATCHING_KEY, "key set unavailable")
    if isinstance(selected, VerificationResult):
        return selected
    return _verify_bytes(signing_input, signature, selected)


def verify(
    signing_input: bytes,
    signature: bytes,
    header: Mapping[str, Any],
    candidates: Key | KeySource | Iterable[Key],
    *,
    algorithm: str | None = None,
) -> VerificationResult:
    """Verify with a single ``Key`` (``algorithm`` defaults to the key's) or a key set."""
    if isinstance(candidates, Key):
        return verify_signature(
            signing_input,
            signature,
            header,
            candidates,
            algorithm=algorithm or candidates.algorithm,
        )
    if not hasattr(candidates, "find"):
        candidates = KeySet(candidates)
    return verify_with_keyset(signing_input, signature, header, candidates)  # type: ignore[arg-type]

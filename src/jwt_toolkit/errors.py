from __future__ import annotations

import enum

from jwt import exceptions as jwt_exceptions


class VerificationFailure(str, enum.Enum):
    """Why a signature could not be accepted."""

    NO_MATCHING_KEY = "no_matching_key"
    AMBIGUOUS_KEY = "ambiguous_key"
    SIGNATURE_MISMATCH = "signature_mismatch"
    ALGORITHM_MISMATCH = "algorithm_mismatch"
    UNSUPPORTED_ALGORITHM = "unsupported_algorithm"
    MALFORMED = "malformed"


_FAILURE_MESSAGES = {
    VerificationFailure.NO_MATCHING_KEY: "no matching key found",
    VerificationFailure.AMBIGUOUS_KEY: "multiple candidate keys; token header has no kid",
    VerificationFailure.SIGNATURE_MISMATCH: "signature verification failed",
    VerificationFailure.ALGORITHM_MISMATCH: "token algorithm does not match the expected algorithm",
    VerificationFailure.UNSUPPORTED_ALGORITHM: "unsupported algorithm",
    VerificationFailure.MALFORMED: "token has no verifiable signature",
}


def describe_failure(failure: VerificationFailure) -> str:
    return _FAILURE_MESSAGES[failure]


class StructuralError(jwt_exceptions.DecodeError):
    """Input bytes are not a well-formed token (base64url, JSON or segment count)."""


class ClaimDecodeError(jwt_exceptions.DecodeError):
    def __init__(self, claim: str, message: str) -> None:
        super().__init__(f"claim {claim!r}: {message}")
        self.claim = claim


class VerificationError(jwt_exceptions.InvalidSignatureError):
    def __init__(self, failure: VerificationFailure, detail: str | None = None) -> None:
        message = describe_failure(failure)
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.failure = failure


class UnsupportedAlgorithmError(jwt_exceptions.InvalidAlgorithmError, ValueError):
    pass


class KeySetUnavailableError(jwt_exceptions.PyJWKClientError):
    pass


class MissingTokenError(jwt_exceptions.InvalidTokenError):
    pass


def format_error(exc: jwt_exceptions.PyJWTError) -> str:
    if isinstance(exc, VerificationError):
        return str(exc)
    if isinstance(exc, ClaimDecodeError):
        return f"invalid claim value: {exc}"
    if isinstance(exc, StructuralError):
        return f"invalid token format: {exc}"
    if isinstance(exc, KeySetUnavailableError):
        return f"key set unavailable: {exc}"
    if isinstance(exc, MissingTokenError):
        return "no token found in request"
    return str(exc)

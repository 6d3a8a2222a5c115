from .encoder import encode
from .errors import (
    ClaimDecodeError,
    KeySetUnavailableError,
    MissingTokenError,
    StructuralError,
    UnsupportedAlgorithmError,
    VerificationError,
    VerificationFailure,
)
from .extract import DEFAULT_LOCATIONS, TokenLocation, extract_token
from .jwks import RemoteKeySet, load_jwks
from .keys import Key, KeySet
from .parser import Parser, parse, typed_claim, verify_with, verify_with_keyset
from .registry import ClaimRegistry, default_registry, register_claim
from .token import Token
from .validator import (
    PredicateRule,
    ValidationResult,
    Validator,
    Violation,
    ViolationKind,
    predicate,
    validate,
)
from .verifier import VerificationResult, verify
from .version import __version__

__all__ = [
    "DEFAULT_LOCATIONS",
    "ClaimDecodeError",
    "ClaimRegistry",
    "Key",
    "KeySet",
    "KeySetUnavailableError",
    "MissingTokenError",
    "Parser",
    "PredicateRule",
    "RemoteKeySet",
    "StructuralError",
    "Token",
    "TokenLocation",
    "UnsupportedAlgorithmError",
    "ValidationResult",
    "Validator",
    "VerificationError",
    "VerificationFailure",
    "VerificationResult",
    "Violation",
    "ViolationKind",
    "__version__",
    "default_registry",
    "encode",
    "extract_token",
    "load_jwks",
    "parse",
    "predicate",
    "register_claim",
    "typed_claim",
    "validate",
    "verify",
    "verify_with",
    "verify_with_keyset",
]

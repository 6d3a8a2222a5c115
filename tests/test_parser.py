from __future__ import annotations

import base64
import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone

import pytest

from jwt_toolkit import (
    ClaimDecodeError,
    ClaimRegistry,
    Key,
    Parser,
    StructuralError,
    VerificationError,
    VerificationFailure,
    encode,
    parse,
    typed_claim,
    verify_with,
    verify_with_keyset,
)
from jwt_toolkit.keys import KeySet
from jwt_toolkit.parser import decode_header

SECRET = "test-secret-that-is-at-least-32-bytes-long"
OTHER_SECRET = "another-secret-that-is-also-32-bytes-long"


def _b64(obj: object) -> str:
    raw = obj if isinstance(obj, bytes) else json.dumps(obj).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


@dataclass
class Profile:
    name: str
    level: int = 0


def test_compact_token_parses_without_verification() -> None:
    key = Key.from_secret(SECRET, "HS256", kid="k1")
    text = encode({"sub": "user123", "iss": "issuer", "scope": "read"}, key)

    token = parse(text)

    assert token.header["alg"] == "HS256"
    assert token.key_id == "k1"
    assert token.subject == "user123"
    assert token.issuer == "issuer"
    assert token["scope"] == "read"
    header_seg, payload_seg, signature_seg = text.split(".")
    assert token.signing_input == f"{header_seg}.{payload_seg}".encode("ascii")
    assert token.signature == base64.urlsafe_b64decode(signature_seg + "=" * (-len(signature_seg) % 4))


def test_parse_accepts_bytes_and_surrounding_whitespace() -> None:
    key = Key.from_secret(SECRET, "HS256")
    text = encode({"sub": "u"}, key)
    token = parse(f"  {text}\n".encode("ascii"))
    assert token.subject == "u"


def test_plain_json_claim_set_has_no_header_or_signature() -> None:
    token = parse('{"sub": "json-user", "exp": 1700000000, "nested": {"a": [1, 2]}}')
    assert token.subject == "json-user"
    assert token.expires_at == 1700000000
    assert token["nested"] == {"a": [1, 2]}
    assert token.header == {}
    assert token.signing_input is None
    assert token.signature is None


def test_expired_token_still_parses_for_inspection() -> None:
    key = Key.from_secret(SECRET, "HS256")
    text = encode({"sub": "expired-user", "exp": int(time.time()) - 3600}, key)
    token = parse(text)
    assert token.subject == "expired-user"


@pytest.mark.parametrize(
    "text",
    [
        "only.two",
        "a.b.c.d",
        "no-dots-at-all",
    ],
)
def test_wrong_segment_count_is_structural_error(text: str) -> None:
    with pytest.raises(StructuralError):
        parse(text)


def test_invalid_base64url_is_structural_error() -> None:
    header = _b64({"alg": "HS256"})
    payload = _b64({"sub": "u"})
    with pytest.raises(StructuralError, match="payload segment"):
        parse(f"{header}.{payload}!!.sig")
    with pytest.raises(StructuralError, match="header segment"):
        parse(f"{header}+/.{payload}.sig")


def test_invalid_json_is_structural_error() -> None:
    header = _b64({"alg": "HS256"})
    with pytest.raises(StructuralError, match="payload is not valid JSON"):
        parse(f"{header}.{_b64(b'{not json')}.")
    with pytest.raises(StructuralError, match="must be a JSON object"):
        parse(f"{header}.{_b64([1, 2, 3])}.")
    with pytest.raises(StructuralError):
        parse("{broken")


def test_nan_constant_is_rejected() -> None:
    header = _b64({"alg": "HS256"})
    payload = _b64(b'{"x": NaN}')
    with pytest.raises(StructuralError):
        parse(f"{header}.{payload}.")


def test_header_without_alg_is_structural_error() -> None:
    with pytest.raises(StructuralError, match="alg"):
        parse(f"{_b64({'typ': 'JWT'})}.{_b64({'sub': 'u'})}.")


def test_non_string_kid_is_structural_error() -> None:
    with pytest.raises(StructuralError, match="kid"):
        parse(f"{_b64({'alg': 'HS256', 'kid': 7})}.{_b64({'sub': 'u'})}.")


def test_empty_input_is_structural_error() -> None:
    with pytest.raises(StructuralError):
        parse("   ")


def test_round_trip_with_verification_preserves_claim_values() -> None:
    key = Key.from_secret(SECRET, "HS256")
    claims = {
        "iss": "issuer",
        "sub": "user",
        "aud": ["api", "web"],
        "exp": 2000000000,
        "nbf": 1600000000,
        "iat": 1600000000,
        "jti": "abc-123",
        "flag": True,
        "ratio": 0.5,
        "nothing": None,
    }
    token = parse(encode(claims, key), verify_with("HS256", key))
    assert token.to_dict() == claims
    assert token.audience == ("api", "web")
    assert token.jwt_id == "abc-123"


def test_wrong_key_fails_with_signature_mismatch() -> None:
    key = Key.from_secret(SECRET, "HS256")
    wrong = Key.from_secret(OTHER_SECRET, "HS256")
    text = encode({"sub": "u"}, key)

    parse(text)  # structurally fine
    with pytest.raises(VerificationError) as excinfo:
        parse(text, verify_with("HS256", wrong))
    assert excinfo.value.failure is VerificationFailure.SIGNATURE_MISMATCH


def test_tampered_payload_fails_verification() -> None:
    key = Key.from_secret(SECRET, "HS256")
    header_seg, _, signature_seg = encode({"sub": "user"}, key).split(".")
    forged = f"{header_seg}.{_b64({'sub': 'admin'})}.{signature_seg}"
    with pytest.raises(VerificationError) as excinfo:
        parse(forged, verify_with("HS256", key))
    assert excinfo.value.failure is VerificationFailure.SIGNATURE_MISMATCH


def test_signature_is_checked_over_original_bytes() -> None:
    key = Key.from_secret(SECRET, "HS256")
    # Non-canonical spacing: re-encoding the parsed claims would not reproduce it.
    header_seg = _b64(b'{ "alg" : "HS256" }')
    payload_seg = _b64(b'{"sub":   "spaced",  "n" : 1.0}')
    signing_input = f"{header_seg}.{payload_seg}".encode("ascii")
    signature_seg = _b64(key.sign(signing_input))

    token = parse(f"{header_seg}.{payload_seg}.{signature_seg}", verify_with("HS256", key))
    assert token.subject == "spaced"
    assert token["n"] == 1.0


def _padded_b64(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii")


def test_padded_segments_are_accepted() -> None:
    key = Key.from_secret(SECRET, "HS256")
    header_seg = _padded_b64(b'{"alg": "HS256"}')
    payload_seg = _padded_b64(b'{"sub": "padded"}')
    assert header_seg.endswith("=") and payload_seg.endswith("=")
    signing_input = f"{header_seg}.{payload_seg}".encode("ascii")
    signature_seg = _padded_b64(key.sign(signing_input))

    token = parse(f"{header_seg}.{payload_seg}.{signature_seg}", verify_with("HS256", key))
    assert token.subject == "padded"
    assert token.signing_input == signing_input

    with pytest.raises(StructuralError, match="header segment"):
        parse(f"{header_seg}=.{payload_seg}.{signature_seg}")


def test_verification_of_plain_json_is_malformed() -> None:
    key = Key.from_secret(SECRET, "HS256")
    with pytest.raises(VerificationError) as excinfo:
        parse('{"sub": "u"}', verify_with("HS256", key))
    assert excinfo.value.failure is VerificationFailure.MALFORMED


def test_unsigned_token_parses_but_never_verifies() -> None:
    text = f"{_b64({'alg': 'none'})}.{_b64({'sub': 'u'})}."
    assert parse(text).subject == "u"
    key = Key.from_secret(SECRET, "HS256")
    with pytest.raises(VerificationError) as excinfo:
        parse(text, verify_with("HS256", key))
    assert excinfo.value.failure is VerificationFailure.UNSUPPORTED_ALGORITHM


def test_two_verification_options_are_rejected() -> None:
    key = Key.from_secret(SECRET, "HS256")
    text = encode({"sub": "u"}, key)
    with pytest.raises(ValueError, match="only one"):
        parse(text, verify_with("HS256", key), verify_with_keyset(KeySet([key])))


def test_verification_failure_is_raised_before_claim_decoding() -> None:
    key = Key.from_secret(SECRET, "HS256")
    wrong = Key.from_secret(OTHER_SECRET, "HS256")
    text = encode({"profile": "not-an-object"}, key)
    with pytest.raises(VerificationError):
        parse(text, verify_with("HS256", wrong), typed_claim("profile", Profile))


def test_private_claim_generic_shape_round_trips() -> None:
    key = Key.from_secret(SECRET, "HS256")
    private = {
        "object": {"inner": {"deep": [1, "two", None]}, "flag": False},
        "list": [1, 2.5, "x", {"k": "v"}, [True]],
        "number": 42,
        "text": "hello",
        "null": None,
    }
    token = parse(encode({"ctx": private}, key))
    assert token["ctx"] == private
    assert token.get("ctx") == private


def test_standard_claim_with_wrong_type_is_claim_decode_error() -> None:
    with pytest.raises(ClaimDecodeError) as excinfo:
        parse('{"exp": "tomorrow"}')
    assert excinfo.value.claim == "exp"
    with pytest.raises(ClaimDecodeError) as excinfo:
        parse('{"aud": ["ok", 3]}')
    assert excinfo.value.claim == "aud"
    with pytest.raises(ClaimDecodeError):
        parse('{"iat": true}')


def test_typed_claim_decodes_into_dataclass() -> None:
    token = parse(
        '{"profile": {"name": "ada", "level": 3}, "since": 1700000000}',
        typed_claim("profile", Profile),
        typed_claim("since", datetime),
    )
    assert token["profile"] == Profile("ada", 3)
    assert token["since"] == datetime.fromtimestamp(1700000000, tz=timezone.utc)
    assert token.get_as("profile", Profile) == Profile("ada", 3)


def test_typed_claim_mismatch_names_the_claim() -> None:
    with pytest.raises(ClaimDecodeError) as excinfo:
        parse('{"profile": {"nickname": "x"}}', typed_claim("profile", Profile))
    assert excinfo.value.claim == "profile"
    assert "profile" in str(excinfo.value)


def test_typed_claim_rejects_standard_claims() -> None:
    with pytest.raises(ValueError):
        typed_claim("exp", int)


def test_duplicate_claim_names_last_value_wins() -> None:
    token = parse('{"role": "user", "role": "admin"}')
    assert token["role"] == "admin"
    assert len(token) == 1


def test_parser_uses_injected_registry_only() -> None:
    registry = ClaimRegistry({"level": int})
    isolated = Parser(registry)
    with pytest.raises(ClaimDecodeError):
        isolated.parse('{"level": "high"}')
    assert Parser(ClaimRegistry()).parse('{"level": "high"}')["level"] == "high"


def test_decode_header_returns_header_only() -> None:
    key = Key.from_secret(SECRET, "HS256", kid="hdr")
    text = encode({"sub": "u"}, key, headers={"typ": "JWT", "cty": "demo"})
    header = decode_header(text)
    assert header["kid"] == "hdr"
    assert header["cty"] == "demo"
    assert decode_header('{"sub": "u"}') == {}


def test_shape_raising_unexpected_error_is_claim_decode_error() -> None:
    with pytest.raises(ClaimDecodeError) as excinfo:
        parse('{"x": 5}', typed_claim("x", lambda value: value.upper()))
    assert excinfo.value.claim == "x"


def test_audience_list_cannot_be_mutated_through_token() -> None:
    token = parse('{"aud": ["api", "web"]}')
    assert token["aud"] == ("api", "web")
    with pytest.raises(AttributeError):
        token["aud"].append("admin")
    assert token.to_dict() == {"aud": ["api", "web"]}
    assert token.audience == ("api", "web")

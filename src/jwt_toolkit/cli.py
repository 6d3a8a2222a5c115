from __future__ import annotations

import argparse
import json
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from jwt import exceptions as jwt_exceptions

from .encoder import ClaimEncoder, encode
from .errors import format_error
from .jwks import load_jwks
from .keys import (
    Key,
    KeySet,
    jwk_from_pem,
    jwk_thumbprint_sha256,
    jwks_from_pem,
    load_key_from_file,
    load_key_from_material,
)
from .parser import ParseOption, decode_header, parse, typed_claim, verify_with, verify_with_keyset
from .token import Token
from .validator import ValidationResult, Validator
from .version import __version__

_CLAIM_SHAPES: dict[str, Any] = {
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "list": list,
    "dict": dict,
    "datetime": datetime,
}


def _ensure_dict(obj: Any, context: str) -> dict[str, Any]:
    if not isinstance(obj, dict):
        raise SystemExit(f"{context} must be a JSON object")
    return obj


def _load_payload(args: argparse.Namespace) -> dict[str, Any]:
    if args.payload and args.payload_file:
        raise SystemExit("use only one of --payload or --payload-file")
    if args.payload_file:
        obj = json.loads(Path(args.payload_file).read_text(encoding="utf-8"))
        return _ensure_dict(obj, "payload")
    if args.payload:
        obj = json.loads(args.payload)
        return _ensure_dict(obj, "payload")
    raise SystemExit("missing payload: use --payload or --payload-file")


def _load_headers(args: argparse.Namespace) -> dict[str, Any] | None:
    if not args.headers:
        return None
    headers = _ensure_dict(json.loads(args.headers), "headers")
    return {k: v for k, v in headers.items() if k not in {"alg", "kid"}}


def _print_json(obj: object) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True, cls=ClaimEncoder))


def _load_token(token_arg: str) -> str:
    if token_arg != "-":
        return token_arg
    token = sys.stdin.read().strip()
    if not token:
        raise ValueError("stdin is empty; expected JWT")
    return token


def _load_text(text_arg: str, label: str) -> str:
    if text_arg != "-":
        return text_arg
    text = sys.stdin.read()
    if not text.strip():
        raise ValueError(f"stdin is empty; expected {label}")
    return text


def _claim_type_options(values: list[str] | None) -> list[ParseOption]:
    options: list[ParseOption] = []
    for raw in values or []:
        name, sep, shape_name = raw.partition("=")
        shape = _CLAIM_SHAPES.get(shape_name.strip())
        if not sep or not name.strip() or shape is None:
            supported = ", ".join(sorted(_CLAIM_SHAPES))
            raise ValueError(f"invalid --claim-type {raw!r} (expected name=shape; shapes: {supported})")
        options.append(typed_claim(name.strip(), shape))
    return options


def _validator_from_args(args: argparse.Namespace) -> Validator:
    leeway = int(args.leeway)
    if leeway < 0:
        raise ValueError("leeway must be a non-negative integer")
    return Validator(
        issuer=args.iss,
        subject=args.sub,
        audience=args.aud,
        leeway=leeway,
        check_issued_at=args.check_iat,
        fail_fast=args.fail_fast,
    )


def _now_from_args(args: argparse.Namespace) -> int:
    if args.at is not None and int(args.at) < 0:
        raise ValueError("--at must be a non-negative integer")
    return int(args.at) if args.at is not None else int(time.time())


def _report(token: Token, result: ValidationResult, now: int, leeway: int, **extra: Any) -> int:
    _print_json(
        {
            "ok": result.ok,
            "header": token.header,
            "payload": token.to_dict(),
            "violations": [
                {"kind": v.kind.value, "message": v.message, "claim": v.claim, "rule": v.rule}
                for v in result.violations
            ],
            "now": now,
            "leeway": leeway,
            **extra,
        }
    )
    if result.ok:
        return 0
    for violation in result.violations:
        print(f"warning: {violation.message}", file=sys.stderr)
    return 2


def _cmd_decode(args: argparse.Namespace) -> int:
    token = parse(_load_token(args.token), *_claim_type_options(args.claim_type))
    _print_json({"header": token.header, "payload": token.to_dict()})
    return 0


def _cmd_validate(args: argparse.Namespace) -> int:
    token = parse(_load_token(args.token), *_claim_type_options(args.claim_type))
    now = _now_from_args(args)
    result = _validator_from_args(args).validate(token, now=now)
    return _report(token, result, now, int(args.leeway))


def _validate_verify_args(args: argparse.Namespace) -> None:
    if args.key and args.key_text is not None:
        raise ValueError("use only one of --key or --key-text")

    use_local_key = bool(args.key or args.key_text is not None)
    use_jwk = bool(args.jwk)
    use_jwks = bool(args.jwks or args.jwks_cache or args.jwks_url)
    selected = int(use_local_key) + int(use_jwk) + int(use_jwks)
    if selected > 1:
        raise ValueError(
            "provide one key source: (--key/--key-text) or --jwk or (--jwks/--jwks-url/--jwks-cache)"
        )
    if selected == 0:
        raise ValueError(
            "missing key material; provide --key, --key-text, --jwk, --jwks, --jwks-url, or --jwks-cache"
        )
    if args.jwks_url and args.jwks:
        raise ValueError("use only one of --jwks or --jwks-url")


def _verification_option(args: argparse.Namespace, token_text: str) -> ParseOption:
    if args.jwks or args.jwks_url or args.jwks_cache:
        jwks = load_jwks(args.jwks, args.jwks_url, args.jwks_cache)
        return verify_with_keyset(KeySet.from_jwks(jwks))

    alg = args.alg or decode_header(token_text).get("alg")
    if not alg:
        raise ValueError("missing alg in header; supply --alg")
    key: Key
    if args.jwk:
        key = load_key_from_material(Path(args.jwk).read_text(encoding="utf-8"), alg, "jwk")
    elif args.key:
        key = load_key_from_file(args.key, alg)
    else:
        key_text = _load_text(args.key_text, "key material")
        kind = "secret" if alg.startswith("HS") else "pem"
        key = load_key_from_material(key_text, alg, kind)
    return verify_with(alg, key)


def _cmd_verify(args: argparse.Namespace) -> int:
    _validate_verify_args(args)
    if args.token == "-" and args.key_text == "-":
        raise ValueError("cannot read both token and key from stdin; provide one normally")
    token_text = _load_token(args.token)
    now = _now_from_args(args)
    option = _verification_option(args, token_text)
    token = parse(token_text, option, *_claim_type_options(args.claim_type))
    result = _validator_from_args(args).validate(token, now=now)
    return _report(token, result, now, int(args.leeway), valid=result.ok)


def _cmd_sign(args: argparse.Namespace) -> int:
    if args.key and args.key_text is not None:
        raise ValueError("use only one of --key or --key-text")
    payload = _load_payload(args)
    if args.key:
        key = load_key_from_file(args.key, args.alg, args.kid)
    elif args.key_text is not None:
        key_text = _load_text(args.key_text, "key material")
        kind = "secret" if args.alg.startswith("HS") else "pem"
        key = load_key_from_material(key_text, args.alg, kind, args.kid)
    else:
        raise ValueError("missing key material; provide --key or --key-text")
    print(encode(payload, key, headers=_load_headers(args)))
    return 0


def _cmd_jwk(args: argparse.Namespace) -> int:
    jwk = jwk_from_pem(Path(args.pem).read_text(encoding="utf-8"), kid=args.kid)
    if args.thumbprint:
        print(jwk_thumbprint_sha256(jwk))
        return 0
    _print_json(jwk)
    return 0


def _cmd_jwks(args: argparse.Namespace) -> int:
    jwks = jwks_from_pem(Path(args.pem).read_text(encoding="utf-8"), kid=args.kid)
    _print_json(jwks)
    return 0


def _add_token_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--token", required=True, help="JWT or JSON claim set (use '-' to read from stdin)")
    p.add_argument(
        "--claim-type",
        action="append",
        help="Decode a private claim into a type for this call, e.g. roles=list (repeatable)",
    )


def _add_validation_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--iss", help="Expected issuer (iss must equal it)")
    p.add_argument("--sub", help="Expected subject (sub must equal it)")
    p.add_argument("--aud", help="Expected audience (aud must contain it)")
    p.add_argument(
        "--leeway",
        type=int,
        default=0,
        help="Clock skew in seconds when checking exp/nbf/iat (default: 0)",
    )
    p.add_argument(
        "--at",
        type=int,
        help="Override current time as unix seconds for exp/nbf/iat checks (debugging)",
    )
    p.add_argument(
        "--check-iat", action="store_true", help="Reject tokens whose iat is in the future"
    )
    p.add_argument(
        "--fail-fast", action="store_true", help="Stop at the first violated claim"
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="jwt-toolkit")
    parser.add_argument("--version", action="version", version=__version__)

    sub = parser.add_subparsers(dest="cmd", required=True)

    p_decode = sub.add_parser("decode", help="Decode a JWT without verifying or validating it")
    _add_token_args(p_decode)
    p_decode.set_defaults(func=_cmd_decode)

    p_validate = sub.add_parser(
        "validate",
        help="Decode + check claims (no signature verification; exits non-zero on violations)",
    )
    _add_token_args(p_validate)
    _add_validation_args(p_validate)
    p_validate.set_defaults(func=_cmd_validate)

    p_verify = sub.add_parser("verify", help="Verify a JWT signature and check its claims")
    _add_token_args(p_verify)
    p_verify.add_argument("--alg", help="Expected algorithm (e.g. HS256, RS256, ES256, EdDSA)")
    p_verify.add_argument("--key", help="Path to secret or PEM key")
    p_verify.add_argument(
        "--key-text",
        help="Raw secret/key text (use '-' to read from stdin; HS* secret or PEM as needed)",
    )
    p_verify.add_argument("--jwk", help="Path to JWK JSON file")
    p_verify.add_argument("--jwks", help="Path to JWKS JSON file (key picked by header kid)")
    p_verify.add_argument("--jwks-url", help="JWKS URL (http(s); optional cache via --jwks-cache)")
    p_verify.add_argument(
        "--jwks-cache",
        help="Path to JWKS cache file (read from cache if jwks not provided; writes on verify)",
    )
    _add_validation_args(p_verify)
    p_verify.set_defaults(func=_cmd_verify)

    p_sign = sub.add_parser("sign", help="Sign a JWT")
    p_sign.add_argument("--payload", help="JSON payload string")
    p_sign.add_argument("--payload-file", help="Path to JSON payload file")
    p_sign.add_argument("--headers", help="JSON header object (optional)")
    p_sign.add_argument("--alg", default="HS256", help="Algorithm (HS256, RS256, ES256, EdDSA)")
    p_sign.add_argument("--key", help="Path to secret or PEM private key")
    p_sign.add_argument("--key-text", help="Raw secret/key text (use '-' to read from stdin)")
    p_sign.add_argument("--kid", help="Optional key id")
    p_sign.set_defaults(func=_cmd_sign)

    p_jwk = sub.add_parser("jwk", help="Convert PEM to JWK")
    p_jwk.add_argument("--pem", required=True, help="Path to PEM public or private key")
    p_jwk.add_argument("--kid", help="Optional key id")
    p_jwk.add_argument(
        "--thumbprint", action="store_true", help="Print the RFC 7638 SHA-256 thumbprint instead"
    )
    p_jwk.set_defaults(func=_cmd_jwk)

    p_jwks = sub.add_parser("jwks", help="Convert PEM to JWKS")
    p_jwks.add_argument("--pem", required=True, help="Path to PEM public or private key")
    p_jwks.add_argument("--kid", help="Optional key id")
    p_jwks.set_defaults(func=_cmd_jwks)

    args = parser.parse_args(argv)
    try:
        return int(args.func(args))
    except KeyboardInterrupt:
        return 130
    except jwt_exceptions.PyJWTError as exc:
        print(f"error: {format_error(exc)}", file=sys.stderr)
        return 2
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())

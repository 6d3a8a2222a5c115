from __future__ import annotations

import dataclasses
import json
from collections.abc import Mapping
from datetime import datetime
from typing import Any

import jwt

from .keys import Key


class ClaimEncoder(json.JSONEncoder):
    """JSON encoder for claim values decoded into richer shapes."""

    def default(self, o: Any) -> Any:
        if isinstance(o, datetime):
            return int(o.timestamp())
        if dataclasses.is_dataclass(o) and not isinstance(o, type):
            return dataclasses.asdict(o)
        if isinstance(o, (set, frozenset, tuple)):
            return list(o)
        model_dump = getattr(o, "model_dump", None)
        if callable(model_dump):
            return model_dump(mode="json")
        return super().default(o)


def encode(
    claims: Mapping[str, Any],
    key: Key,
    *,
    headers: Mapping[str, Any] | None = None,
) -> str:
    """Serialize ``claims`` as a compact JWS signed with ``key``.

    ``alg`` always comes from the key; ``kid`` does too unless ``headers``
    sets one.
    """
    if not key.can_sign:
        raise ValueError("key cannot sign (public key)")
    merged: dict[str, Any] = {k: v for k, v in (headers or {}).items() if k != "alg"}
    if key.kid and "kid" not in merged:
        merged["kid"] = key.kid
    return jwt.encode(
        dict(claims),
        key.material,
        algorithm=key.algorithm,
        headers=merged or None,
        json_encoder=ClaimEncoder,
    )

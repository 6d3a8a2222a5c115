from __future__ import annotations

import json
import os
import tempfile
import threading
import time
import urllib.parse
import urllib.request
from collections.abc import Iterator
from pathlib import Path
from typing import Any, cast

from jwt import PyJWKClient
from jwt import exceptions as jwt_exceptions

from .errors import KeySetUnavailableError
from .keys import Key, KeySet


def _check_url(url: str) -> None:
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in {"http", "https"}:
        raise ValueError("JWKS url must be http(s)")


def _check_jwks(obj: Any) -> dict[str, Any]:
    if not isinstance(obj, dict):
        raise ValueError("JWKS must be an object")
    if not isinstance(obj.get("keys"), list):
        raise ValueError("JWKS keys must be a list")
    return cast(dict[str, Any], obj)


def fetch_jwks(url: str, *, timeout: float = 3.0, max_bytes: int = 512 * 1024) -> dict[str, Any]:
    _check_url(url)
    req = urllib.request.Request(url, headers={"Accept": "application/json"})
    with urllib.request.urlopen(req, timeout=timeout) as response:
        body = response.read(max_bytes + 1)
    if len(body) > max_bytes:
        raise ValueError("JWKS response too large")

    try:
        parsed_json = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError("JWKS url did not return valid JSON") from exc
    return _check_jwks(parsed_json)


def _fetch_with_retries(url: str, *, timeout: float, retries: int) -> dict[str, Any]:
    attempt = 0
    while True:
        try:
            return fetch_jwks(url, timeout=timeout)
        except OSError:
            if attempt >= retries:
                raise
            attempt += 1
            time.sleep(min(0.2 * attempt, 1.0))


def _read_cache(cache_path: Path) -> dict[str, Any]:
    return _check_jwks(json.loads(cache_path.read_text(encoding="utf-8")))


def load_jwks(
    path: str | None = None,
    url: str | None = None,
    cache_path: str | None = None,
    *,
    timeout: float = 3.0,
    retries: int = 1,
) -> dict[str, Any]:
    """Load a JWKS document from ``url``, ``path`` or the ``cache_path`` file.

    A successful URL or file load refreshes the cache. When the URL cannot be
    fetched (after ``retries`` extra attempts) the cached copy is used if it
    exists.
    """
    cache = Path(cache_path) if cache_path else None
    if url:
        try:
            jwks = _fetch_with_retries(url, timeout=timeout, retries=retries)
        except (OSError, ValueError) as exc:
            if cache is not None and cache.exists():
                return _read_cache(cache)
            raise ValueError(f"failed to fetch JWKS from url: {exc}") from exc
        if cache is not None:
            write_json_atomic(cache, jwks)
        return jwks
    if path:
        jwks = _check_jwks(json.loads(Path(path).read_text(encoding="utf-8")))
        if cache is not None:
            write_json_atomic(cache, jwks)
        return jwks
    if cache is not None:
        if not cache.exists():
            raise ValueError("JWKS cache file not found; provide --jwks to populate it")
        return _read_cache(cache)
    raise ValueError("missing JWKS material; provide --jwks, --jwks-url or --jwks-cache")


def write_json_atomic(path: Path, obj: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(obj, indent=2, sort_keys=True).encode("utf-8")
    tmp_path: str | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="wb",
            dir=str(path.parent),
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp_path = tmp.name
            tmp.write(payload)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path is not None and os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass
    try:
        os.chmod(path, 0o600)
    except OSError:
        # chmod is a no-op on some filesystems.
        pass


class RemoteKeySet:
    """Key set backed by a JWKS URL, fetched lazily through ``PyJWKClient``.

    The document is cached for ``lifespan`` seconds. An unknown ``kid``
    triggers a refetch so rotated keys are picked up, but at most once per
    ``refresh_cooldown`` seconds. Fetches run outside the lock, so lookups
    against the cached set never wait on the network. Fetch failures raise
    ``KeySetUnavailableError``; nothing here retries beyond ``retries``.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 3.0,
        retries: int = 1,
        lifespan: float = 300.0,
        refresh_cooldown: float = 30.0,
        clock: Any = time.monotonic,
    ) -> None:
        _check_url(url)
        self.url = url
        self._client = PyJWKClient(url, cache_jwk_set=False, timeout=timeout)
        self._retries = retries
        self._lifespan = lifespan
        self._refresh_cooldown = refresh_cooldown
        self._clock = clock
        self._lock = threading.Lock()
        self._keys: KeySet | None = None
        self._fetched_at = 0.0

    def _fetch(self) -> KeySet:
        attempt = 0
        while True:
            try:
                return KeySet.from_jwks(_check_jwks(self._client.fetch_data()))
            except jwt_exceptions.PyJWKClientConnectionError as exc:
                if attempt >= self._retries:
                    raise KeySetUnavailableError(f"failed to fetch JWKS: {exc}") from exc
                attempt += 1
            except (jwt_exceptions.PyJWKClientError, ValueError) as exc:
                raise KeySetUnavailableError(f"invalid JWKS: {exc}") from exc

    def keys(self, *, refresh: bool = False) -> KeySet:
        with self._lock:
            cached = self._keys
            stale = self._clock() - self._fetched_at >= self._lifespan
        if cached is not None and not refresh and not stale:
            return cached

        fetched = self._fetch()
        with self._lock:
            self._keys = fetched
            self._fetched_at = self._clock()
        return fetched

    def _may_refresh(self) -> bool:
        with self._lock:
            return self._clock() - self._fetched_at >= self._refresh_cooldown

    def __iter__(self) -> Iterator[Key]:
        return iter(self.keys())

    def find(self, kid: str) -> Key | None:
        key = self.keys().find(kid)
        if key is None and self._may_refresh():
            key = self.keys(refresh=True).find(kid)
        return key

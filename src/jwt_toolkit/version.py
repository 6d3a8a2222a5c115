from __future__ import annotations

from importlib import metadata


def get_version() -> str:
    try:
        return metadata.version("jwt-toolkit")
    except metadata.PackageNotFoundError:
        return "0.0.0"


__version__ = get_version()

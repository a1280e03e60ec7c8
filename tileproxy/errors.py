from __future__ import annotations

from typing import Optional


class TileProxyError(Exception):
    """Base class for tile proxy errors."""


class NotFound(TileProxyError, LookupError):
    """No valid cached bytes for a tile (missing or zero-length entry)."""

    def __init__(self, key) -> None:
        super().__init__(f"tile not cached: {key}")
        self.key = key


class FetchError(TileProxyError):
    """
    Upstream retrieval failed.

    kind is one of:
      - "timeout":   no complete response within the fetch timeout
      - "status":    upstream answered with a non-2xx status
      - "transport": connection / protocol failure
    """

    KINDS = ("timeout", "status", "transport")

    def __init__(self, kind: str, url: str, status: Optional[int] = None, detail: str = "") -> None:
        if kind not in self.KINDS:
            raise ValueError(f"unknown fetch error kind: {kind}")
        msg = f"{kind} fetching {url}"
        if status is not None:
            msg += f" (HTTP {status})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.kind = kind
        self.url = url
        self.status = status


class ValidationError(TileProxyError, ValueError):
    """Downloaded payload is not a well-formed image."""


class LockTimeout(TileProxyError):
    """A blocking lock could not be acquired within its deadline."""

    def __init__(self, path, timeout: float) -> None:
        super().__init__(f"timed out after {timeout:.1f}s waiting for lock on {path}")
        self.path = path
        self.timeout = timeout

from __future__ import annotations

"""
Upstream tile transport.

Usage:
    fetcher = TileFetcher("https://tile.openstreetmap.org/{z}/{x}/{y}.png",
                          user_agent="tileproxy/0.1 (ops@example.org)",
                          referer="https://maps.example.org/")
    data = fetcher.fetch(fetcher.url_for(TileKey(14, 100, 200)))

The fetcher never touches the cache; callers validate and store the bytes.
"""

import logging
import time
from typing import Dict, Optional, Sequence

import requests

from common.types import TileKey
from tileproxy.errors import FetchError


log = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 30.0
CHUNK_SIZE = 64 * 1024


class TileFetcher:
    def __init__(
        self,
        url_template: str,
        *,
        subdomains: Sequence[str] = (),
        user_agent: str = "tileproxy/0.1",
        referer: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_S,
        session: Optional[requests.Session] = None,
    ):
        """
        Params:
            url_template: upstream URL with {z}/{x}/{y} (and optionally {s}) placeholders
            subdomains: values substituted for {s}, picked by (x + y) % len
            user_agent: identifying client label sent upstream
            referer: Referer header derived from the serving host
            timeout: hard per-request timeout in seconds
            session: optional requests.Session for connection reuse
        """
        self.url_template = url_template
        self.subdomains = tuple(subdomains)
        self.timeout = float(timeout)
        self.session = session or requests.Session()
        self.headers: Dict[str, str] = {"User-Agent": user_agent}
        if referer:
            self.headers["Referer"] = referer

    @classmethod
    def from_settings(cls, upstream, session: Optional[requests.Session] = None) -> "TileFetcher":
        return cls(
            upstream.url_template,
            subdomains=upstream.subdomains,
            user_agent=upstream.user_agent,
            referer=upstream.referer,
            timeout=upstream.timeout_s,
            session=session,
        )

    # ----------------------------
    # Public API
    # ----------------------------
    def url_for(self, key: TileKey) -> str:
        params = {"z": key.zoom, "x": key.x, "y": key.y}
        if self.subdomains:
            params["s"] = self.subdomains[(key.x + key.y) % len(self.subdomains)]
        return self.url_template.format(**params)

    def fetch(self, url: str) -> bytes:
        """
        GET `url` and return the body.

        `timeout` bounds the whole exchange: requests' own timeout only limits the
        connect and each socket read, so the body is streamed against a deadline.

        Raises:
            FetchError(kind="timeout")   on connect/read timeout or when the deadline passes
            FetchError(kind="status")    on any non-2xx answer
            FetchError(kind="transport") on other request failures
        """
        deadline = time.monotonic() + self.timeout
        try:
            r = self.session.get(url, headers=self.headers, timeout=self.timeout, stream=True)
        except requests.Timeout as e:
            raise FetchError("timeout", url, detail=str(e)) from e
        except requests.RequestException as e:
            raise FetchError("transport", url, detail=str(e)) from e

        try:
            if not 200 <= r.status_code < 300:
                log.warning("upstream answered %s for %s", r.status_code, url)
                raise FetchError("status", url, status=r.status_code)
            return self._read_body(r, url, deadline)
        finally:
            r.close()

    def _read_body(self, r: requests.Response, url: str, deadline: float) -> bytes:
        chunks = []
        try:
            for chunk in r.iter_content(CHUNK_SIZE):
                chunks.append(chunk)
                if time.monotonic() > deadline:
                    raise FetchError("timeout", url, detail=f"body not complete after {self.timeout}s")
        except requests.Timeout as e:
            raise FetchError("timeout", url, detail=str(e)) from e
        except requests.RequestException as e:
            raise FetchError("transport", url, detail=str(e)) from e
        return b"".join(chunks)

    def fetch_tile(self, key: TileKey) -> bytes:
        return self.fetch(self.url_for(key))

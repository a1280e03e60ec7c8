from __future__ import annotations

import enum
import logging
import time
from typing import Callable, Optional

from common.types import TileKey
from tileproxy import locks
from tileproxy.errors import FetchError, ValidationError
from tileproxy.fetcher import TileFetcher
from tileproxy.tile_store import TileStore
from tileproxy.validator import validate


log = logging.getLogger(__name__)


class DownloadOutcome(enum.Enum):
    STORED = "stored"      # fetched, validated and written
    SKIPPED = "skipped"    # another worker holds the download lock for this tile
    FAILED = "failed"      # fetch or validation failed; store untouched

    @property
    def succeeded(self) -> bool:
        return self is DownloadOutcome.STORED


class SingleFlightDownloader:
    """
    Fetch → validate → store, at most one in flight per tile across all workers.

    The download lock (`<tile>.png.lock`, non-blocking) is held for the whole
    network round trip; it never blocks readers of the current tile. The store's
    own content lock is taken only for the local write.
    """

    def __init__(
        self,
        store: TileStore,
        fetcher: TileFetcher,
        *,
        validate_fn: Callable[[bytes], None] = validate,
    ):
        self.store = store
        self.fetcher = fetcher
        self._validate = validate_fn

    def download(self, key: TileKey) -> DownloadOutcome:
        with locks.try_lock(self.store.lock_path(key)) as held:
            if not held:
                log.info("download already in progress, skipping", extra={"extra": {"tile": str(key)}})
                return DownloadOutcome.SKIPPED
            return self._download_locked(key)

    def _download_locked(self, key: TileKey) -> DownloadOutcome:
        url = self.fetcher.url_for(key)
        t0 = time.perf_counter()
        try:
            data = self.fetcher.fetch(url)
        except FetchError as e:
            log.warning(
                "tile fetch failed: %s", e,
                extra={"extra": {"tile": str(key), "kind": e.kind, "status": e.status}},
            )
            return DownloadOutcome.FAILED
        fetch_ms = (time.perf_counter() - t0) * 1e3

        try:
            self._validate(data)
        except ValidationError as e:
            log.warning(
                "discarding invalid tile payload: %s", e,
                extra={"extra": {"tile": str(key), "bytes": len(data), "url": url}},
            )
            return DownloadOutcome.FAILED

        try:
            self.store.write(key, data)
        except OSError:
            log.exception("could not write tile %s", key)
            return DownloadOutcome.FAILED

        log.info(
            "tile stored",
            extra={"extra": {"tile": str(key), "bytes": len(data), "fetch_ms": round(fetch_ms, 1)}},
        )
        return DownloadOutcome.STORED

    def download_into(self, key: TileKey) -> bool:
        """Boolean form: True only when this call stored a fresh copy."""
        return self.download(key).succeeded

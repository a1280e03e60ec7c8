from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, Optional

from common.geo import Region
from common.types import CachedTile, TileKey
from tileproxy.config import Settings
from tileproxy.downloader import DownloadOutcome, SingleFlightDownloader
from tileproxy.errors import NotFound
from tileproxy.fetcher import TileFetcher
from tileproxy.refresh_queue import RefreshQueue
from tileproxy.tile_store import TileStore


log = logging.getLogger(__name__)


@dataclass
class RefreshReport:
    """Counters for one refresh or seed run."""
    drained: int = 0
    processed: int = 0
    stored: int = 0
    skipped: int = 0
    failed: int = 0
    discarded: int = 0

    def record(self, outcome: DownloadOutcome) -> None:
        self.processed += 1
        if outcome is DownloadOutcome.STORED:
            self.stored += 1
        elif outcome is DownloadOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class TileService:
    """
    Request-path and batch-path operations over one cache root.

    - serve(): cache hit, or synchronous single-flight download on a miss
    - enqueue_if_stale(): defer refresh of old tiles; the stale copy is still served
    - run_refresh_batch(): drain the refresh queue, bounded per run
    """

    def __init__(
        self,
        store: TileStore,
        downloader: SingleFlightDownloader,
        queue: RefreshQueue,
        *,
        freshness_window_s: float,
        max_per_run: int = 50,
    ):
        self.store = store
        self.downloader = downloader
        self.queue = queue
        self.freshness_window_s = float(freshness_window_s)
        self.max_per_run = int(max_per_run)

    @classmethod
    def from_settings(cls, settings: Settings, fetcher: Optional[TileFetcher] = None) -> "TileService":
        store = TileStore(settings.cache.root, read_lock_timeout=settings.read_lock_timeout_s)
        fetcher = fetcher or TileFetcher.from_settings(settings.upstream)
        return cls(
            store,
            SingleFlightDownloader(store, fetcher),
            RefreshQueue(settings.cache.queue_path),
            freshness_window_s=settings.cache.freshness_window_s,
            max_per_run=settings.refresh.max_per_run,
        )

    # -------- request path --------

    def serve(self, key: TileKey) -> CachedTile:
        """
        Return the cached tile, downloading it first if it is not cached yet.
        Raises NotFound when nothing could be obtained.
        """
        try:
            data, mtime = self.store.read(key)
        except NotFound:
            outcome = self.downloader.download(key)
            if outcome is DownloadOutcome.FAILED:
                raise
            # SKIPPED: another worker is fetching; serve whatever is there now
            data, mtime = self.store.read(key)
            return CachedTile(key, data, mtime, stale=False)
        stale = self.enqueue_if_stale(key)
        return CachedTile(key, data, mtime, stale=stale)

    def is_stale(self, key: TileKey) -> bool:
        return self.store.age(key) > self.freshness_window_s

    def enqueue_if_stale(self, key: TileKey) -> bool:
        """Queue `key` for background refresh when older than the freshness window."""
        try:
            if not self.is_stale(key):
                return False
        except NotFound:
            return False
        if self.queue.enqueue(key):
            log.info("stale tile queued for refresh", extra={"extra": {"tile": str(key)}})
        return True

    # -------- batch path --------

    def run_refresh_batch(self, max_count: Optional[int] = None) -> RefreshReport:
        """
        Drain the refresh queue and re-download at most `max_count` tiles.
        Entries past the cap are dropped for this run; failures do not stop the batch.
        """
        cap = self.max_per_run if max_count is None else int(max_count)
        taken, discarded = self.queue.drain(cap)
        report = RefreshReport(drained=len(taken) + len(discarded), discarded=len(discarded))
        for key in taken:
            report.record(self.downloader.download(key))
        if discarded:
            log.warning("refresh cap reached, dropped %d queued tiles", len(discarded))
        log.info("refresh batch done", extra={"extra": report.to_dict()})
        return report

    def seed(self, region: Region, zooms: Iterable[int], *, skip_existing: bool = True) -> RefreshReport:
        """Warm the cache with every tile of `region` at the given zoom levels."""
        zooms = list(zooms)
        for z in zooms:
            if not (region.min_zoom <= z <= region.max_zoom):
                raise ValueError(f"zoom {z} outside region range {region.min_zoom}..{region.max_zoom}")
        report = RefreshReport()
        for z in zooms:
            for key in region.keys(z):
                if skip_existing and self.store.exists(key):
                    continue
                report.record(self.downloader.download(key))
        log.info("seed done", extra={"extra": report.to_dict()})
        return report

    def stats(self) -> Dict[str, int]:
        return {"tiles": self.store.count(), "queued": self.queue.pending()}

"""
Shared fixtures: real PNG payloads (Pillow), a scripted upstream and a service
wired to a temporary cache root.
"""

import io
import os
import sys
import threading
from typing import Dict, List, Optional

import pytest
from PIL import Image

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.append(project_root)

from common.types import TileKey
from tileproxy.downloader import SingleFlightDownloader
from tileproxy.errors import FetchError
from tileproxy.refresh_queue import RefreshQueue
from tileproxy.service import TileService
from tileproxy.tile_store import TileStore


def make_png(color=(40, 120, 200), size=(256, 256)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


class FakeFetcher:
    """
    Stand-in for TileFetcher: serves canned bodies per URL and records every call.
    Unknown URLs answer with the default payload, or raise `error` when set.
    """

    def __init__(self, payload: Optional[bytes] = None, error: Optional[FetchError] = None):
        self.payload = payload if payload is not None else make_png()
        self.error = error
        self.bodies: Dict[str, bytes] = {}
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def url_for(self, key: TileKey) -> str:
        return f"https://upstream.test/{key.zoom}/{key.x}/{key.y}.png"

    def fetch(self, url: str) -> bytes:
        with self._lock:
            self.calls.append(url)
        if self.error is not None:
            raise self.error
        return self.bodies.get(url, self.payload)


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def store(tmp_path) -> TileStore:
    return TileStore(tmp_path / "tiles", read_lock_timeout=2.0)


@pytest.fixture
def queue(tmp_path) -> RefreshQueue:
    return RefreshQueue(tmp_path / "tiles" / "refresh.queue")


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def service(store, queue, fetcher) -> TileService:
    return TileService(
        store,
        SingleFlightDownloader(store, fetcher),
        queue,
        freshness_window_s=2 * 24 * 3600,
        max_per_run=50,
    )


@pytest.fixture
def png_factory():
    return make_png

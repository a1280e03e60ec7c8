"""
Integration tests for the FastAPI tile endpoints
"""

import os
import time

import pytest
from fastapi.testclient import TestClient

from common.geo import Region
from common.types import TileKey
from common.utils import parse_http_date
from tileproxy.config import Settings, settings_from_dict
from tileproxy.errors import FetchError
from tileproxy.server import create_app, tile_headers


DAY = 24 * 3600
# inside the default test region at zoom 14
KEY = TileKey(14, 4686, 6268)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return settings_from_dict({
        "cache": {"root": str(tmp_path / "tiles")},
        "region": {"min_zoom": 10, "max_zoom": 16, "bbox": [-77.12, 38.80, -76.90, 38.99]},
    })


@pytest.fixture
def client(settings, service):
    return TestClient(create_app(settings, service))


class TestTileEndpoint:
    """GET /tiles/{z}/{x}/{y}.png"""

    def test_region_contains_test_key(self, settings):
        assert settings.region.contains(KEY)

    def test_miss_then_hit(self, client, fetcher, png_bytes):
        r = client.get(f"/tiles/{KEY}.png")
        assert r.status_code == 200
        assert r.headers["content-type"] == "image/png"
        assert r.content == png_bytes
        assert len(fetcher.calls) == 1

        r2 = client.get(f"/tiles/{KEY}.png")
        assert r2.status_code == 200
        assert r2.content == png_bytes
        assert len(fetcher.calls) == 1

    def test_freshness_headers(self, client, store, png_bytes):
        store.write(KEY, png_bytes)
        mtime = int(time.time()) - 3600
        os.utime(store.path(KEY), (mtime, mtime))

        r = client.get(f"/tiles/{KEY}.png")
        assert parse_http_date(r.headers["last-modified"]) == mtime
        assert parse_http_date(r.headers["expires"]) == mtime + 2 * DAY
        assert r.headers["x-tile-stale"] == "0"

    def test_stale_tile_served_and_queued(self, client, store, queue, fetcher, png_bytes):
        store.write(KEY, png_bytes)
        t = time.time() - 3 * DAY
        os.utime(store.path(KEY), (t, t))

        r = client.get(f"/tiles/{KEY}.png")
        assert r.status_code == 200
        assert r.content == png_bytes
        assert r.headers["x-tile-stale"] == "1"
        assert fetcher.calls == []
        assert queue.pending() == 1

    def test_outside_region_rejected_before_core(self, client, fetcher):
        r = client.get("/tiles/14/0/0.png")
        assert r.status_code == 404
        assert r.json()["detail"] == "tile_outside_region"
        r = client.get("/tiles/5/9/12.png")  # zoom below range
        assert r.status_code == 404
        assert fetcher.calls == []

    def test_index_beyond_grid(self, client, fetcher):
        r = client.get("/tiles/2/9/0.png")
        assert r.status_code == 404
        assert r.json()["detail"] == "tile_out_of_range"
        assert fetcher.calls == []

    @pytest.mark.parametrize("zoom", [31, 1000000000, 100000000000, 9223372036854775808])
    def test_huge_zoom_rejected(self, client, fetcher, zoom):
        r = client.get(f"/tiles/{zoom}/0/0.png")
        assert r.status_code == 404
        assert r.json()["detail"] == "tile_out_of_range"
        assert fetcher.calls == []

    @pytest.mark.parametrize("path", ["/tiles/a/1/2.png", "/tiles/14/x/6268.png", "/tiles/14/4686/y.png"])
    def test_malformed_path(self, client, path):
        assert client.get(path).status_code == 422

    def test_upstream_failure_404(self, client, fetcher):
        fetcher.error = FetchError("status", "u", status=503)
        r = client.get(f"/tiles/{KEY}.png")
        assert r.status_code == 404
        assert r.json() == {"error": "tile_not_found"}


class TestRefreshEndpoint:
    """GET|POST /refresh"""

    def test_refresh_drains_queue(self, client, queue, fetcher, store):
        keys = [TileKey(14, 4686, 6268 + i) for i in range(4)]
        for k in keys:
            queue.enqueue(k)

        r = client.post("/refresh", params={"max": 2})
        assert r.status_code == 200
        body = r.json()
        assert body["processed"] == 2
        assert body["stored"] == 2
        assert body["discarded"] == 2
        assert queue.pending() == 0
        assert store.exists(keys[0]) and store.exists(keys[1])
        assert not store.exists(keys[2])

    def test_refresh_get_default_cap(self, client):
        r = client.get("/refresh")
        assert r.status_code == 200
        assert r.json()["drained"] == 0

    def test_negative_max_rejected(self, client):
        assert client.get("/refresh", params={"max": -1}).status_code == 422


class TestInfoEndpoints:
    """GET /health and /stats"""

    def test_health(self, client, settings):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["region"]["min_zoom"] == 10

    def test_stats(self, client, store, queue, png_bytes):
        store.write(KEY, png_bytes)
        queue.enqueue(TileKey(14, 4686, 6269))
        assert client.get("/stats").json() == {"tiles": 1, "queued": 1}


class TestTileHeaders:
    """Response emitter helper"""

    def test_expires_is_one_window_after_last_modified(self):
        from common.types import CachedTile

        t = CachedTile(TileKey(1, 0, 0), b"x", last_modified=784111777.0, stale=True)
        h = tile_headers(t, 3600)
        assert h["Last-Modified"] == "Sun, 06 Nov 1994 08:49:37 GMT"
        assert h["Expires"] == "Sun, 06 Nov 1994 09:49:37 GMT"
        assert h["X-Tile-Stale"] == "1"

    def test_world_region_default(self):
        assert Settings().region == Region()

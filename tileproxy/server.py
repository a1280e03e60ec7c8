from __future__ import annotations

from typing import Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse, Response

from common.logging_setup import get_logger
from common.types import CachedTile, TileKey
from common.utils import http_date, iso_now_ms
from tileproxy.config import Settings, load_settings
from tileproxy.errors import LockTimeout, NotFound
from tileproxy.service import TileService


log = get_logger(__name__)


def tile_headers(tile: CachedTile, freshness_window_s: float) -> Dict[str, str]:
    """Freshness headers: Last-Modified from mtime, Expires one window later."""
    return {
        "Last-Modified": http_date(tile.last_modified),
        "Expires": http_date(tile.last_modified + freshness_window_s),
        "X-Tile-Stale": "1" if tile.stale else "0",
    }


def create_app(settings: Optional[Settings] = None, service: Optional[TileService] = None) -> FastAPI:
    settings = settings or load_settings()
    service = service or TileService.from_settings(settings)
    region = settings.region

    app = FastAPI(title="Tile Cache Proxy", version="0.1.0")
    app.state.settings = settings
    app.state.service = service

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "time": iso_now_ms(),
            "cache_root": str(service.store.root),
            "region": {"min_zoom": region.min_zoom, "max_zoom": region.max_zoom, "bbox": list(region.bbox)},
        }

    @app.get("/stats")
    def stats():
        return service.stats()

    @app.get("/tiles/{z}/{x}/{y}.png")
    def tile(z: int, x: int, y: int):
        """
        Return PNG bytes for tile z/x/y.

        Order:
          1) local cache (stale tiles are served and queued for refresh)
          2) synchronous single-flight download on a miss
        """
        try:
            key = TileKey(z, x, y)
        except ValueError:
            raise HTTPException(status_code=404, detail="tile_out_of_range") from None
        if not region.contains(key):
            raise HTTPException(status_code=404, detail="tile_outside_region")

        try:
            t = service.serve(key)
        except NotFound:
            return JSONResponse({"error": "tile_not_found"}, status_code=404)
        except LockTimeout as e:
            log.warning("tile read timed out: %s", e)
            return JSONResponse({"error": "tile_busy"}, status_code=503)

        log.debug("served tile", extra={"extra": t.to_meta()})
        headers = tile_headers(t, service.freshness_window_s)
        return Response(content=t.data, media_type="image/png", headers=headers)

    @app.api_route("/refresh", methods=["GET", "POST"])
    def refresh(max_count: Optional[int] = Query(None, ge=0, alias="max")):
        """Drain the refresh queue once; meant to be hit by an external scheduler."""
        report = service.run_refresh_batch(max_count)
        return report.to_dict()

    return app


app = create_app()


# -------- local dev entrypoint --------
if __name__ == "__main__":
    s = app.state.settings
    uvicorn.run(app, host=s.server.host, port=s.server.port)

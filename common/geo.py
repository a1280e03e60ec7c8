from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Sequence, Tuple
import math

from common.types import MAX_ZOOM, TileKey


# Web Mercator is undefined at the poles; clamp to the usual tile-pyramid limit.
MAX_LAT = 85.0511287798066


# -------------------------
# Web Mercator tile indices
# -------------------------
def lon_to_tile_x(lon: float, zoom: int) -> int:
    """Column index of the tile containing `lon` at `zoom`."""
    n = 1 << int(zoom)
    x = int(math.floor((lon + 180.0) / 360.0 * n))
    return max(0, min(n - 1, x))


def lat_to_tile_y(lat: float, zoom: int) -> int:
    """Row index of the tile containing `lat` at `zoom` (row 0 is the north edge)."""
    n = 1 << int(zoom)
    lat = max(-MAX_LAT, min(MAX_LAT, lat))
    r = math.radians(lat)
    y = int(math.floor((1.0 - math.asinh(math.tan(r)) / math.pi) / 2.0 * n))
    return max(0, min(n - 1, y))


def tile_to_lon(x: float, zoom: int) -> float:
    """Longitude of the west edge of column `x`."""
    return x / float(1 << int(zoom)) * 360.0 - 180.0


def tile_to_lat(y: float, zoom: int) -> float:
    """Latitude of the north edge of row `y`."""
    n = math.pi - 2.0 * math.pi * y / float(1 << int(zoom))
    return math.degrees(math.atan(math.sinh(n)))


def tile_for(lat: float, lon: float, zoom: int) -> TileKey:
    return TileKey(int(zoom), lon_to_tile_x(lon, zoom), lat_to_tile_y(lat, zoom))


def tile_bbox(key: TileKey) -> Tuple[float, float, float, float]:
    """[lon_min, lat_min, lon_max, lat_max] covered by a tile."""
    lon_min = tile_to_lon(key.x, key.zoom)
    lon_max = tile_to_lon(key.x + 1, key.zoom)
    lat_max = tile_to_lat(key.y, key.zoom)
    lat_min = tile_to_lat(key.y + 1, key.zoom)
    return (lon_min, lat_min, lon_max, lat_max)


# -------------------------
# Served region
# -------------------------
@dataclass(frozen=True)
class Region:
    """
    Area the proxy agrees to serve: a zoom range plus a lon/lat bounding box.

    bbox is [lon_min, lat_min, lon_max, lat_max] in WGS84 degrees. The box is
    converted to inclusive min/max tile indices per zoom.
    """
    min_zoom: int = 0
    max_zoom: int = 19
    bbox: Tuple[float, float, float, float] = (-180.0, -MAX_LAT, 180.0, MAX_LAT)

    def __post_init__(self) -> None:
        if self.min_zoom < 0 or self.max_zoom < self.min_zoom or self.max_zoom > MAX_ZOOM:
            raise ValueError(f"zoom range must satisfy 0 <= min_zoom <= max_zoom <= {MAX_ZOOM}")
        lon_min, lat_min, lon_max, lat_max = self.bbox
        if lon_min > lon_max or lat_min > lat_max:
            raise ValueError("bbox must be [lon_min, lat_min, lon_max, lat_max]")

    @classmethod
    def from_bbox(cls, bbox: Sequence[float], min_zoom: int, max_zoom: int) -> "Region":
        if len(bbox) != 4:
            raise ValueError("bbox needs 4 values")
        b = tuple(float(v) for v in bbox)
        return cls(min_zoom=int(min_zoom), max_zoom=int(max_zoom), bbox=b)  # type: ignore[arg-type]

    def bounds(self, zoom: int) -> Tuple[int, int, int, int]:
        """Inclusive (min_x, min_y, max_x, max_y) tile indices at `zoom`."""
        lon_min, lat_min, lon_max, lat_max = self.bbox
        min_x = lon_to_tile_x(lon_min, zoom)
        max_x = lon_to_tile_x(lon_max, zoom)
        # north edge has the smaller row index
        min_y = lat_to_tile_y(lat_max, zoom)
        max_y = lat_to_tile_y(lat_min, zoom)
        return (min_x, min_y, max_x, max_y)

    def contains(self, key: TileKey) -> bool:
        if not (self.min_zoom <= key.zoom <= self.max_zoom):
            return False
        min_x, min_y, max_x, max_y = self.bounds(key.zoom)
        return min_x <= key.x <= max_x and min_y <= key.y <= max_y

    def count(self, zoom: int) -> int:
        min_x, min_y, max_x, max_y = self.bounds(zoom)
        return (max_x - min_x + 1) * (max_y - min_y + 1)

    def keys(self, zoom: int) -> Iterator[TileKey]:
        """All tiles of one zoom level inside the region, row by row."""
        min_x, min_y, max_x, max_y = self.bounds(zoom)
        for y in range(min_y, max_y + 1):
            for x in range(min_x, max_x + 1):
                yield TileKey(int(zoom), x, y)

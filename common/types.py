from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict


# deepest zoom any slippy-map source publishes; also bounds the 2**zoom grid size
MAX_ZOOM = 30


@dataclass(frozen=True, slots=True)
class TileKey:
    """
    Address of a single map tile.

    Attributes:
        zoom: zoom level (0 = whole world in one tile).
        x, y: column / row index in the slippy-map grid, both in [0, 2**zoom).

    The canonical string form is "zoom/x/y" and is what the refresh queue persists.
    """
    zoom: int
    x: int
    y: int

    def __post_init__(self) -> None:
        for name in ("zoom", "x", "y"):
            v = getattr(self, name)
            if isinstance(v, bool) or not isinstance(v, int):
                raise TypeError(f"{name} must be an int")
        if not 0 <= self.zoom <= MAX_ZOOM:
            raise ValueError(f"zoom must be in [0, {MAX_ZOOM}]")
        n = 1 << self.zoom
        if not (0 <= self.x < n) or not (0 <= self.y < n):
            raise ValueError(f"tile index out of range for zoom {self.zoom}")

    @classmethod
    def parse(cls, text: str) -> "TileKey":
        """Inverse of str(); raises ValueError on anything but 'z/x/y'."""
        parts = text.strip().split("/")
        if len(parts) != 3:
            raise ValueError(f"malformed tile key: {text!r}")
        try:
            z, x, y = (int(p) for p in parts)
        except ValueError:
            raise ValueError(f"malformed tile key: {text!r}") from None
        return cls(z, x, y)

    def __str__(self) -> str:
        return f"{self.zoom}/{self.x}/{self.y}"


@dataclass(frozen=True, slots=True)
class CachedTile:
    """Tile bytes as served from the store, plus freshness information."""
    key: TileKey
    data: bytes
    last_modified: float
    stale: bool = False

    @property
    def size(self) -> int:
        return len(self.data)

    def to_meta(self) -> Dict[str, Any]:
        """Metadata without image bytes (safe to log/serialize)."""
        return {
            "tile": str(self.key),
            "size": self.size,
            "last_modified": datetime.fromtimestamp(self.last_modified, timezone.utc).isoformat(timespec="seconds"),
            "stale": self.stale,
        }


def tile_relpath(key: TileKey, suffix: str = ".png") -> Path:
    """Relative on-disk location of a tile: {z}/{x}/{y}.png"""
    return Path(str(key.zoom), str(key.x), f"{key.y}{suffix}")

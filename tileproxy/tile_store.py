from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Callable, Optional, Tuple

from common.types import TileKey, tile_relpath
from tileproxy import locks
from tileproxy.errors import NotFound


log = logging.getLogger(__name__)


class TileStore:
    """
    Disk tile cache laid out as a TMS-like directory tree:

        root/
          └─ {z}/
              └─ {x}/
                  ├─ {y}.png        (validated image bytes)
                  └─ {y}.png.lock   (download lock, zero bytes)

    Readers hold a shared flock on the .png while reading; writers hold an
    exclusive one while truncating and rewriting, so a reader never sees a
    partially written tile. Last-modified is the file mtime.
    """

    def __init__(
        self,
        root: str | Path = "data/tiles",
        *,
        read_lock_timeout: Optional[float] = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self.root = Path(root)
        self.read_lock_timeout = read_lock_timeout
        self._clock = clock

    # -------- paths --------

    def path(self, key: TileKey) -> Path:
        return self.root / tile_relpath(key)

    def lock_path(self, key: TileKey) -> Path:
        p = self.path(key)
        return p.with_name(p.name + ".lock")

    # -------- queries --------

    def exists(self, key: TileKey) -> bool:
        try:
            return self.path(key).stat().st_size > 0
        except FileNotFoundError:
            return False

    def last_modified(self, key: TileKey) -> float:
        try:
            st = self.path(key).stat()
        except FileNotFoundError:
            raise NotFound(key) from None
        if st.st_size == 0:
            raise NotFound(key)
        return st.st_mtime

    def age(self, key: TileKey) -> float:
        """Seconds since the tile was last written; NotFound if not cached."""
        return self._clock() - self.last_modified(key)

    def read(self, key: TileKey) -> Tuple[bytes, float]:
        """
        Return (bytes, last_modified) under a shared lock.
        Blocks while a writer replaces the tile, up to read_lock_timeout
        (raises tileproxy.errors.LockTimeout after that).
        """
        p = self.path(key)
        try:
            f = p.open("rb")
        except FileNotFoundError:
            raise NotFound(key) from None
        with f:
            with locks.locked(f, shared=True, timeout=self.read_lock_timeout, path=p):
                data = f.read()
                mtime = os.fstat(f.fileno()).st_mtime
        if not data:
            raise NotFound(key)
        return data, mtime

    # -------- mutation --------

    def write(self, key: TileKey, data: bytes) -> Path:
        """Replace the tile's content atomically with respect to readers."""
        if not data:
            raise ValueError("refusing to store an empty tile")
        p = self.path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        # O_CREAT without O_TRUNC: truncation happens only once the lock is held
        fd = os.open(str(p), os.O_RDWR | os.O_CREAT, 0o644)
        with os.fdopen(fd, "r+b") as f:
            with locks.locked(f, path=p):
                f.truncate(0)
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
        log.debug("stored tile", extra={"extra": {"tile": str(key), "bytes": len(data)}})
        return p

    def count(self) -> int:
        """Number of non-empty cached tiles (walks the tree)."""
        if not self.root.exists():
            return 0
        n = 0
        for p in self.root.glob("*/*/*.png"):
            try:
                if p.stat().st_size > 0:
                    n += 1
            except FileNotFoundError:
                continue
        return n

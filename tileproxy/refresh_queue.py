from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Tuple

from common.types import TileKey
from tileproxy import locks


log = logging.getLogger(__name__)


class RefreshQueue:
    """
    Deduplicated set of tiles awaiting background refresh.

    Persisted as one "z/x/y" line per tile in a single file, guarded by an
    exclusive flock on that file for every mutation. Draining empties the file;
    refresh is best-effort, so whatever a run does not process is dropped.
    """

    def __init__(self, path: str | Path = "data/tiles/refresh.queue"):
        self.path = Path(path)

    def enqueue(self, key: TileKey) -> bool:
        """Append `key` unless already queued. Returns True when a line was added."""
        line = str(key)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a+", encoding="utf-8") as f:
            with locks.locked(f, path=self.path):
                f.seek(0)
                content = f.read()
                if any(existing.strip() == line for existing in content.splitlines()):
                    return False
                # append mode: writes land at EOF regardless of position
                sep = "\n" if content and not content.endswith("\n") else ""
                f.write(sep + line + "\n")
                f.flush()
        log.debug("queued tile for refresh", extra={"extra": {"tile": line}})
        return True

    def drain(self, max_count: int) -> Tuple[List[TileKey], List[TileKey]]:
        """
        Read every queued key and truncate the file, atomically under the lock.

        Returns (taken, discarded): the first `max_count` keys for the caller to
        process and the remainder, which is not re-queued.
        """
        if max_count < 0:
            raise ValueError("max_count must be >= 0")
        try:
            fd = os.open(str(self.path), os.O_RDWR)
        except FileNotFoundError:
            return [], []
        with os.fdopen(fd, "r+", encoding="utf-8") as f:
            with locks.locked(f, path=self.path):
                lines = f.read().splitlines()
                f.seek(0)
                f.truncate(0)

        keys: List[TileKey] = []
        for raw in lines:
            if not raw.strip():
                continue
            try:
                keys.append(TileKey.parse(raw))
            except ValueError:
                log.warning("dropping malformed queue entry %r", raw)
        return keys[:max_count], keys[max_count:]

    def pending(self) -> int:
        """Number of queued keys (shared lock, read only)."""
        try:
            f = self.path.open("r", encoding="utf-8")
        except FileNotFoundError:
            return 0
        with f:
            with locks.locked(f, shared=True, path=self.path):
                return sum(1 for line in f if line.strip())

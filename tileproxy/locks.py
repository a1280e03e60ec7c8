from __future__ import annotations

"""
Advisory file locks shared by every worker that touches the cache root.

flock(2) locks belong to the open file description, so two opens of the same
path conflict even inside one process: the same primitive serializes threads of
a uvicorn worker and separate CGI/cron processes alike.
"""

import errno
import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator, Optional, Union

from tileproxy.errors import LockTimeout


FileLike = Union[int, IO]

POLL_INTERVAL_S = 0.05


def _fd(f: FileLike) -> int:
    return f if isinstance(f, int) else f.fileno()


def acquire(
    f: FileLike,
    *,
    shared: bool = False,
    blocking: bool = True,
    timeout: Optional[float] = None,
) -> bool:
    """
    Lock an open file.

    - blocking and timeout None: wait as long as it takes
    - blocking with timeout: poll until the deadline, then return False
    - non-blocking: single attempt

    Returns True when the lock is held.
    """
    op = fcntl.LOCK_SH if shared else fcntl.LOCK_EX
    fd = _fd(f)
    if blocking and timeout is None:
        fcntl.flock(fd, op)
        return True

    deadline = None if not blocking else time.monotonic() + max(0.0, timeout or 0.0)
    while True:
        try:
            fcntl.flock(fd, op | fcntl.LOCK_NB)
            return True
        except OSError as e:
            if e.errno not in (errno.EAGAIN, errno.EWOULDBLOCK, errno.EACCES):
                raise
        if deadline is None:
            return False
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False
        time.sleep(min(POLL_INTERVAL_S, remaining))


def release(f: FileLike) -> None:
    fcntl.flock(_fd(f), fcntl.LOCK_UN)


@contextmanager
def locked(
    f: FileLike,
    *,
    shared: bool = False,
    timeout: Optional[float] = None,
    path: Optional[Path] = None,
) -> Iterator[None]:
    """Blocking lock on an open file for the duration of the block."""
    if not acquire(f, shared=shared, blocking=True, timeout=timeout):
        raise LockTimeout(path or getattr(f, "name", f), timeout or 0.0)
    try:
        yield
    finally:
        release(f)


@contextmanager
def try_lock(path: Path) -> Iterator[bool]:
    """
    Non-blocking exclusive lock on a side file (created on demand, never removed).

    Yields True when this caller owns the lock, False when somebody else does.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(path), os.O_RDWR | os.O_CREAT, 0o644)
    try:
        held = acquire(fd, blocking=False)
        try:
            yield held
        finally:
            if held:
                release(fd)
    finally:
        os.close(fd)

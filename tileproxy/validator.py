from __future__ import annotations

"""
PNG integrity check applied to every upstream payload before it may enter the store.

Layout checked:
    8-byte signature
    repeated chunks: [length:u32be][type:4][data:length][crc:u32be]
where crc = CRC-32(type || data). The last chunk must be IEND with nothing after it,
so a body cut off at a chunk boundary is still rejected.
"""

import struct
import zlib
from typing import Iterator, Tuple

from tileproxy.errors import ValidationError


PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
IEND = b"IEND"
MAX_CHUNK_LEN = 2**31 - 1

_U32 = struct.Struct(">I")


def iter_chunks(data: bytes) -> Iterator[Tuple[bytes, bytes]]:
    """
    Yield (type, payload) for each chunk, raising ValidationError at the first defect.
    """
    if len(data) < len(PNG_SIGNATURE) or data[:8] != PNG_SIGNATURE:
        raise ValidationError("bad PNG signature")
    pos = 8
    end = len(data)
    last = None
    while pos < end:
        if end - pos < 8:
            raise ValidationError(f"truncated chunk header at offset {pos}")
        (length,) = _U32.unpack_from(data, pos)
        if length > MAX_CHUNK_LEN:
            raise ValidationError(f"chunk length {length} out of range at offset {pos}")
        ctype = data[pos + 4:pos + 8]
        body_start = pos + 8
        body_end = body_start + length
        if body_end + 4 > end:
            raise ValidationError(f"truncated {ctype!r} chunk at offset {pos}")
        (stored_crc,) = _U32.unpack_from(data, body_end)
        if zlib.crc32(data[pos + 4:body_end]) & 0xFFFFFFFF != stored_crc:
            raise ValidationError(f"CRC mismatch in {ctype!r} chunk at offset {pos}")
        last = ctype
        pos = body_end + 4
        yield ctype, data[body_start:body_end]
        if ctype == IEND and pos != end:
            raise ValidationError("trailing bytes after IEND")
    if last is None:
        raise ValidationError("no chunks after signature")
    if last != IEND:
        raise ValidationError(f"stream ends with {last!r}, expected IEND")


def validate(data: bytes) -> None:
    """Raise ValidationError unless `data` is a structurally sound PNG."""
    for _ in iter_chunks(data):
        pass


def is_valid(data: bytes) -> bool:
    try:
        validate(data)
    except ValidationError:
        return False
    return True

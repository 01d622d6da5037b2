from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional

from .store import Encoding, FileStateStore


logger = logging.getLogger("logwatch.tail")


def read_range(path: str, start: int, end: int) -> bytes:
    """Read bytes [start, end). Returns fewer bytes only if the file shrank."""
    if end <= start:
        return b""
    with open(path, "rb") as f:
        f.seek(start, os.SEEK_SET)
        return f.read(end - start)


def decode_chunk(data: bytes, encoding: Encoding) -> str:
    text = data.decode(encoding.value, errors="replace")
    if text.startswith("\ufeff"):
        text = text[1:]
    if not text.strip():
        return ""
    return text


def tail_lines(text: str, count: int) -> str:
    lines = text.splitlines()
    return "\n".join(lines[-count:]) if count > 0 else ""


class TailReader:
    def __init__(self, store: FileStateStore):
        self.store = store

    async def read(self, path: str, start: int, end: int) -> Optional[str]:
        """Decode [start, end) with the encoding recorded for path.

        The encoding is captured when the read is issued. Returns None when
        the path is untracked or the read fails, and "" for blank text.
        """
        rec = self.store.get(path)
        if rec is None:
            return None
        encoding = rec.encoding
        try:
            data = await asyncio.to_thread(read_range, path, start, end)
        except OSError as e:
            logger.warning("read of %s [%d, %d) failed: %s", path, start, end, e)
            return None
        return decode_chunk(data, encoding)

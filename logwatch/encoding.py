from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from .store import Encoding


logger = logging.getLogger("logwatch.encoding")

UTF16LE_BOM = b"\xff\xfe"
HEADER_BYTES = 4096

_LISTENER_RE = re.compile(r"Listener:\s+(.*?)(?:\r|\n|$)")
_CHANNEL_RE = re.compile(r"Channel Name:\s+(.*?)(?:\r|\n|$)")


@dataclass(frozen=True)
class HeaderInfo:
    encoding: Encoding = Encoding.UTF8
    owner: str = "Unknown"
    channel: Optional[str] = None


def sniff_encoding(prefix: bytes) -> Encoding:
    if prefix[:2] == UTF16LE_BOM:
        return Encoding.UTF16LE
    return Encoding.UTF8


def parse_header(prefix: bytes) -> HeaderInfo:
    """Pick the encoding from the BOM and pull the listener/channel labels.

    The channel label is only written by chat logs; game logs leave it None.
    """
    encoding = sniff_encoding(prefix)
    text = prefix.decode(encoding.value, errors="replace")
    m = _LISTENER_RE.search(text)
    owner = m.group(1).strip() if m and m.group(1).strip() else "Unknown"
    m = _CHANNEL_RE.search(text)
    channel = m.group(1).strip() if m and m.group(1).strip() else None
    return HeaderInfo(encoding=encoding, owner=owner, channel=channel)


def detect_header(path: str, limit: int = HEADER_BYTES) -> HeaderInfo:
    try:
        with open(path, "rb") as f:
            prefix = f.read(limit)
        return parse_header(prefix)
    except (OSError, ValueError) as e:
        logger.debug("header detection failed for %s: %s", path, e)
        return HeaderInfo()

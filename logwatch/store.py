from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional


class Category(str, Enum):
    GAME = "game"
    CHAT = "chat"
    UNKNOWN = "unknown"


class Encoding(str, Enum):
    # values are Python codec names
    UTF8 = "utf-8"
    UTF16LE = "utf-16-le"


@dataclass
class TrackedFile:
    path: str
    category: Category
    owner: str
    encoding: Encoding
    offset: int  # end of already-delivered bytes
    channel: Optional[str] = None


class FileStateStore:
    """Path -> TrackedFile mapping owned by a single monitor.

    All mutation happens on the event loop, so no locking is done here.
    """

    def __init__(self):
        self._files: Dict[str, TrackedFile] = {}

    def get(self, path: str) -> Optional[TrackedFile]:
        return self._files.get(path)

    def put(self, path: str, record: TrackedFile) -> None:
        self._files[path] = record

    def remove(self, path: str) -> Optional[TrackedFile]:
        return self._files.pop(path, None)

    def clear(self) -> None:
        self._files.clear()

    def paths(self) -> List[str]:
        return sorted(self._files)

    def __contains__(self, path: object) -> bool:
        return path in self._files

    def __len__(self) -> int:
        return len(self._files)

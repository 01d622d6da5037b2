from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Optional

import yaml


logger = logging.getLogger("logwatch.config")


def candidate_roots() -> List[Path]:
    home = Path.home()
    return [
        home / "Documents" / "EVE" / "logs",
        home / "OneDrive" / "Documents" / "EVE" / "logs",
    ]


def default_root(candidates: Optional[List[Path]] = None) -> str:
    """First existing candidate wins; otherwise fall back to the first one."""
    cands = candidates if candidates is not None else candidate_roots()
    for c in cands:
        if c.is_dir():
            return str(c)
    return str(cands[0])


@dataclass
class Settings:
    root: Optional[str] = None
    host: str = "127.0.0.1"
    port: int = 3000
    http_port: int = 3001
    poll_interval: float = 0.5
    depth: int = 2
    max_age: float = 24 * 60 * 60
    initial_lines: int = 100
    initial_read_bytes: int = 50 * 1024
    header_bytes: int = 4096
    ping_interval: float = 30.0
    extension: str = ".txt"
    # path component -> category; checked in order
    categories: Dict[str, str] = field(default_factory=lambda: {"Chatlogs": "chat", "Gamelogs": "game"})

    def resolved_root(self) -> str:
        return os.path.abspath(os.path.expanduser(self.root)) if self.root else default_root()


def load_settings(path: Optional[Path] = None, **overrides) -> Settings:
    """Build Settings from an optional YAML file plus explicit overrides.

    Unknown keys are ignored. A missing or malformed file leaves defaults.
    """
    data: Dict = {}
    if path is not None and path.exists():
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error("[config] could not read %s: %s", path, e)
            data = {}
        if not isinstance(data, dict):
            logger.error("[config] %s must contain a mapping", path)
            data = {}
    known = {f.name for f in fields(Settings)}
    values = {k: v for k, v in data.items() if k in known}
    values.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**values)

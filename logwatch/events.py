from __future__ import annotations

import os
from typing import Any, Dict

from .store import Category, TrackedFile


def update_event(rec: TrackedFile, text: str) -> Dict[str, Any]:
    return {
        "type": "update",
        "category": rec.category.value,
        "ownerLabel": rec.owner,
        "channelName": rec.channel if rec.category is Category.CHAT else None,
        "filename": os.path.basename(rec.path),
        "text": text,
    }


def info_event(message: str) -> Dict[str, Any]:
    return {"type": "info", "message": message}


def reset_event() -> Dict[str, Any]:
    return {"type": "reset"}


def config_success(path: str) -> Dict[str, Any]:
    return {"type": "config-success", "path": path}


def config_error(message: str) -> Dict[str, Any]:
    return {"type": "config-error", "message": message}


def ping_event() -> Dict[str, Any]:
    return {"type": "ping"}

# backend/analytics_hub/services/storage.py

from __future__ import annotations

import os
import time
from pathlib import Path

from ..config import settings

ALLOWED_EXTENSIONS = {".csv", ".json", ".xlsx", ".xls", ".parquet"}


def _root() -> Path:
    return Path(settings.ARTIFACT_ROOT) / "datasets"


def file_extension(filename: str) -> str:
    return os.path.splitext(filename or "")[-1].lower()


def save_upload(user_id: str, filename: str, data: bytes) -> str:
    """Write the bytes under <root>/<user_id>/<epoch_ms><ext> and return the relative storage path."""
    ext = file_extension(filename)
    if ext not in ALLOWED_EXTENSIONS:
        raise ValueError(f"unsupported file extension: {ext or '(none)'}")
    rel = f"{user_id}/{int(time.time() * 1000)}{ext}"
    dest = _root() / rel
    # two uploads in the same millisecond
    while dest.exists():
        rel = f"{user_id}/{int(time.time() * 1000) + 1}{ext}"
        dest = _root() / rel
    dest.parent.mkdir(parents=True, exist_ok=True)
    with open(dest, "wb") as out:
        out.write(data)
    return rel


def resolve(storage_path: str) -> Path:
    root = _root().resolve()
    p = (root / storage_path).resolve()
    if root not in p.parents:
        raise ValueError(f"storage path escapes root: {storage_path}")
    return p


def remove(storage_path: str) -> bool:
    try:
        p = resolve(storage_path)
    except ValueError:
        return False
    if p.exists():
        p.unlink()
        return True
    return False

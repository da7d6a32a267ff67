# backend/analytics_hub/services/data_loader.py

from __future__ import annotations
import json
import os
from pathlib import Path
from typing import Union

import pandas as pd

from . import storage


def _load_json_records(path: Union[str, Path]) -> pd.DataFrame:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list) or not all(isinstance(r, dict) for r in data):
        raise ValueError("JSON datasets must be an array of objects")
    return pd.DataFrame.from_records(data)


def _load_file_local(path: Union[str, Path]) -> pd.DataFrame:
    ext = os.path.splitext(str(path))[-1].lower()
    if ext == ".csv":
        df = pd.read_csv(path, skipinitialspace=True)
        df.columns = [str(c).strip() for c in df.columns]
        return df
    if ext == ".json":
        return _load_json_records(path)
    if ext in [".xls", ".xlsx"]:
        return pd.read_excel(path)
    if ext == ".parquet":
        return pd.read_parquet(path)
    raise ValueError(f"unsupported file extension: {ext}")


def load_dataset(storage_path: str) -> pd.DataFrame:
    """
    Load a stored dataset. Accepts a storage path relative to the dataset root,
    a file:// uri or an existing absolute path.
    """
    if storage_path.startswith("file://"):
        return _load_file_local(storage_path[len("file://"):])
    if os.path.isabs(storage_path) and os.path.exists(storage_path):
        return _load_file_local(storage_path)
    p = storage.resolve(storage_path)
    if not p.exists():
        raise FileNotFoundError(f"dataset file not found: {storage_path}")
    return _load_file_local(p)

# backend/analytics_hub/utils/json_safe.py

"""
Make pandas/numpy values storable in JSON columns and API responses.

NaN and +/-Inf become None, numpy scalars become Python scalars, timestamps
become ISO 8601 strings. Containers are converted recursively.
"""
from __future__ import annotations

import math
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping

import numpy as np
import pandas as pd


def _scalar(x: Any) -> Any:
    if x is pd.NA or x is pd.NaT:
        return None
    if isinstance(x, np.generic):
        x = x.item()
    if isinstance(x, Decimal):
        x = float(x)
    if isinstance(x, float):
        return x if math.isfinite(x) else None
    if isinstance(x, (pd.Timestamp, datetime, date)):
        return x.isoformat()
    if isinstance(x, pd.Timedelta):
        return str(x)
    if isinstance(x, bytes):
        return x.decode("utf-8", errors="replace")
    return x


def json_safe(obj: Any) -> Any:
    if isinstance(obj, Mapping):
        return {str(k): json_safe(v) for k, v in obj.items()}
    if isinstance(obj, pd.DataFrame):
        return {"columns": [str(c) for c in obj.columns], "rows": _rows(obj)}
    if isinstance(obj, (pd.Series, np.ndarray)):
        return [json_safe(v) for v in obj.tolist()]
    if isinstance(obj, (list, tuple, set)):
        return [json_safe(v) for v in obj]
    out = _scalar(obj)
    if out is None or isinstance(out, (bool, int, float, str)):
        return out
    return str(out)


def _rows(df: pd.DataFrame) -> List[List[Any]]:
    return [[json_safe(v) for v in row] for row in df.itertuples(index=False, name=None)]


def df_preview_safe(df: pd.DataFrame, limit: int = 50) -> Dict[str, Any]:
    """First `limit` rows plus the total row count."""
    head = df.head(int(limit))
    return {"columns": [str(c) for c in head.columns], "rows": _rows(head), "total_rows": int(len(df))}

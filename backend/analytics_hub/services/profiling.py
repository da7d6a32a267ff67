# backend/analytics_hub/services/profiling.py

"""
Column profiling for uploaded datasets.

A column is ``numeric`` when more than 80% of its non-empty values parse as
numbers, ``date`` when more than half parse as dates (values longer than 8
characters) or the header looks temporal, and ``text`` otherwise.
"""
from __future__ import annotations

from typing import Any, Dict, List

import pandas as pd

from ..schemas import ColumnProfile, DataProfile, DataSummary
from ..utils.json_safe import json_safe

NUMERIC_RATIO = 0.8
DATE_RATIO = 0.5
DATE_HINTS = ("date", "time", "created", "updated")
SAMPLE_VALUES = 5
SAMPLE_ROWS = 5


def _non_empty(s: pd.Series) -> pd.Series:
    s = s.dropna()
    if s.dtype == object:
        s = s[s.astype(str).str.strip() != ""]
    return s


def _numeric_values(s: pd.Series) -> pd.Series:
    if pd.api.types.is_bool_dtype(s):
        return pd.Series([], dtype=float)
    if pd.api.types.is_numeric_dtype(s):
        return s.astype(float)
    return pd.to_numeric(s.astype(str).str.strip(), errors="coerce").dropna()


def _date_count(s: pd.Series) -> int:
    if pd.api.types.is_datetime64_any_dtype(s):
        return int(s.notna().sum())
    as_str = s.astype(str).str.strip()
    as_str = as_str[as_str.str.len() > 8]
    if as_str.empty:
        return 0
    parsed = pd.to_datetime(as_str, errors="coerce", format="mixed")
    return int(parsed.notna().sum())


def infer_column_type(name: str, s: pd.Series) -> str:
    values = _non_empty(s)
    n = len(values)
    if n and len(_numeric_values(values)) > n * NUMERIC_RATIO:
        return "numeric"
    header = str(name).lower()
    if (n and _date_count(values) > n * DATE_RATIO) or any(h in header for h in DATE_HINTS):
        return "date"
    return "text"


def profile_column(name: str, s: pd.Series) -> ColumnProfile:
    values = _non_empty(s)
    col_type = infer_column_type(name, s)
    out: Dict[str, Any] = {
        "name": str(name),
        "type": col_type,
        "sample_values": [json_safe(v) for v in values.head(SAMPLE_VALUES).tolist()],
        "null_count": int(len(s) - len(values)),
        "unique_count": int(values.astype(str).nunique()),
    }
    if col_type == "numeric":
        nums = _numeric_values(values)
        if len(nums):
            out["min"] = float(nums.min())
            out["max"] = float(nums.max())
            out["mean"] = float(nums.mean())
    return ColumnProfile(**out)


def profile_dataframe(df: pd.DataFrame) -> DataProfile:
    columns = {str(c): profile_column(str(c), df[c]) for c in df.columns}
    sample_rows: List[List[Any]] = [
        [json_safe(v) for v in row] for row in df.head(SAMPLE_ROWS).itertuples(index=False, name=None)
    ]
    return DataProfile(
        columns=columns,
        summary=DataSummary(total_rows=int(len(df)), total_columns=int(len(df.columns))),
        sample_rows=sample_rows,
    )


def columns_of_type(profile: Dict[str, Any], col_type: str) -> List[str]:
    cols = (profile or {}).get("columns") or {}
    return [name for name, c in cols.items() if (c or {}).get("type") == col_type]

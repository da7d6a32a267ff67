# backend/analytics_hub/services/charts.py

from __future__ import annotations

from typing import Any, Dict, Optional

import pandas as pd

from ..utils.json_safe import json_safe


def build_chart_data(
    df: pd.DataFrame,
    x_column: str,
    y_column: str,
    chart_type: str,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Labels are the x values as strings, values the y values as floats.
    Non-numeric y values are rejected unless the chart is a pie (counted as 0).
    """
    if df.empty:
        raise ValueError("Upload a valid dataset to generate charts.")
    for col in (x_column, y_column):
        if col not in df.columns:
            raise ValueError(f"column not found: {col}")

    frame = df[[x_column, y_column]] if x_column != y_column else df[[x_column]]
    if limit:
        frame = frame.head(int(limit))

    labels = ["" if pd.isna(v) else str(json_safe(v)) for v in frame[x_column].tolist()]
    y_raw = frame[y_column]
    y_num = pd.to_numeric(y_raw, errors="coerce")

    bad = y_num.isna()
    if bad.any():
        if chart_type != "pie":
            raise ValueError(f'Y-axis column "{y_column}" contains non-numeric values')
        y_num = y_num.fillna(0.0)

    values = [float(v) for v in y_num.tolist()]
    if not values:
        raise ValueError("No numeric columns found for chart generation.")

    return {
        "labels": labels,
        "values": values,
        "chart_type": chart_type,
        "x_column": x_column,
        "y_column": y_column,
    }

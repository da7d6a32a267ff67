# backend/analytics_hub/pipelines/forecasting.py

"""
Naive trend + seasonal forecaster.

    trend      = mean of first differences
    L          = min(12, n // 4)                     (season length)
    seasonal_p = mean of values at phase p, minus the mean over phases
    f_i        = last + trend * (i + 1) + seasonal_{i mod L}
    band_i     = volatility * sqrt(i + 1) * 1.96     (volatility = RMS of first differences)

The model is evaluated by a backtest that fits on the first 80% of the series
and forecasts the remaining 20%.
"""
from __future__ import annotations

import math
from typing import Any, Dict, List, Tuple

import numpy as np
import pandas as pd

from ..schemas import ForecastConfig
from ..services.metrics import regression_report
from .base import DataError, ProgressFn, numeric_series, require_columns

HISTORY_POINTS = 50
Z_95 = 1.96
TRAIN_FRACTION = 0.8


class SimpleForecast:
    def __init__(self, values):
        self.data = np.asarray(values, dtype=float)
        self.trend = self._trend()
        self.seasonal = self._seasonal()
        self.volatility = self._volatility()

    def _trend(self) -> float:
        if len(self.data) < 2:
            return 0.0
        return float(np.mean(np.diff(self.data)))

    def _seasonal(self) -> List[float]:
        season_length = min(12, len(self.data) // 4)
        return [float(np.mean(self.data[i::season_length])) for i in range(season_length)]

    def _volatility(self) -> float:
        if len(self.data) < 2:
            return 0.0
        return float(math.sqrt(np.mean(np.diff(self.data) ** 2)))

    def forecast(self, periods: int) -> Dict[str, List[float]]:
        last = float(self.data[-1])
        seasonal_mean = float(np.mean(self.seasonal)) if self.seasonal else 0.0
        forecast, upper, lower = [], [], []
        for i in range(periods):
            seasonal = self.seasonal[i % len(self.seasonal)] - seasonal_mean if self.seasonal else 0.0
            value = last + self.trend * (i + 1) + seasonal
            band = self.volatility * math.sqrt(i + 1) * Z_95
            forecast.append(value)
            upper.append(value + band)
            lower.append(value - band)
        return {"forecast": forecast, "upper": upper, "lower": lower}


def _fmt_date(ts: pd.Timestamp) -> str:
    if ts == ts.normalize():
        return ts.strftime("%Y-%m-%d")
    return ts.isoformat()


def prepare_series(df: pd.DataFrame, date_column: str, target_column: str) -> pd.DataFrame:
    require_columns(df, [date_column, target_column])
    series = pd.DataFrame({
        "date": pd.to_datetime(df[date_column], errors="coerce", format="mixed"),
        "value": numeric_series(df[target_column]),
    }).dropna()
    return series.sort_values("date", kind="mergesort").reset_index(drop=True)


def backtest(values: np.ndarray) -> Dict[str, float]:
    split = int(math.floor(len(values) * TRAIN_FRACTION))
    train, test = values[:split], values[split:]
    if len(test) == 0 or len(train) == 0:
        return {"mae": 0.0, "rmse": 0.0, "r2_score": 0.0}
    predicted = SimpleForecast(train).forecast(len(test))["forecast"]
    report = regression_report(test, np.asarray(predicted))
    return {"mae": report["mae"], "rmse": report["rmse"], "r2_score": report["r2_score"]}


def run(df: pd.DataFrame, cfg: ForecastConfig, progress: ProgressFn) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    series = prepare_series(df, cfg.date_column, cfg.target_column)
    if len(series) < 2:
        raise DataError("Insufficient data for forecasting. Need at least 2 data points.")
    progress(30, "prepared time series")

    values = series["value"].to_numpy(dtype=float)
    horizon = cfg.forecast_horizon
    model = SimpleForecast(values)
    fc = model.forecast(horizon)
    progress(60, "forecast computed")

    metrics: Dict[str, Any] = backtest(values)
    metrics["forecast_horizon"] = horizon
    metrics["data_points"] = int(len(series))
    progress(70, "backtest evaluated")

    forecast_data: List[Dict[str, Any]] = []
    for row in series.tail(HISTORY_POINTS).itertuples(index=False):
        forecast_data.append({
            "date": _fmt_date(row.date), "actual": float(row.value),
            "forecast": None, "upper_bound": None, "lower_bound": None,
        })
    last_date = series["date"].iloc[-1]
    for i in range(horizon):
        forecast_data.append({
            "date": (last_date + pd.Timedelta(days=i + 1)).strftime("%Y-%m-%d"),
            "actual": None,
            "forecast": fc["forecast"][i],
            "upper_bound": fc["upper"][i],
            "lower_bound": fc["lower"][i],
        })

    results = {
        "model_type": "simple_forecast",
        "forecast_data": forecast_data,
        "total_data_points": int(len(series)),
        "forecast_horizon": horizon,
        "trend": model.trend,
        "season_length": len(model.seasonal),
        "volatility": model.volatility,
    }
    return metrics, results


def highlights(results: Dict[str, Any]) -> Dict[str, Any]:
    data = results.get("forecast_data", [])
    actual = [p["actual"] for p in data if p["actual"] is not None]
    predicted = [p["forecast"] for p in data if p["forecast"] is not None]
    return {"latest_values": actual[-5:], "forecasted_values": predicted[:5], "trend": results.get("trend")}

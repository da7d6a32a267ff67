# backend/analytics_hub/pipelines/regression.py

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestRegressor
from sklearn.linear_model import LinearRegression
from sklearn.model_selection import KFold, cross_val_score, train_test_split
from sklearn.pipeline import Pipeline

from ..schemas import RegressionConfig
from ..services.metrics import regression_report
from .base import (
    MIN_ROWS, DataError, ProgressFn, aggregate_importance, build_preprocessor,
    coerce_features, numeric_series, output_feature_sources, require_columns, split_features,
)


def least_squares_line(x: np.ndarray, y: np.ndarray) -> Optional[Dict[str, float]]:
    """Closed-form slope/intercept; None when x is constant."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    x_mean, y_mean = x.mean(), y.mean()
    denom = float(np.sum((x - x_mean) ** 2))
    if denom == 0.0:
        return None
    slope = float(np.sum((x - x_mean) * (y - y_mean)) / denom)
    return {"slope": slope, "intercept": float(y_mean - slope * x_mean)}


def _estimator(cfg: RegressionConfig):
    if cfg.algorithm == "random_forest":
        return RandomForestRegressor(n_estimators=100, random_state=cfg.random_state)
    return LinearRegression()


def run(df: pd.DataFrame, cfg: RegressionConfig, progress: ProgressFn) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    target = cfg.target_column
    require_columns(df, [target, *(cfg.feature_columns or [])])

    y_all = numeric_series(df[target])
    data = df[y_all.notna()]
    y = y_all[y_all.notna()]
    if len(data) < MIN_ROWS:
        raise DataError(
            f"Insufficient data for regression. Need at least {MIN_ROWS} rows with a numeric '{target}'."
        )

    features = cfg.feature_columns or [c for c in data.columns if c != target]
    numeric, categorical, dropped = split_features(data[features])
    if not (numeric or categorical):
        raise DataError("No usable feature columns (all empty or high-cardinality text).")
    X = coerce_features(data[features], numeric, categorical)
    progress(30, "prepared features")

    X_train, X_test, y_train, y_test = train_test_split(
        X, y, test_size=cfg.test_size, random_state=cfg.random_state,
    )
    pipe = Pipeline([
        ("prep", build_preprocessor(numeric, categorical, scale=False)),
        ("model", _estimator(cfg)),
    ])
    pipe.fit(X_train, y_train)
    progress(60, "model fitted")

    y_pred = pipe.predict(X_test)
    metrics = regression_report(y_test.to_numpy(), y_pred)
    if cfg.validation_method == "cv":
        folds = int(min(5, len(X)))
        cv = KFold(n_splits=folds, shuffle=True, random_state=cfg.random_state)
        scores = cross_val_score(pipe, X, y, cv=cv, scoring="neg_root_mean_squared_error")
        metrics["cv_rmse"] = float(-np.mean(scores))
        metrics["cv_folds"] = folds
    progress(70, "model evaluated")

    model = pipe.named_steps["model"]
    sources = output_feature_sources(pipe.named_steps["prep"], numeric, categorical)
    results: Dict[str, Any] = {
        "model_type": cfg.algorithm,
        "target_column": target,
        "feature_columns": numeric + categorical,
        "dropped_columns": dropped,
        "train_size": int(len(X_train)),
        "test_size": int(len(X_test)),
        "sample_predictions": [
            {"actual": float(a), "predicted": float(p)}
            for a, p in zip(y_test.tolist()[:20], y_pred.tolist()[:20])
        ],
    }
    if hasattr(model, "feature_importances_"):
        results["feature_importance"] = aggregate_importance(model.feature_importances_, sources)
    else:
        results["feature_importance"] = aggregate_importance(model.coef_, sources)
        results["intercept"] = float(model.intercept_)
        results["coefficients"] = {
            src: float(c) for src, c in zip(sources, model.coef_) if src in numeric
        }

    if len(numeric) == 1 and not categorical:
        x_col = numeric[0]
        mask = X_train[x_col].notna()
        line = least_squares_line(X_train[x_col][mask].to_numpy(), y_train[mask].to_numpy())
        if line:
            results["line"] = {"x_column": x_col, **line}
    return metrics, results


def highlights(results: Dict[str, Any]) -> Dict[str, Any]:
    out = {"top_features": [f["feature"] for f in results.get("feature_importance", [])[:5]]}
    if "line" in results:
        out["line"] = results["line"]
    return out

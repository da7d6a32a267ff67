# backend/analytics_hub/pipelines/classification.py

from __future__ import annotations

from typing import Any, Dict, Tuple

import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.model_selection import StratifiedKFold, cross_val_score, train_test_split
from sklearn.pipeline import Pipeline

from ..schemas import ClassificationConfig
from ..services.metrics import classification_report
from .base import (
    MIN_ROWS, DataError, ProgressFn, aggregate_importance, build_preprocessor,
    coerce_features, output_feature_sources, require_columns, split_features,
)


def _estimator(cfg: ClassificationConfig):
    if cfg.algorithm == "logistic_regression":
        return LogisticRegression(max_iter=1000)
    return RandomForestClassifier(n_estimators=100, random_state=cfg.random_state)


def run(df: pd.DataFrame, cfg: ClassificationConfig, progress: ProgressFn) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    target = cfg.target_column
    require_columns(df, [target, *(cfg.feature_columns or [])])

    data = df[df[target].notna()]
    data = data[data[target].astype(str).str.strip() != ""]
    if len(data) < MIN_ROWS:
        raise DataError(f"Insufficient data for classification. Need at least {MIN_ROWS} labelled rows.")

    y = data[target].astype(str).str.strip()
    counts = y.value_counts()
    if len(counts) < 2:
        raise DataError(f"Target column '{target}' has a single class; nothing to classify.")

    features = cfg.feature_columns or [c for c in data.columns if c != target]
    numeric, categorical, dropped = split_features(data[features])
    if not (numeric or categorical):
        raise DataError("No usable feature columns (all empty or high-cardinality text).")
    X = coerce_features(data[features], numeric, categorical)
    progress(30, "prepared features")

    stratify = None
    if cfg.validation_method == "stratified" and counts.min() >= 2:
        stratify = y
    X_train, X_test, y_train, y_test = train_test_split(
        X, y, test_size=cfg.test_size, random_state=cfg.random_state, stratify=stratify,
    )
    if y_train.nunique() < 2:
        raise DataError("Training split contains a single class; add more labelled rows.")

    pipe = Pipeline([
        ("prep", build_preprocessor(numeric, categorical, scale=cfg.algorithm == "logistic_regression")),
        ("model", _estimator(cfg)),
    ])
    pipe.fit(X_train, y_train)
    progress(60, "model fitted")

    classes = [str(c) for c in pipe.classes_]
    y_pred = pipe.predict(X_test)
    y_proba = None
    if len(classes) == 2:
        y_proba = pipe.predict_proba(X_test)[:, 1]
    metrics = classification_report(y_test.to_numpy(), y_pred, y_proba, labels=classes)
    confusion = metrics.pop("confusion_matrix")

    if cfg.validation_method == "cv" and counts.min() >= 2:
        folds = int(min(5, counts.min()))
        cv = StratifiedKFold(n_splits=folds, shuffle=True, random_state=cfg.random_state)
        scores = cross_val_score(pipe, X, y, cv=cv, scoring="accuracy")
        metrics["cv_accuracy"] = float(np.mean(scores))
        metrics["cv_folds"] = folds
    progress(70, "model evaluated")

    model = pipe.named_steps["model"]
    sources = output_feature_sources(pipe.named_steps["prep"], numeric, categorical)
    if hasattr(model, "feature_importances_"):
        weights = model.feature_importances_
    else:
        weights = np.abs(model.coef_).mean(axis=0)

    results = {
        "model_type": cfg.algorithm,
        "target_column": target,
        "feature_columns": numeric + categorical,
        "dropped_columns": dropped,
        "classes": classes,
        "train_size": int(len(X_train)),
        "test_size": int(len(X_test)),
        "confusion_matrix": confusion,
        "feature_importance": aggregate_importance(weights, sources),
        "sample_predictions": [
            {"actual": a, "predicted": str(p)} for a, p in zip(y_test.tolist()[:10], y_pred.tolist()[:10])
        ],
    }
    return metrics, results


def highlights(results: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "classes": results.get("classes"),
        "top_features": [f["feature"] for f in results.get("feature_importance", [])[:5]],
    }

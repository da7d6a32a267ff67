# backend/analytics_hub/services/metrics.py

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np
from sklearn import metrics


def classification_report(
    y_true: np.ndarray,
    y_pred: np.ndarray,
    y_proba: Optional[np.ndarray] = None,
    labels: Optional[Sequence[Any]] = None,
) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    labels = list(labels) if labels is not None else sorted(set(np.asarray(y_true).tolist()) | set(np.asarray(y_pred).tolist()))

    out["accuracy"] = float(metrics.accuracy_score(y_true, y_pred))
    out["precision"] = float(metrics.precision_score(y_true, y_pred, average="weighted", zero_division=0))
    out["recall"] = float(metrics.recall_score(y_true, y_pred, average="weighted", zero_division=0))
    out["f1_score"] = float(metrics.f1_score(y_true, y_pred, average="weighted", zero_division=0))

    # binary problems only; y_proba is the positive-class column
    out["auc_roc"] = None
    if y_proba is not None and len(labels) == 2 and len(set(np.asarray(y_true).tolist())) == 2:
        out["auc_roc"] = float(metrics.roc_auc_score(y_true, y_proba))

    cm = metrics.confusion_matrix(y_true, y_pred, labels=labels)
    out["confusion_matrix"] = {"labels": [str(lbl) for lbl in labels], "matrix": cm.tolist()}
    return out


def r2_guarded(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """R² that reports 0.0 instead of NaN/-inf when the targets are constant."""
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    ss_tot = float(np.sum((y_true - y_true.mean()) ** 2)) if len(y_true) else 0.0
    if ss_tot == 0.0:
        return 0.0
    ss_res = float(np.sum((y_true - y_pred) ** 2))
    return 1.0 - ss_res / ss_tot


def regression_report(y_true: np.ndarray, y_pred: np.ndarray) -> Dict[str, Any]:
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    n = min(len(y_true), len(y_pred))
    y_true, y_pred = y_true[:n], y_pred[:n]
    if n == 0:
        return {"rmse": 0.0, "mae": 0.0, "r2_score": 0.0, "mape": None}

    out: Dict[str, Any] = {
        "rmse": float(np.sqrt(metrics.mean_squared_error(y_true, y_pred))),
        "mae": float(metrics.mean_absolute_error(y_true, y_pred)),
        "r2_score": r2_guarded(y_true, y_pred),
    }
    nz = y_true != 0
    out["mape"] = float(np.mean(np.abs((y_true[nz] - y_pred[nz]) / y_true[nz]))) if nz.any() else None
    return out


def clustering_report(X: np.ndarray, labels: np.ndarray, inertia: Optional[float] = None) -> Dict[str, Any]:
    out: Dict[str, Any] = {"silhouette_score": None, "davies_bouldin_index": None}
    n_labels = len(set(np.asarray(labels).tolist()))
    # both scores need 2 <= n_labels <= n_samples - 1
    if 2 <= n_labels <= len(X) - 1:
        out["silhouette_score"] = float(metrics.silhouette_score(X, labels))
        out["davies_bouldin_index"] = float(metrics.davies_bouldin_score(X, labels))
    if inertia is not None:
        out["inertia"] = float(inertia)
    return out


# ---------------- Ranking ----------------
def precision_at_k(recommended: Sequence[str], relevant: Iterable[str], k: int) -> float:
    if k <= 0:
        return 0.0
    rel = set(relevant)
    hits = sum(1 for item in list(recommended)[:k] if item in rel)
    return hits / k


def recall_at_k(recommended: Sequence[str], relevant: Iterable[str], k: int) -> float:
    rel = set(relevant)
    if not rel:
        return 0.0
    hits = sum(1 for item in list(recommended)[:k] if item in rel)
    return hits / len(rel)


def catalog_coverage(recommended_items: List[str], total_items: int) -> float:
    if total_items <= 0:
        return 0.0
    return len(set(recommended_items)) / total_items

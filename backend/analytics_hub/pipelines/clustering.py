# backend/analytics_hub/pipelines/clustering.py

from __future__ import annotations

from typing import Any, Dict, Tuple

import numpy as np
import pandas as pd
from sklearn.cluster import KMeans
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler

from ..schemas import ClusteringConfig
from ..services.metrics import clustering_report
from .base import DataError, ProgressFn, numeric_columns, numeric_series, require_columns

MAX_POINTS = 200


def run(df: pd.DataFrame, cfg: ClusteringConfig, progress: ProgressFn) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    if cfg.feature_columns:
        require_columns(df, cfg.feature_columns)
        features = list(cfg.feature_columns)
        non_numeric = [c for c in features if c not in numeric_columns(df[features])]
        if non_numeric:
            raise DataError(f"Clustering features must be numeric: {', '.join(non_numeric)}")
    else:
        features = numeric_columns(df)
    if not features:
        raise DataError("No numeric columns available for clustering.")

    X_df = pd.DataFrame({c: numeric_series(df[c]) for c in features}).dropna()
    if len(X_df) <= cfg.n_clusters:
        raise DataError(
            f"Need more rows ({len(X_df)}) than clusters ({cfg.n_clusters}) after dropping incomplete rows."
        )
    progress(30, "prepared features")

    scaler = StandardScaler()
    Xs = scaler.fit_transform(X_df.to_numpy())
    km = KMeans(n_clusters=cfg.n_clusters, n_init=10, max_iter=cfg.max_iter, random_state=cfg.random_state)
    labels = km.fit_predict(Xs)
    progress(60, "clusters fitted")

    metrics = clustering_report(Xs, labels, inertia=km.inertia_)
    metrics["n_iter"] = int(km.n_iter_)
    metrics["n_clusters"] = cfg.n_clusters
    progress(70, "clusters evaluated")

    centroids = scaler.inverse_transform(km.cluster_centers_)
    sizes = np.bincount(labels, minlength=cfg.n_clusters)

    if len(features) > 2:
        coords = PCA(n_components=2, random_state=cfg.random_state).fit_transform(Xs)
        projection = "pca"
    elif len(features) == 2:
        coords = X_df.to_numpy()
        projection = "raw"
    else:
        coords = np.column_stack([X_df.to_numpy()[:, 0], np.zeros(len(X_df))])
        projection = "raw"

    results = {
        "model_type": "kmeans",
        "feature_columns": features,
        "cluster_sizes": [int(n) for n in sizes],
        "centroids": [
            {"cluster": i, **{f: float(v) for f, v in zip(features, row)}}
            for i, row in enumerate(centroids)
        ],
        "projection": projection,
        "points": [
            {"x": float(x), "y": float(y), "cluster": int(lbl)}
            for (x, y), lbl in zip(coords[:MAX_POINTS], labels[:MAX_POINTS])
        ],
    }
    return metrics, results


def highlights(results: Dict[str, Any]) -> Dict[str, Any]:
    return {"cluster_sizes": results.get("cluster_sizes"), "features": results.get("feature_columns")}

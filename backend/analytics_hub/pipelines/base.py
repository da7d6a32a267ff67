# backend/analytics_hub/pipelines/base.py

from __future__ import annotations

from typing import Callable, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.compose import ColumnTransformer
from sklearn.impute import SimpleImputer
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder, StandardScaler

# progress(percent, message); may raise JobCanceled
ProgressFn = Callable[[int, str], None]

MIN_ROWS = 10
MAX_CATEGORIES = 50


class DataError(ValueError):
    """The dataset or configuration cannot be used; retrying will not help."""


class JobCanceled(Exception):
    pass


def noop_progress(pct: int, message: str = "") -> None:
    return None


def require_columns(df: pd.DataFrame, columns: Iterable[Optional[str]]) -> None:
    missing = [c for c in columns if c and c not in df.columns]
    if missing:
        raise DataError(f"column(s) not found in dataset: {', '.join(missing)}")


def numeric_series(s: pd.Series) -> pd.Series:
    if pd.api.types.is_bool_dtype(s):
        return s.astype(float)
    if pd.api.types.is_numeric_dtype(s):
        return s.astype(float)
    return pd.to_numeric(s.astype(str).str.strip().replace("", np.nan), errors="coerce")


def numeric_columns(df: pd.DataFrame, ratio: float = 0.8) -> List[str]:
    """Columns where more than `ratio` of the non-null values are numbers."""
    out: List[str] = []
    for c in df.columns:
        s = df[c].dropna()
        if s.empty or pd.api.types.is_bool_dtype(s):
            continue
        if numeric_series(s).notna().sum() > len(s) * ratio:
            out.append(c)
    return out


def split_features(X: pd.DataFrame) -> Tuple[List[str], List[str], List[str]]:
    """(numeric, categorical, dropped): high-cardinality or empty text columns are dropped."""
    numeric = numeric_columns(X)
    categorical: List[str] = []
    dropped: List[str] = []
    for c in X.columns:
        if c in numeric:
            continue
        nunique = X[c].nunique(dropna=True)
        if nunique == 0 or nunique > MAX_CATEGORIES:
            dropped.append(c)
        else:
            categorical.append(c)
    return numeric, categorical, dropped


def coerce_features(X: pd.DataFrame, numeric: List[str], categorical: List[str]) -> pd.DataFrame:
    out = pd.DataFrame(index=X.index)
    for c in numeric:
        out[c] = numeric_series(X[c])
    for c in categorical:
        out[c] = X[c].map(lambda v: np.nan if pd.isna(v) else str(v)).astype("object")
    return out


def build_preprocessor(numeric: List[str], categorical: List[str], scale: bool) -> ColumnTransformer:
    num_steps = [("impute", SimpleImputer(strategy="median", keep_empty_features=True))]
    if scale:
        num_steps.append(("scale", StandardScaler()))
    transformers = []
    if numeric:
        transformers.append(("num", Pipeline(num_steps), numeric))
    if categorical:
        transformers.append((
            "cat",
            Pipeline([
                ("impute", SimpleImputer(strategy="most_frequent", keep_empty_features=True)),
                ("onehot", OneHotEncoder(handle_unknown="ignore", sparse_output=False)),
            ]),
            categorical,
        ))
    return ColumnTransformer(transformers, remainder="drop")


def output_feature_sources(pre: ColumnTransformer, numeric: List[str], categorical: List[str]) -> List[str]:
    """Original column name for every output column of a fitted preprocessor."""
    sources: List[str] = list(numeric)
    if categorical:
        onehot = pre.named_transformers_["cat"].named_steps["onehot"]
        for col, cats in zip(categorical, onehot.categories_):
            sources.extend([col] * len(cats))
    return sources


def aggregate_importance(weights: np.ndarray, sources: List[str], top: int = 15) -> List[dict]:
    totals: dict = {}
    for w, src in zip(np.abs(np.asarray(weights, dtype=float)), sources):
        totals[src] = totals.get(src, 0.0) + float(w)
    norm = sum(totals.values()) or 1.0
    ranked = sorted(totals.items(), key=lambda kv: kv[1], reverse=True)[:top]
    return [{"feature": k, "importance": v / norm} for k, v in ranked]

# backend/analytics_hub/pipelines/recommendation.py

from __future__ import annotations

import math
from collections import Counter
from typing import Any, Dict, List, Optional, Set, Tuple

import pandas as pd

from ..schemas import RecommendationConfig
from ..services.metrics import catalog_coverage, precision_at_k, recall_at_k
from .base import DataError, ProgressFn, numeric_series, require_columns

MIN_RATINGS = 10
SAMPLE_USERS = 10
EVAL_USERS = 5
HOLDOUT_FRACTION = 0.2


class SimpleRecommender:
    """User-based collaborative filtering with cosine similarity over co-rated items."""

    def __init__(self, ratings: Optional[Dict[str, Dict[str, float]]] = None):
        self.ratings: Dict[str, Dict[str, float]] = ratings if ratings is not None else {}

    def add_rating(self, user: str, item: str, rating: float) -> None:
        self.ratings.setdefault(user, {})[item] = float(rating)

    @property
    def items(self) -> Set[str]:
        return {item for r in self.ratings.values() for item in r}

    def without(self, user: str, items: Set[str]) -> "SimpleRecommender":
        """Copy with some of `user`'s ratings hidden (other users' dicts are shared)."""
        ratings = dict(self.ratings)
        ratings[user] = {i: r for i, r in self.ratings.get(user, {}).items() if i not in items}
        return SimpleRecommender(ratings)

    def similarity(self, u1: str, u2: str) -> float:
        r1 = self.ratings.get(u1)
        r2 = self.ratings.get(u2)
        if not r1 or not r2:
            return 0.0
        common = r1.keys() & r2.keys()
        if not common:
            return 0.0
        dot = sum(r1[i] * r2[i] for i in common)
        n1 = sum(r1[i] ** 2 for i in common)
        n2 = sum(r2[i] ** 2 for i in common)
        if n1 == 0 or n2 == 0:
            return 0.0
        return dot / (math.sqrt(n1) * math.sqrt(n2))

    def recommend(self, user: str, top_k: int = 10) -> List[Dict[str, Any]]:
        own = self.ratings.get(user)
        if not own:
            return []
        scores: Dict[str, float] = {}
        for other, other_ratings in self.ratings.items():
            if other == user:
                continue
            sim = self.similarity(user, other)
            if sim <= 0:
                continue
            for item, rating in other_ratings.items():
                if item not in own:
                    scores[item] = scores.get(item, 0.0) + sim * rating
        ranked = sorted(scores.items(), key=lambda kv: (-kv[1], kv[0]))[:top_k]
        return [{"item": item, "score": score} for item, score in ranked]

    def popular_items(self, top_k: int = 10) -> List[Dict[str, Any]]:
        counts = Counter(item for r in self.ratings.values() for item in r)
        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:top_k]
        return [{"item": item, "count": count} for item, count in ranked]


def _valid_ratings(df: pd.DataFrame, cfg: RecommendationConfig) -> pd.DataFrame:
    require_columns(df, [cfg.user_column, cfg.item_column, cfg.rating_column])
    out = pd.DataFrame({
        "user": df[cfg.user_column],
        "item": df[cfg.item_column],
        "rating": numeric_series(df[cfg.rating_column]),
    }).dropna()
    out["user"] = out["user"].astype(str).str.strip()
    out["item"] = out["item"].astype(str).str.strip()
    return out[(out["user"] != "") & (out["item"] != "")]


def evaluate(rec: SimpleRecommender, user_items: Dict[str, List[str]], users: List[str], top_k: int) -> Dict[str, float]:
    """Hide the last 20% (at least one) of each user's items, then score recommendations against them."""
    precisions, recalls = [], []
    for user in users:
        items = user_items[user]
        if len(items) <= 1:
            continue
        n_test = max(1, int(math.floor(len(items) * HOLDOUT_FRACTION)))
        held_out = set(items[-n_test:])
        predicted = [r["item"] for r in rec.without(user, held_out).recommend(user, top_k)]
        precisions.append(precision_at_k(predicted, held_out, top_k))
        recalls.append(recall_at_k(predicted, held_out, top_k))
    if not precisions:
        return {"precision_at_k": 0.0, "recall_at_k": 0.0, "evaluated_users": 0}
    return {
        "precision_at_k": sum(precisions) / len(precisions),
        "recall_at_k": sum(recalls) / len(recalls),
        "evaluated_users": len(precisions),
    }


def run(df: pd.DataFrame, cfg: RecommendationConfig, progress: ProgressFn) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    ratings = _valid_ratings(df, cfg)
    if len(ratings) < MIN_RATINGS:
        raise DataError(f"Insufficient data for recommendations. Need at least {MIN_RATINGS} valid ratings.")

    rec = SimpleRecommender()
    user_items: Dict[str, List[str]] = {}
    for row in ratings.itertuples(index=False):
        if row.item not in rec.ratings.get(row.user, {}):
            user_items.setdefault(row.user, []).append(row.item)
        rec.add_rating(row.user, row.item, row.rating)
    progress(30, "rating matrix built")

    users = list(user_items)
    all_items = rec.items
    samples = []
    recommended: List[str] = []
    for user in users[:SAMPLE_USERS]:
        recs = rec.recommend(user, cfg.top_k)
        samples.append({"user": user, "recommendations": recs})
        recommended.extend(r["item"] for r in recs)
    progress(60, "recommendations generated")

    scores = evaluate(rec, user_items, users[:EVAL_USERS], cfg.top_k)
    metrics = {
        **scores,
        "coverage": catalog_coverage(recommended, len(all_items)),
        "top_k": cfg.top_k,
        "total_users": len(users),
        "total_items": len(all_items),
        "total_ratings": int(len(ratings)),
    }
    progress(70, "recommendations evaluated")

    results = {
        "model_type": "collaborative_filtering",
        "sample_recommendations": samples,
        "popular_items": rec.popular_items(10),
        "total_users": len(users),
        "total_items": len(all_items),
        "total_ratings": int(len(ratings)),
    }
    return metrics, results


def highlights(results: Dict[str, Any]) -> Dict[str, Any]:
    return {"top_items": [p["item"] for p in results.get("popular_items", [])[:5]]}

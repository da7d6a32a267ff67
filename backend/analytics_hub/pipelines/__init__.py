# backend/analytics_hub/pipelines/__init__.py

"""
Analytical pipelines, one module per problem type.

Every module exposes ``run(df, config, progress) -> (metrics, results)`` and
``highlights(results) -> dict`` (the facts passed to the insight prompt).
"""
from __future__ import annotations

from typing import Any, Dict, Tuple

import pandas as pd

from ..schemas import parse_configuration
from . import classification, clustering, forecasting, recommendation, regression
from .base import DataError, JobCanceled, ProgressFn, noop_progress

PIPELINES = {
    "classification": classification,
    "regression": regression,
    "clustering": clustering,
    "forecast": forecasting,
    "recommendation": recommendation,
}

__all__ = ["PIPELINES", "DataError", "JobCanceled", "run_pipeline"]


def run_pipeline(
    problem_type: str,
    df: pd.DataFrame,
    configuration: Dict[str, Any],
    progress: ProgressFn = noop_progress,
) -> Tuple[Dict[str, Any], Dict[str, Any], Dict[str, Any]]:
    """Returns (metrics, results, highlights)."""
    module = PIPELINES.get(problem_type)
    if module is None:
        raise DataError(f"unsupported problem_type: {problem_type}")
    cfg = parse_configuration(problem_type, configuration)
    metrics, results = module.run(df, cfg, progress)
    return metrics, results, module.highlights(results)

# backend/analytics_hub/services/quotas.py

from __future__ import annotations

from typing import Optional

from ..config import settings
from .. import queue_mongo


def can_enqueue(user_id: Optional[str]) -> tuple[bool, str]:
    g = queue_mongo.count_active_jobs_global()
    if g >= settings.MAX_ACTIVE_RUNS_GLOBAL:
        return False, f"Global concurrency limit reached ({g}/{settings.MAX_ACTIVE_RUNS_GLOBAL})."

    u = queue_mongo.count_active_jobs_for_user(user_id)
    if u >= settings.MAX_ACTIVE_RUNS_PER_USER:
        return False, f"User concurrency limit reached ({u}/{settings.MAX_ACTIVE_RUNS_PER_USER})."

    return True, "ok"

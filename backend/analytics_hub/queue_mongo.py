# backend/analytics_hub/queue_mongo.py

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError

from .config import settings

# -------------------------------------------------------------------
# Mongo connections (MongoClient connects lazily)
# -------------------------------------------------------------------
_client = MongoClient(settings.MONGO_URI, serverSelectionTimeoutMS=5000)
_db = _client[settings.MONGO_DB]
_jobs = _db[settings.MONGO_COLLECTION]

ACTIVE_STATUSES = ["queued", "running"]
TERMINAL_STATUSES = ["succeeded", "failed", "canceled"]


def ensure_indexes() -> None:
    """
    Call once at startup.
    - active job lookup (status + model_id)
    - claim order (status + created_at)
    - idempotency key dedup (unique, sparse)
    """
    _jobs.create_index([("status", ASCENDING), ("model_id", ASCENDING)])
    _jobs.create_index([("status", ASCENDING), ("created_at", ASCENDING)])
    _jobs.create_index([("idempotency_key", ASCENDING)], unique=True, sparse=True)


def _oid(job_id: str) -> ObjectId:
    return ObjectId(job_id)


def get_job(job_id: str) -> Optional[Dict[str, Any]]:
    try:
        return _jobs.find_one({"_id": _oid(job_id)})
    except (InvalidId, TypeError):
        return None


def set_job_fields(job_id: str, fields: Dict[str, Any]) -> None:
    fields = dict(fields or {})
    fields["updated_at"] = datetime.utcnow()
    _jobs.update_one({"_id": _oid(job_id)}, {"$set": fields})


# -------------------------------------------------------------------
# Enqueue (idempotency + active-run guard)
# -------------------------------------------------------------------
def get_active_job_by_model(model_id: str) -> Optional[Dict[str, Any]]:
    return _jobs.find_one({"model_id": model_id, "status": {"$in": ACTIVE_STATUSES}})


def create_job_idempotent(
    payload: Dict[str, Any],
    idempotency_key: Optional[str] = None,
    force: bool = False,
) -> Tuple[str, bool]:
    """
    Returns (run_id, created).
    - force=False: an active (queued/running) job for the same model_id is returned as-is.
    - idempotency_key: the same key always maps to the same run_id (unique index).
    - force=True: skip both checks and insert a new job.
    """
    model_id = (payload or {}).get("model_id")
    if not force and model_id:
        active = get_active_job_by_model(model_id)
        if active:
            return str(active["_id"]), False

    if not force and idempotency_key:
        prev = _jobs.find_one({"idempotency_key": idempotency_key})
        if prev:
            return str(prev["_id"]), False

    now = datetime.utcnow()
    doc = {
        **(payload or {}),
        "status": "queued",
        "worker_id": None,
        "progress": 0.0,
        "message": "queued",
        "attempts": 0,
        "cancel_requested": False,
        "metrics": {},
        "created_at": now,
        "updated_at": now,
        "heartbeat_at": None,
    }
    if idempotency_key:
        doc["idempotency_key"] = idempotency_key
    try:
        ins = _jobs.insert_one(doc)
    except DuplicateKeyError:
        # concurrent enqueue with the same key
        prev = _jobs.find_one({"idempotency_key": idempotency_key})
        return str(prev["_id"]), False
    return str(ins.inserted_id), True


# -------------------------------------------------------------------
# Worker side
# -------------------------------------------------------------------
def claim_next_job(worker_id: str, stale_seconds: Optional[int] = None) -> Optional[Dict[str, Any]]:
    """
    Atomically move the oldest queued job (or a running job whose heartbeat went stale)
    to running and return it.
    """
    now = datetime.utcnow()
    stale = now - timedelta(seconds=stale_seconds if stale_seconds is not None else settings.JOB_STALE_SECONDS)
    return _jobs.find_one_and_update(
        {
            "cancel_requested": False,
            "$or": [
                {"status": "queued"},
                {"status": "running", "heartbeat_at": {"$lt": stale}},
            ],
        },
        {
            "$set": {
                "status": "running",
                "worker_id": worker_id,
                "started_at": now,
                "heartbeat_at": now,
                "updated_at": now,
                "message": "running",
            },
            "$inc": {"attempts": 1},
        },
        sort=[("created_at", ASCENDING)],
        return_document=ReturnDocument.AFTER,
    )


def reap_stale_canceled(stale_seconds: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    Finish as canceled every running job that has a cancel request but whose
    worker stopped heartbeating. claim_next_job never picks these up, so
    without this they would stay active forever.
    """
    now = datetime.utcnow()
    stale = now - timedelta(seconds=stale_seconds if stale_seconds is not None else settings.JOB_STALE_SECONDS)
    reaped: List[Dict[str, Any]] = []
    while True:
        j = _jobs.find_one_and_update(
            {"status": "running", "cancel_requested": True, "heartbeat_at": {"$lt": stale}},
            {"$set": {"status": "canceled", "message": "canceled (worker lost)",
                      "finished_at": now, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        if not j:
            return reaped
        reaped.append(j)


def report_progress(job_id: str, progress: float, message: str = "") -> None:
    """Progress only moves forward; the heartbeat is refreshed on every call."""
    now = datetime.utcnow()
    _jobs.update_one(
        {"_id": _oid(job_id)},
        {
            "$max": {"progress": float(progress)},
            "$set": {"message": message, "heartbeat_at": now, "updated_at": now},
        },
    )


def is_cancel_requested(job_id: str) -> bool:
    j = _jobs.find_one({"_id": _oid(job_id)}, {"cancel_requested": 1})
    return bool(j and j.get("cancel_requested"))


def request_cancel(job_id: str) -> Optional[Dict[str, Any]]:
    """
    Queued jobs are canceled at once; running jobs are flagged and stop at
    their next checkpoint. Terminal jobs are left untouched.
    """
    now = datetime.utcnow()
    try:
        oid = _oid(job_id)
    except (InvalidId, TypeError):
        return None
    j = _jobs.find_one_and_update(
        {"_id": oid, "status": "queued"},
        {"$set": {"status": "canceled", "cancel_requested": True, "message": "canceled", "updated_at": now,
                  "finished_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    if j:
        return j
    j = _jobs.find_one_and_update(
        {"_id": oid, "status": "running"},
        {"$set": {"cancel_requested": True, "message": "cancel requested", "updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    return j or get_job(job_id)


def finish_job(job_id: str, status: str, message: str = "", fields: Optional[Dict[str, Any]] = None) -> None:
    now = datetime.utcnow()
    update = {**(fields or {}), "status": status, "message": message, "finished_at": now, "updated_at": now}
    if status == "succeeded":
        update["progress"] = 100.0
    _jobs.update_one({"_id": _oid(job_id)}, {"$set": update})


def requeue_job(job_id: str, message: str) -> None:
    set_job_fields(job_id, {"status": "queued", "worker_id": None, "heartbeat_at": None, "message": message})


# -------------------------------------------------------------------
# Counters (quotas)
# -------------------------------------------------------------------
def count_active_jobs_global() -> int:
    return _jobs.count_documents({"status": {"$in": ACTIVE_STATUSES}})


def count_active_jobs_for_user(user_id: Optional[str]) -> int:
    if not user_id:
        return 0
    return _jobs.count_documents({"status": {"$in": ACTIVE_STATUSES}, "user_id": user_id})

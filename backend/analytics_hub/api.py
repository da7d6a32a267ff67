# backend/analytics_hub/api.py

from __future__ import annotations
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from sqlmodel import Session

from .config import settings
from .db import get_session
from .store_sql import Repo
from .models import MLModel
from .schemas import (
    CONFIG_TYPES, PROBLEM_SUBTYPES, AnalyzeRequest, AnalyzeResponse, ChartData, ChartRequest,
    ChatRequest, ChatResponse, ModelCreate,
    PreviewRequest, ProfileUpdate, RunStatus, TrainRequest,
)
from .services import storage
from .services.charts import build_chart_data
from .services.context import require_user_id
from .services.data_loader import load_dataset
from .services.insights import LLMLimitError, analyze_content, chat
from .services.profiling import columns_of_type, profile_dataframe
from .services.quotas import can_enqueue
from .utils.json_safe import df_preview_safe
from .utils.logger import get_logger
from . import queue_mongo

logger = get_logger(__name__)

router = APIRouter()


def _dataset_or_404(repo: Repo, user_id: str, dataset_id: str):
    d = repo.get_dataset(user_id, dataset_id)
    if not d:
        raise HTTPException(404, "dataset not found")
    return d


def _model_or_404(repo: Repo, user_id: str, model_id: str) -> MLModel:
    m = repo.get_model(user_id, model_id)
    if not m:
        raise HTTPException(404, "model not found")
    return m


def _load_frame(d):
    if not d.storage_path:
        raise HTTPException(400, "dataset has no stored file")
    try:
        return load_dataset(d.storage_path)
    except FileNotFoundError:
        raise HTTPException(404, "dataset file not found")
    except ValueError as e:
        raise HTTPException(400, f"could not read dataset: {e}")


def _referenced_columns(configuration: Dict[str, Any]) -> List[str]:
    cols: List[str] = []
    for k, v in configuration.items():
        if k.endswith("_column") and v:
            cols.append(v)
        elif k == "feature_columns" and v:
            cols.extend(v)
    return cols


# ---------------- Profile ----------------
@router.get("/profile")
def get_profile(s: Session = Depends(get_session), user_id: str = Depends(require_user_id)):
    return Repo(s).get_or_create_profile(user_id)


@router.put("/profile")
def update_profile(body: ProfileUpdate, s: Session = Depends(get_session),
                   user_id: str = Depends(require_user_id)):
    return Repo(s).update_profile(user_id, body.model_dump(exclude_unset=True))


# ---------------- Datasets ----------------
@router.post("/datasets/upload")
async def upload_dataset(f: UploadFile = File(...), s: Session = Depends(get_session),
                         user_id: str = Depends(require_user_id)):
    filename = f.filename or ""
    ext = storage.file_extension(filename)
    if ext not in storage.ALLOWED_EXTENSIONS:
        raise HTTPException(400, f"Only {', '.join(sorted(storage.ALLOWED_EXTENSIONS))} allowed")

    data = await f.read()
    if not data:
        raise HTTPException(400, "uploaded file is empty")
    if len(data) > settings.MAX_UPLOAD_MB * 1024 * 1024:
        raise HTTPException(400, f"file exceeds {settings.MAX_UPLOAD_MB} MB")

    repo = Repo(s)
    storage_path = storage.save_upload(user_id, filename, data)
    try:
        d = repo.create_dataset(user_id, filename, len(data), f.content_type or "unknown", storage_path)
    except Exception:
        # no row points at the file, so nothing would ever delete it
        storage.remove(storage_path)
        raise
    d = repo.update_dataset(d, status="processing")

    try:
        df = load_dataset(storage_path)
        profile = profile_dataframe(df)
    except Exception as e:
        # the row is kept so the user can see why profiling failed
        logger.warning("Profiling failed for dataset %s: %s", d.id, e)
        return repo.update_dataset(d, status="error", error_message=str(e) or e.__class__.__name__)

    logger.info("Dataset %s profiled (%d rows, %d columns)", d.id, len(df), len(df.columns))
    return repo.update_dataset(
        d,
        status="processed",
        row_count=profile.summary.total_rows,
        column_count=profile.summary.total_columns,
        data_profile=profile.model_dump(),
        error_message=None,
    )


@router.get("/datasets")
def list_datasets(status: Optional[str] = Query(None), s: Session = Depends(get_session),
                  user_id: str = Depends(require_user_id)):
    return Repo(s).list_datasets(user_id, status)


@router.get("/datasets/{dataset_id}")
def get_dataset(dataset_id: str, s: Session = Depends(get_session), user_id: str = Depends(require_user_id)):
    return _dataset_or_404(Repo(s), user_id, dataset_id)


@router.delete("/datasets/{dataset_id}")
def delete_dataset(dataset_id: str, s: Session = Depends(get_session), user_id: str = Depends(require_user_id)):
    repo = Repo(s)
    _dataset_or_404(repo, user_id, dataset_id)
    out = repo.delete_dataset_cascade(user_id, dataset_id)
    for run_id in out.pop("run_ids", []):
        queue_mongo.request_cancel(run_id)
    storage_path = out.pop("storage_path", None)
    if storage_path:
        storage.remove(storage_path)
    return out


@router.post("/datasets/{dataset_id}/preview")
def preview_dataset(dataset_id: str, body: Optional[PreviewRequest] = None, s: Session = Depends(get_session),
                    user_id: str = Depends(require_user_id)):
    d = _dataset_or_404(Repo(s), user_id, dataset_id)
    limit = (body or PreviewRequest()).limit
    return df_preview_safe(_load_frame(d), limit=limit)


@router.post("/datasets/{dataset_id}/chart", response_model=ChartData)
def chart_data(dataset_id: str, body: ChartRequest, s: Session = Depends(get_session),
               user_id: str = Depends(require_user_id)):
    d = _dataset_or_404(Repo(s), user_id, dataset_id)
    df = _load_frame(d)
    try:
        return build_chart_data(df, body.x_column, body.y_column, body.chart_type, body.limit)
    except ValueError as e:
        raise HTTPException(400, str(e))


# ---------------- Problem types ----------------
@router.get("/problem-types")
def problem_types():
    return [
        {
            "problem_type": problem_type,
            "subtypes": [{"id": k, "label": v} for k, v in subtypes.items()],
            "configuration_schema": CONFIG_TYPES[problem_type].model_json_schema(),
        }
        for problem_type, subtypes in PROBLEM_SUBTYPES.items()
    ]


# ---------------- Models ----------------
@router.post("/models")
def create_model(body: ModelCreate, s: Session = Depends(get_session), user_id: str = Depends(require_user_id)):
    repo = Repo(s)
    d = _dataset_or_404(repo, user_id, body.dataset_id)
    if d.status != "processed":
        raise HTTPException(400, f"dataset is not processed (status: {d.status})")

    known = set(((d.data_profile or {}).get("columns") or {}).keys())
    missing = [c for c in _referenced_columns(body.configuration) if c not in known]
    if missing:
        raise HTTPException(400, f"unknown columns: {', '.join(missing)}")

    if body.problem_type == "clustering" and body.configuration.get("feature_columns"):
        numeric = set(columns_of_type(d.data_profile, "numeric"))
        non_numeric = [c for c in body.configuration["feature_columns"] if c not in numeric]
        if non_numeric:
            raise HTTPException(400, f"clustering features must be numeric: {', '.join(non_numeric)}")

    return repo.create_model(
        user_id=user_id,
        dataset_id=d.id,
        name=body.name,
        problem_type=body.problem_type,
        problem_subtype=body.problem_subtype,
        configuration=body.configuration,
    )


@router.get("/models")
def list_models(problem_type: Optional[str] = Query(None), s: Session = Depends(get_session),
                user_id: str = Depends(require_user_id)):
    return Repo(s).list_models(user_id, problem_type)


@router.get("/models/{model_id}")
def get_model(model_id: str, s: Session = Depends(get_session), user_id: str = Depends(require_user_id)):
    return _model_or_404(Repo(s), user_id, model_id)


@router.delete("/models/{model_id}")
def delete_model(model_id: str, s: Session = Depends(get_session), user_id: str = Depends(require_user_id)):
    repo = Repo(s)
    m = _model_or_404(repo, user_id, model_id)
    if m.run_id:
        queue_mongo.request_cancel(m.run_id)
    repo.delete_model(user_id, model_id)
    return {"ok": True, "deleted_model_id": model_id}


# ---------------- Train / Runs ----------------
@router.post("/models/{model_id}/train")
def train_model(model_id: str, body: Optional[TrainRequest] = None, s: Session = Depends(get_session),
                user_id: str = Depends(require_user_id)):
    body = body or TrainRequest()
    repo = Repo(s)
    m = _model_or_404(repo, user_id, model_id)
    d = repo.get_dataset(user_id, m.dataset_id)
    if not d or d.status != "processed":
        raise HTTPException(400, "model dataset is missing or not processed")

    # an already active run is returned as-is and does not count against the quota
    if not body.force:
        active = queue_mongo.get_active_job_by_model(m.id)
        if active:
            return {"run_id": str(active["_id"]), "created": False, "status": active.get("status")}

    ok, reason = can_enqueue(user_id)
    if not ok:
        raise HTTPException(429, f"Quota exceeded: {reason}")

    run_id, created = queue_mongo.create_job_idempotent(
        payload={
            "model_id": m.id,
            "user_id": user_id,
            "dataset_id": m.dataset_id,
            "problem_type": m.problem_type,
        },
        idempotency_key=body.idempotency_key,
        force=body.force,
    )
    if created:
        repo.update_model(m, status="training", training_progress=0, run_id=run_id,
                          results=None, metrics=None, error_message=None)
        logger.info("Enqueued run %s for model %s", run_id, m.id)
    job = queue_mongo.get_job(run_id) or {}
    return {"run_id": run_id, "created": created, "status": job.get("status", "queued")}


@router.post("/models/{model_id}/deploy")
def deploy_model(model_id: str, s: Session = Depends(get_session), user_id: str = Depends(require_user_id)):
    repo = Repo(s)
    m = _model_or_404(repo, user_id, model_id)
    if m.status != "completed":
        raise HTTPException(409, f"only completed models can be deployed (status: {m.status})")
    return repo.update_model(m, status="deployed")


def _job_or_404(run_id: str, user_id: str) -> Dict[str, Any]:
    j = queue_mongo.get_job(run_id)
    if not j or j.get("user_id") != user_id:
        raise HTTPException(404, "run not found")
    return j


def _run_status(j: Dict[str, Any]) -> RunStatus:
    return RunStatus(
        id=str(j["_id"]),
        model_id=j.get("model_id"),
        status=j.get("status"),
        progress=j.get("progress", 0.0),
        message=j.get("message", ""),
        attempts=j.get("attempts", 0),
        cancel_requested=bool(j.get("cancel_requested")),
        metrics=j.get("metrics") or {},
    )


@router.get("/runs/{run_id}", response_model=RunStatus)
def get_run(run_id: str, user_id: str = Depends(require_user_id)):
    return _run_status(_job_or_404(run_id, user_id))


@router.post("/runs/{run_id}/cancel", response_model=RunStatus)
def cancel_run(run_id: str, s: Session = Depends(get_session), user_id: str = Depends(require_user_id)):
    _job_or_404(run_id, user_id)
    j = queue_mongo.request_cancel(run_id)
    if j is None:
        raise HTTPException(404, "run not found")

    # a running job resets its model when the worker reaches the next checkpoint
    if j.get("status") == "canceled":
        repo = Repo(s)
        m = repo.get_model(user_id, j.get("model_id") or "")
        if m and m.run_id == run_id and m.status == "training":
            repo.update_model(m, status="created", training_progress=0)
    return _run_status(j)


# ---------------- Results ----------------
@router.get("/results")
def list_results(limit: int = Query(10, ge=1, le=100), s: Session = Depends(get_session),
                 user_id: str = Depends(require_user_id)):
    return Repo(s).list_results(user_id, limit)


@router.delete("/results/{result_id}")
def delete_result(result_id: str, s: Session = Depends(get_session), user_id: str = Depends(require_user_id)):
    if not Repo(s).delete_result(user_id, result_id):
        raise HTTPException(404, "result not found")
    return {"ok": True, "deleted_result_id": result_id}


# ---------------- Assistant ----------------
@router.post("/chat", response_model=ChatResponse)
def chat_message(body: ChatRequest, user_id: str = Depends(require_user_id)):
    try:
        reply = chat([m.model_dump() for m in body.messages])
    except LLMLimitError as e:
        raise HTTPException(e.status_code, e.detail)
    return ChatResponse(message=reply)


@router.post("/analyze-content", response_model=AnalyzeResponse)
def analyze(body: AnalyzeRequest, user_id: str = Depends(require_user_id)):
    try:
        result = analyze_content(body.content, body.analysis_type)
    except LLMLimitError as e:
        raise HTTPException(e.status_code, e.detail)
    return AnalyzeResponse(result=result)

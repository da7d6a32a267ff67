# backend/analytics_hub/worker.py

"""
Training worker.

Claims jobs from the Mongo queue and runs the pipeline that matches the
model's problem type. Run with ``python -m analytics_hub.worker``.

Job lifecycle:   queued -> running -> succeeded | failed | canceled
Model lifecycle: training -> completed | error   (canceled runs go back to created)
"""
from __future__ import annotations

import argparse
import os
import socket
import time
import traceback
from typing import Any, Callable, Dict, Optional

from sqlmodel import Session

from . import queue_mongo
from .config import settings
from .db import create_db_and_tables, get_engine
from .models import Dataset
from .pipelines import DataError, JobCanceled, run_pipeline
from .services.data_loader import load_dataset
from .services.insights import build_prompt, generate_insight
from .store_sql import Repo
from .utils.json_safe import json_safe
from .utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

# failures that a retry cannot fix
PERMANENT_ERRORS = (DataError, ValueError, FileNotFoundError, KeyError)

SUPERSEDED = "superseded by a newer run"


def _progress_cb_factory(job_id: str, model_id: str) -> Callable[[int, str], None]:
    def _cb(pct: int, message: str = "") -> None:
        if queue_mongo.is_cancel_requested(job_id):
            raise JobCanceled(f"run {job_id} canceled")
        queue_mongo.report_progress(job_id, pct, message)
        with Session(get_engine()) as s:
            Repo(s).set_progress(model_id, job_id, int(pct))
    return _cb


def _fail(job_id: str, repo: Repo, model_id: str, exc: BaseException, attempts: int) -> None:
    message = str(exc) or exc.__class__.__name__
    repo.update_model_for_run(model_id, job_id, status="error", error_message=message)
    queue_mongo.finish_job(job_id, "failed", message, {"attempts": attempts})
    tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    logger.error("Job %s failed\n%s", job_id, tb)


def _superseded(job_id: str) -> str:
    queue_mongo.finish_job(job_id, "canceled", SUPERSEDED)
    logger.info("Job %s superseded by a newer run", job_id)
    return "canceled"


def run_job(job: Dict[str, Any]) -> str:
    """
    Process one claimed job. Returns the terminal (or re-queued) job status.

    Every model write is conditional on the model still pointing at this run,
    so a run replaced by a forced retrain (or whose model was deleted) never
    overwrites the newer state.
    """
    job_id = str(job["_id"])
    model_id = job.get("model_id")
    attempts = int(job.get("attempts") or 1)

    with Session(get_engine()) as s:
        repo = Repo(s)
        model = repo.get_model_unscoped(model_id) if model_id else None
        if model is None:
            queue_mongo.finish_job(job_id, "failed", "model not found")
            return "failed"
        if model.run_id != job_id:
            return _superseded(job_id)

        problem_type = model.problem_type
        configuration = dict(model.configuration or {})
        progress = _progress_cb_factory(job_id, model_id)
        try:
            dataset = s.get(Dataset, model.dataset_id)
            if dataset is None or not dataset.storage_path:
                raise DataError("dataset not found")
            dataset_name, storage_path = dataset.name, dataset.storage_path
            if not repo.update_model_for_run(model_id, job_id, status="training", error_message=None):
                return _superseded(job_id)

            progress(10, "loading dataset")
            df = load_dataset(storage_path)
            metrics, results, highlights = run_pipeline(problem_type, df, configuration, progress)

            progress(90, "generating insights")
            results["insights"] = generate_insight(
                build_prompt(problem_type, dataset_name, configuration, metrics, highlights)
            )
            if queue_mongo.is_cancel_requested(job_id):
                raise JobCanceled(f"run {job_id} canceled")

            if not repo.update_model_for_run(
                model_id, job_id, status="completed", training_progress=100, results=results, metrics=metrics,
            ):
                return _superseded(job_id)
            s.refresh(model)
            repo.create_result(model, dataset_name)
            queue_mongo.finish_job(job_id, "succeeded", "completed", {"metrics": json_safe(metrics)})
            logger.info("Job %s completed (%s, model %s)", job_id, problem_type, model_id)
            return "succeeded"

        except JobCanceled:
            repo.update_model_for_run(model_id, job_id, status="created", training_progress=0)
            queue_mongo.finish_job(job_id, "canceled", "canceled")
            logger.info("Job %s canceled", job_id)
            return "canceled"

        except PERMANENT_ERRORS as exc:
            _fail(job_id, repo, model_id, exc, attempts)
            return "failed"

        except Exception as exc:
            if attempts < settings.JOB_MAX_ATTEMPTS:
                logger.warning("Job %s attempt %d failed (%s); re-queueing", job_id, attempts, exc)
                queue_mongo.requeue_job(job_id, f"attempt {attempts} failed: {exc}")
                return "queued"
            _fail(job_id, repo, model_id, exc, attempts)
            return "failed"


def reap_canceled() -> int:
    """
    Close canceled runs whose worker died before reaching a checkpoint and
    put their models back to created.
    """
    reaped = queue_mongo.reap_stale_canceled()
    if not reaped:
        return 0
    with Session(get_engine()) as s:
        repo = Repo(s)
        for j in reaped:
            if j.get("model_id"):
                repo.update_model_for_run(j["model_id"], str(j["_id"]), status="created", training_progress=0)
            logger.info("Job %s canceled after its worker stopped heartbeating", j["_id"])
    return len(reaped)


class Worker:
    def __init__(self, worker_id: Optional[str] = None, poll_seconds: Optional[float] = None):
        self.worker_id = worker_id or f"{socket.gethostname()}-{os.getpid()}"
        self.poll_seconds = settings.WORKER_POLL_SECONDS if poll_seconds is None else poll_seconds
        self._stopped = False

    def run_once(self) -> Optional[str]:
        reap_canceled()
        job = queue_mongo.claim_next_job(self.worker_id)
        if not job:
            return None
        logger.info("Worker %s claimed job %s (attempt %s)", self.worker_id, job["_id"], job.get("attempts"))
        run_job(job)
        return str(job["_id"])

    def stop(self) -> None:
        self._stopped = True

    def run_forever(self) -> None:
        logger.info("Worker %s polling every %.1fs", self.worker_id, self.poll_seconds)
        while not self._stopped:
            if self.run_once() is None:
                time.sleep(self.poll_seconds)


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Analytics hub training worker")
    parser.add_argument("--once", action="store_true", help="process at most one job and exit")
    parser.add_argument("--worker-id", default=None)
    args = parser.parse_args(argv)

    setup_logging(settings.LOG_LEVEL)
    create_db_and_tables()
    queue_mongo.ensure_indexes()

    worker = Worker(worker_id=args.worker_id)
    if args.once:
        worker.run_once()
        return
    try:
        worker.run_forever()
    except KeyboardInterrupt:
        logger.info("Worker %s stopping", worker.worker_id)


if __name__ == "__main__":
    main()

# backend/analytics_hub/store_sql.py

from __future__ import annotations
from typing import Any, Dict, List, Optional
from datetime import datetime
from uuid import uuid4

from sqlalchemy import update
from sqlmodel import Session, select

from .models import Dataset, MLModel, ModelResult, Profile
from .utils.json_safe import json_safe


class Repo:
    """
    All reads and writes are scoped by user_id; a row owned by another user
    behaves exactly like a missing row.
    """

    def __init__(self, s: Session):
        self.s = s

    def _save(self, row):
        self.s.add(row)
        self.s.commit()
        self.s.refresh(row)
        return row

    # Profiles
    def get_or_create_profile(self, user_id: str) -> Profile:
        p = self.s.exec(select(Profile).where(Profile.user_id == user_id)).first()
        if p:
            return p
        return self._save(Profile(id=uuid4().hex, user_id=user_id))

    def update_profile(self, user_id: str, fields: Dict[str, Any]) -> Profile:
        p = self.get_or_create_profile(user_id)
        for k in ("full_name", "company"):
            if k in fields:
                setattr(p, k, fields[k])
        p.updated_at = datetime.utcnow()
        return self._save(p)

    # Datasets
    def create_dataset(self, user_id: str, original_filename: str, file_size: int,
                       file_type: str, storage_path: str) -> Dataset:
        name = original_filename.rsplit(".", 1)[0] if "." in original_filename else original_filename
        d = Dataset(
            id=uuid4().hex,
            user_id=user_id,
            name=name,
            original_filename=original_filename,
            file_size=file_size,
            file_type=file_type or "unknown",
            storage_path=storage_path,
            status="uploaded",
            created_at=datetime.utcnow(),
        )
        return self._save(d)

    def update_dataset(self, d: Dataset, **fields) -> Dataset:
        for k, v in fields.items():
            setattr(d, k, json_safe(v) if k == "data_profile" else v)
        d.updated_at = datetime.utcnow()
        return self._save(d)

    def get_dataset(self, user_id: str, dataset_id: str) -> Optional[Dataset]:
        return self.s.exec(
            select(Dataset).where(Dataset.id == dataset_id, Dataset.user_id == user_id)
        ).first()

    def list_datasets(self, user_id: str, status: Optional[str] = None) -> List[Dataset]:
        q = select(Dataset).where(Dataset.user_id == user_id)
        if status:
            q = q.where(Dataset.status == status)
        return list(self.s.exec(q.order_by(Dataset.created_at.desc())).all())

    def delete_dataset_cascade(self, user_id: str, dataset_id: str) -> Dict[str, Any]:
        d = self.get_dataset(user_id, dataset_id)
        if not d:
            return {"ok": False}
        models = self.s.exec(
            select(MLModel).where(MLModel.dataset_id == dataset_id, MLModel.user_id == user_id)
        ).all()
        run_ids = [m.run_id for m in models if m.run_id]
        for m in models:
            self.s.delete(m)
        storage_path = d.storage_path
        self.s.delete(d)
        self.s.commit()
        return {"ok": True, "deleted_dataset_id": dataset_id, "deleted_models": len(models),
                "storage_path": storage_path, "run_ids": run_ids}

    # Models
    def create_model(self, user_id: str, dataset_id: str, name: str, problem_type: str,
                     problem_subtype: str, configuration: Dict[str, Any]) -> MLModel:
        m = MLModel(
            id=uuid4().hex,
            user_id=user_id,
            dataset_id=dataset_id,
            name=name,
            problem_type=problem_type,
            problem_subtype=problem_subtype,
            configuration=configuration or {},
            status="created",
            training_progress=0,
            created_at=datetime.utcnow(),
        )
        return self._save(m)

    def get_model(self, user_id: str, model_id: str) -> Optional[MLModel]:
        return self.s.exec(
            select(MLModel).where(MLModel.id == model_id, MLModel.user_id == user_id)
        ).first()

    def get_model_unscoped(self, model_id: str) -> Optional[MLModel]:
        """Worker-side lookup; the job document already carries the owner."""
        return self.s.get(MLModel, model_id)

    def list_models(self, user_id: str, problem_type: Optional[str] = None) -> List[MLModel]:
        q = select(MLModel).where(MLModel.user_id == user_id)
        if problem_type:
            q = q.where(MLModel.problem_type == problem_type)
        return list(self.s.exec(q.order_by(MLModel.created_at.desc())).all())

    def delete_model(self, user_id: str, model_id: str) -> bool:
        m = self.get_model(user_id, model_id)
        if not m:
            return False
        self.s.delete(m)
        self.s.commit()
        return True

    def update_model(self, m: MLModel, **fields) -> MLModel:
        for k, v in fields.items():
            setattr(m, k, json_safe(v) if k in ("results", "metrics") else v)
        m.updated_at = datetime.utcnow()
        return self._save(m)

    def update_model_for_run(self, model_id: str, run_id: str, **fields) -> bool:
        """
        Write fields only while the row still belongs to run_id. A run that was
        superseded (forced retrain) or whose model was deleted writes nothing.
        """
        values = {k: json_safe(v) if k in ("results", "metrics") else v for k, v in fields.items()}
        values["updated_at"] = datetime.utcnow()
        res = self.s.exec(
            update(MLModel)
            .where(MLModel.id == model_id, MLModel.run_id == run_id)
            .values(**values)
        )
        self.s.commit()
        return bool(res.rowcount)

    def set_progress(self, model_id: str, run_id: str, progress: int) -> bool:
        """
        Monotonic progress write: only applies while the row still belongs to
        run_id and the new value is larger than the stored one.
        """
        res = self.s.exec(
            update(MLModel)
            .where(MLModel.id == model_id, MLModel.run_id == run_id, MLModel.training_progress < progress)
            .values(training_progress=int(progress), updated_at=datetime.utcnow())
        )
        self.s.commit()
        return bool(res.rowcount)

    # Result history
    def create_result(self, m: MLModel, dataset_name: str) -> ModelResult:
        r = ModelResult(
            id=uuid4().hex,
            user_id=m.user_id,
            model_id=m.id,
            dataset_name=dataset_name or "Unknown",
            problem_type=m.problem_type,
            problem_subtype=m.problem_subtype,
            metrics=json_safe(m.metrics or {}),
            results=json_safe(m.results or {}),
            created_at=datetime.utcnow(),
        )
        return self._save(r)

    def list_results(self, user_id: str, limit: int = 10) -> List[ModelResult]:
        q = (select(ModelResult).where(ModelResult.user_id == user_id)
             .order_by(ModelResult.created_at.desc()).limit(limit))
        return list(self.s.exec(q).all())

    def delete_result(self, user_id: str, result_id: str) -> bool:
        r = self.s.exec(
            select(ModelResult).where(ModelResult.id == result_id, ModelResult.user_id == user_id)
        ).first()
        if not r:
            return False
        self.s.delete(r)
        self.s.commit()
        return True

# backend/analytics_hub/models.py

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON, String


class Profile(SQLModel, table=True):
    """One row per user (created lazily on first read)."""
    __tablename__ = "profiles"

    id: str = Field(primary_key=True)
    user_id: str = Field(sa_column=Column(String, unique=True, index=True, nullable=False))
    full_name: Optional[str] = None
    company: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Dataset(SQLModel, table=True):
    """Uploaded file metadata plus its data profile"""
    __tablename__ = "datasets"

    id: str = Field(primary_key=True)
    user_id: str = Field(index=True)
    name: str
    original_filename: str
    file_size: int
    file_type: str = "unknown"
    status: str = Field(default="uploaded", index=True)  # uploaded|processing|processed|error
    row_count: Optional[int] = None
    column_count: Optional[int] = None
    data_profile: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    storage_path: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class MLModel(SQLModel, table=True):
    """A requested analytical task and its latest outcome"""
    __tablename__ = "ml_models"

    id: str = Field(primary_key=True)
    user_id: str = Field(index=True)
    dataset_id: str = Field(foreign_key="datasets.id", index=True)
    name: str

    # classification | regression | clustering | forecast | recommendation
    problem_type: str = Field(index=True)
    problem_subtype: str

    configuration: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    status: str = Field(default="created", index=True)  # created|training|completed|error|deployed
    training_progress: int = 0
    results: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    metrics: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    run_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ModelResult(SQLModel, table=True):
    """History copy of a completed model"""
    __tablename__ = "model_results"

    id: str = Field(primary_key=True)
    user_id: str = Field(index=True)
    model_id: str = Field(index=True)
    dataset_name: str
    problem_type: str
    problem_subtype: str
    metrics: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    results: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

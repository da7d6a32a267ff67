"""
Shared fixtures for the analytics hub tests.

The relational store runs on in-memory SQLite and the job queue on a
mongomock collection, so no external services are needed.
"""

import os
import tempfile

# must be set before analytics_hub.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["MONGO_URI"] = "mongodb://127.0.0.1:27017"
os.environ["ARTIFACT_ROOT"] = tempfile.mkdtemp(prefix="analytics-hub-tests-")
os.environ["JWT_SECRET"] = "test-secret"
os.environ["LLM_API_KEY"] = ""
os.environ["BYPASS_AUTH_INTERNAL"] = "false"

import mongomock
import numpy as np
import pandas as pd
import pytest
from sqlmodel import Session, SQLModel

from analytics_hub import queue_mongo
from analytics_hub.config import settings
from analytics_hub.db import get_engine
from analytics_hub.services.auth_utils import create_access_token


# ============================================================================
# Pytest Hooks
# ============================================================================


def pytest_collection_modifyitems(config, items):
    """End-to-end training tests are marked slow."""
    for item in items:
        if "end_to_end" in item.name.lower():
            item.add_marker(pytest.mark.slow)


# ============================================================================
# Stores
# ============================================================================


@pytest.fixture(autouse=True)
def jobs(monkeypatch):
    """Fresh mongomock collection in place of the real queue collection."""
    collection = mongomock.MongoClient()["analytics_hub_test"]["jobs"]
    monkeypatch.setattr(queue_mongo, "_jobs", collection)
    queue_mongo.ensure_indexes()
    return collection


@pytest.fixture(autouse=True)
def db():
    engine = get_engine()
    from analytics_hub import models  # noqa: F401
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield engine


@pytest.fixture
def session(db):
    with Session(db) as s:
        yield s


@pytest.fixture(autouse=True)
def artifact_root(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "ARTIFACT_ROOT", str(tmp_path / "artifacts"))
    monkeypatch.setattr(settings, "LLM_API_KEY", None)
    return tmp_path / "artifacts"


# ============================================================================
# Auth
# ============================================================================


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {create_access_token('user-a', {'email': 'a@example.com'})}"}


@pytest.fixture
def other_auth_headers():
    return {"Authorization": f"Bearer {create_access_token('user-b', {'email': 'b@example.com'})}"}


# ============================================================================
# Data
# ============================================================================


@pytest.fixture
def churn_df():
    rng = np.random.default_rng(0)
    n = 120
    tenure = rng.integers(1, 72, n)
    charges = rng.normal(70, 20, n).round(2)
    contract = rng.choice(["monthly", "yearly", "two-year"], n)
    churn = np.where(((tenure < 24) & (contract == "monthly")) | (charges > 95), "yes", "no")
    return pd.DataFrame({"tenure": tenure, "monthly_charges": charges, "contract": contract, "churn": churn})


@pytest.fixture
def sales_df():
    rng = np.random.default_rng(1)
    n = 80
    ads = rng.uniform(0, 100, n).round(1)
    price = rng.uniform(5, 20, n).round(2)
    revenue = (3.0 * ads - 2.0 * price + 50 + rng.normal(0, 5, n)).round(2)
    return pd.DataFrame({"ads": ads, "price": price, "revenue": revenue})


@pytest.fixture
def blobs_df():
    rng = np.random.default_rng(2)
    centers = [(0, 0), (10, 10), (0, 10)]
    rows = []
    for cx, cy in centers:
        for _ in range(30):
            rows.append({"x": cx + rng.normal(0, 0.5), "y": cy + rng.normal(0, 0.5)})
    return pd.DataFrame(rows)


@pytest.fixture
def daily_df():
    dates = pd.date_range("2024-01-01", periods=40, freq="D")
    return pd.DataFrame({"date": dates.strftime("%Y-%m-%d"), "sales": [100 + 2 * i + (i % 7) for i in range(40)]})


@pytest.fixture
def ratings_df():
    rows = []
    users = [f"u{i}" for i in range(6)]
    items = [f"i{j}" for j in range(8)]
    for ui, u in enumerate(users):
        for ij, it in enumerate(items):
            if (ui + ij) % 3 != 0:
                rows.append({"user": u, "item": it, "rating": 1 + (ui * ij) % 5})
    return pd.DataFrame(rows)

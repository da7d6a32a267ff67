"""
Tests for the HTTP API (FastAPI TestClient, SQLite + mongomock).

Verifies that:
- Every endpoint requires a bearer token and scopes rows to its owner
- Uploads are stored and profiled, with failures kept as error rows
- Model creation validates subtype, configuration and referenced columns
- Training is idempotent, quota-limited and cancelable
- Chat and content analysis map provider limits to 429/402 and fall back otherwise
"""

import io
import json
from unittest.mock import patch

import pandas as pd
import pytest
from fastapi.testclient import TestClient

from analytics_hub import queue_mongo
from analytics_hub.config import settings
from analytics_hub.main import app
from analytics_hub.services import storage
from analytics_hub.services.auth_utils import create_access_token
from analytics_hub.services.insights import FALLBACK_REPLY

API = settings.API_BASE


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def _csv_bytes(df: pd.DataFrame) -> bytes:
    buf = io.StringIO()
    df.to_csv(buf, index=False)
    return buf.getvalue().encode("utf-8")


def _upload(client, headers, df=None, filename="sales.csv", content=None):
    data = content if content is not None else _csv_bytes(df)
    return client.post(f"{API}/datasets/upload", files={"f": (filename, data, "text/csv")}, headers=headers)


@pytest.fixture
def dataset(client, auth_headers, sales_df):
    r = _upload(client, auth_headers, sales_df)
    assert r.status_code == 200, r.text
    return r.json()


@pytest.fixture
def model(client, auth_headers, dataset):
    r = client.post(
        f"{API}/models",
        json={"dataset_id": dataset["id"], "problem_type": "regression", "configuration": {"target_column": "revenue"}},
        headers=auth_headers,
    )
    assert r.status_code == 200, r.text
    return r.json()


# ============= Auth =============


class TestAuth:

    def test_health_is_public(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_missing_token(self, client):
        r = client.get(f"{API}/datasets")
        assert r.status_code == 401
        assert r.json()["detail"] == "Unauthorized"

    def test_bad_signature(self, client, monkeypatch):
        token = create_access_token("user-a")
        monkeypatch.setattr(settings, "JWT_SECRET", "another-secret")
        r = client.get(f"{API}/datasets", headers={"Authorization": f"Bearer {token}"})
        assert r.status_code == 401

    def test_wrong_audience(self, client):
        token = create_access_token("user-a", {"aud": "someone-else"})
        r = client.get(f"{API}/datasets", headers={"Authorization": f"Bearer {token}"})
        assert r.status_code == 401

    def test_expired_token(self, client):
        token = create_access_token("user-a", {"exp": 1})
        r = client.get(f"{API}/datasets", headers={"Authorization": f"Bearer {token}"})
        assert r.status_code == 401


# ============= Profile =============


class TestProfile:

    def test_get_creates_profile(self, client, auth_headers):
        r = client.get(f"{API}/profile", headers=auth_headers)
        assert r.status_code == 200
        assert r.json()["user_id"] == "user-a"

    def test_update(self, client, auth_headers):
        r = client.put(f"{API}/profile", json={"full_name": "Ada Lovelace", "company": "Analytical"},
                       headers=auth_headers)
        assert r.json()["full_name"] == "Ada Lovelace"
        assert client.get(f"{API}/profile", headers=auth_headers).json()["company"] == "Analytical"


# ============= Datasets =============


class TestDatasets:

    def test_upload_profiles_dataset(self, dataset, artifact_root):
        assert dataset["status"] == "processed"
        assert dataset["name"] == "sales"
        assert dataset["row_count"] == 80
        assert dataset["column_count"] == 3
        assert dataset["data_profile"]["columns"]["revenue"]["type"] == "numeric"
        assert dataset["storage_path"].startswith("user-a/")
        assert storage.resolve(dataset["storage_path"]).exists()

    def test_rejects_unknown_extension(self, client, auth_headers):
        r = _upload(client, auth_headers, filename="notes.txt", content=b"hello")
        assert r.status_code == 400

    def test_rejects_empty_file(self, client, auth_headers):
        r = _upload(client, auth_headers, filename="empty.csv", content=b"")
        assert r.status_code == 400

    def test_rejects_oversized_file(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(settings, "MAX_UPLOAD_MB", 0)
        r = _upload(client, auth_headers, filename="a.csv", content=b"a,b\n1,2\n")
        assert r.status_code == 400

    def test_profiling_failure_keeps_error_row(self, client, auth_headers):
        r = _upload(client, auth_headers, filename="bad.json", content=json.dumps({"not": "records"}).encode())
        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "error"
        assert "array of objects" in body["error_message"]

    def test_json_records_upload(self, client, auth_headers):
        content = json.dumps([{"a": 1, "b": "x"}, {"a": 2, "b": "y"}]).encode()
        r = _upload(client, auth_headers, filename="rows.json", content=content)
        assert r.json()["status"] == "processed"
        assert r.json()["row_count"] == 2

    def test_xlsx_upload(self, client, auth_headers, sales_df):
        buf = io.BytesIO()
        sales_df.to_excel(buf, index=False)
        r = _upload(client, auth_headers, filename="sales.xlsx", content=buf.getvalue())
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["status"] == "processed"
        assert body["row_count"] == 80
        assert body["data_profile"]["columns"]["revenue"]["type"] == "numeric"

    def test_failed_row_insert_removes_stored_file(self, client, auth_headers, sales_df, artifact_root):
        with patch("analytics_hub.api.Repo.create_dataset", side_effect=RuntimeError("database is down")):
            with pytest.raises(RuntimeError):
                _upload(client, auth_headers, sales_df)
        assert [p for p in (artifact_root / "datasets").rglob("*") if p.is_file()] == []

    def test_list_and_filter(self, client, auth_headers, dataset):
        rows = client.get(f"{API}/datasets", headers=auth_headers).json()
        assert [d["id"] for d in rows] == [dataset["id"]]
        assert client.get(f"{API}/datasets?status=error", headers=auth_headers).json() == []

    def test_other_user_gets_404(self, client, other_auth_headers, dataset):
        assert client.get(f"{API}/datasets/{dataset['id']}", headers=other_auth_headers).status_code == 404
        assert client.delete(f"{API}/datasets/{dataset['id']}", headers=other_auth_headers).status_code == 404
        assert client.get(f"{API}/datasets", headers=other_auth_headers).json() == []

    def test_preview(self, client, auth_headers, dataset):
        r = client.post(f"{API}/datasets/{dataset['id']}/preview", json={"limit": 3}, headers=auth_headers)
        body = r.json()
        assert body["columns"] == ["ads", "price", "revenue"]
        assert len(body["rows"]) == 3
        assert body["total_rows"] == 80

    def test_chart(self, client, auth_headers, dataset):
        r = client.post(f"{API}/datasets/{dataset['id']}/chart",
                        json={"x_column": "ads", "y_column": "revenue", "chart_type": "scatter", "limit": 10},
                        headers=auth_headers)
        assert r.status_code == 200
        assert len(r.json()["values"]) == 10

    def test_chart_unknown_column(self, client, auth_headers, dataset):
        r = client.post(f"{API}/datasets/{dataset['id']}/chart",
                        json={"x_column": "ads", "y_column": "profit"}, headers=auth_headers)
        assert r.status_code == 400

    def test_chart_rejects_unknown_chart_type(self, client, auth_headers, dataset):
        r = client.post(f"{API}/datasets/{dataset['id']}/chart",
                        json={"x_column": "ads", "y_column": "revenue", "chart_type": "radar"},
                        headers=auth_headers)
        assert r.status_code == 422

    def test_delete_cascades_to_models_and_file(self, client, auth_headers, dataset, model):
        r = client.delete(f"{API}/datasets/{dataset['id']}", headers=auth_headers)
        assert r.json() == {"ok": True, "deleted_dataset_id": dataset["id"], "deleted_models": 1}
        assert client.get(f"{API}/models/{model['id']}", headers=auth_headers).status_code == 404
        assert not storage.resolve(dataset["storage_path"]).exists()

    def test_delete_cancels_model_runs(self, client, auth_headers, dataset, model):
        run_id = client.post(f"{API}/models/{model['id']}/train", headers=auth_headers).json()["run_id"]
        assert client.delete(f"{API}/datasets/{dataset['id']}", headers=auth_headers).status_code == 200
        job = queue_mongo.get_job(run_id)
        assert job["status"] == "canceled"
        assert queue_mongo.count_active_jobs_for_user("user-a") == 0

    def test_delete_flags_running_model_runs(self, client, auth_headers, dataset, model):
        run_id = client.post(f"{API}/models/{model['id']}/train", headers=auth_headers).json()["run_id"]
        queue_mongo.claim_next_job("w1")
        client.delete(f"{API}/datasets/{dataset['id']}", headers=auth_headers)
        assert queue_mongo.is_cancel_requested(run_id) is True


# ============= Models =============


class TestModels:

    def test_problem_type_catalog(self, client):
        catalog = {p["problem_type"]: p for p in client.get(f"{API}/problem-types").json()}
        assert set(catalog) == {"classification", "regression", "clustering", "forecast", "recommendation"}
        assert [s["id"] for s in catalog["classification"]["subtypes"]] == ["churn", "fraud", "sentiment", "quality"]
        assert "target_column" in catalog["forecast"]["configuration_schema"]["properties"]

    def test_create_defaults(self, model):
        assert model["status"] == "created"
        assert model["training_progress"] == 0
        assert model["problem_subtype"] == "revenue"
        assert model["name"] == "Revenue Forecasting Model"
        assert model["configuration"]["training_split"] == "80-20"
        assert model["configuration"]["algorithm"] == "linear"

    def test_subtype_must_match_problem_type(self, client, auth_headers, dataset):
        r = client.post(f"{API}/models", json={
            "dataset_id": dataset["id"], "problem_type": "regression", "problem_subtype": "churn",
            "configuration": {"target_column": "revenue"},
        }, headers=auth_headers)
        assert r.status_code == 422

    def test_invalid_configuration(self, client, auth_headers, dataset):
        r = client.post(f"{API}/models", json={
            "dataset_id": dataset["id"], "problem_type": "clustering", "configuration": {"n_clusters": 50},
        }, headers=auth_headers)
        assert r.status_code == 422

    def test_unknown_column(self, client, auth_headers, dataset):
        r = client.post(f"{API}/models", json={
            "dataset_id": dataset["id"], "problem_type": "regression", "configuration": {"target_column": "profit"},
        }, headers=auth_headers)
        assert r.status_code == 400
        assert "profit" in r.json()["detail"]

    def test_dataset_of_other_user(self, client, other_auth_headers, dataset):
        r = client.post(f"{API}/models", json={
            "dataset_id": dataset["id"], "problem_type": "regression", "configuration": {"target_column": "revenue"},
        }, headers=other_auth_headers)
        assert r.status_code == 404

    def test_list_filter_and_delete(self, client, auth_headers, model):
        assert len(client.get(f"{API}/models?problem_type=regression", headers=auth_headers).json()) == 1
        assert client.get(f"{API}/models?problem_type=clustering", headers=auth_headers).json() == []
        assert client.delete(f"{API}/models/{model['id']}", headers=auth_headers).json()["ok"] is True
        assert client.get(f"{API}/models/{model['id']}", headers=auth_headers).status_code == 404

    def test_deploy_requires_completed(self, client, auth_headers, model):
        r = client.post(f"{API}/models/{model['id']}/deploy", headers=auth_headers)
        assert r.status_code == 409


# ============= Training runs =============


class TestTraining:

    def test_train_is_idempotent(self, client, auth_headers, model):
        first = client.post(f"{API}/models/{model['id']}/train", headers=auth_headers).json()
        second = client.post(f"{API}/models/{model['id']}/train", headers=auth_headers).json()
        assert first["created"] is True
        assert second == {"run_id": first["run_id"], "created": False, "status": "queued"}

        m = client.get(f"{API}/models/{model['id']}", headers=auth_headers).json()
        assert m["status"] == "training"
        assert m["run_id"] == first["run_id"]

    def test_force_starts_new_run(self, client, auth_headers, model):
        first = client.post(f"{API}/models/{model['id']}/train", headers=auth_headers).json()
        forced = client.post(f"{API}/models/{model['id']}/train", json={"force": True}, headers=auth_headers).json()
        assert forced["created"] is True
        assert forced["run_id"] != first["run_id"]
        m = client.get(f"{API}/models/{model['id']}", headers=auth_headers).json()
        assert m["run_id"] == forced["run_id"]

    def test_quota_exceeded(self, client, auth_headers, dataset, model, monkeypatch):
        monkeypatch.setattr(settings, "MAX_ACTIVE_RUNS_PER_USER", 1)
        other = client.post(f"{API}/models", json={
            "dataset_id": dataset["id"], "problem_type": "regression", "problem_subtype": "pricing",
            "configuration": {"target_column": "price"},
        }, headers=auth_headers).json()
        assert client.post(f"{API}/models/{model['id']}/train", headers=auth_headers).status_code == 200
        r = client.post(f"{API}/models/{other['id']}/train", headers=auth_headers)
        assert r.status_code == 429

    def test_run_status_and_ownership(self, client, auth_headers, other_auth_headers, model):
        run_id = client.post(f"{API}/models/{model['id']}/train", headers=auth_headers).json()["run_id"]
        r = client.get(f"{API}/runs/{run_id}", headers=auth_headers).json()
        assert r["id"] == run_id
        assert r["model_id"] == model["id"]
        assert r["status"] == "queued"
        assert client.get(f"{API}/runs/{run_id}", headers=other_auth_headers).status_code == 404
        assert client.get(f"{API}/runs/does-not-exist", headers=auth_headers).status_code == 404

    def test_cancel_queued_run_resets_model(self, client, auth_headers, model):
        run_id = client.post(f"{API}/models/{model['id']}/train", headers=auth_headers).json()["run_id"]
        r = client.post(f"{API}/runs/{run_id}/cancel", headers=auth_headers).json()
        assert r["status"] == "canceled"
        m = client.get(f"{API}/models/{model['id']}", headers=auth_headers).json()
        assert m["status"] == "created"
        assert m["training_progress"] == 0

    def test_cancel_running_run_only_flags(self, client, auth_headers, model):
        run_id = client.post(f"{API}/models/{model['id']}/train", headers=auth_headers).json()["run_id"]
        queue_mongo.claim_next_job("w1")
        r = client.post(f"{API}/runs/{run_id}/cancel", headers=auth_headers).json()
        assert r["status"] == "running"
        assert r["cancel_requested"] is True
        assert client.get(f"{API}/models/{model['id']}", headers=auth_headers).json()["status"] == "training"

    def test_results_empty_and_missing_delete(self, client, auth_headers):
        assert client.get(f"{API}/results", headers=auth_headers).json() == []
        assert client.delete(f"{API}/results/nope", headers=auth_headers).status_code == 404


# ============= Assistant =============


class _LLMResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.text = ""

    def json(self):
        return self._payload


def _reply(text):
    return _LLMResponse(200, {"choices": [{"message": {"content": text}}]})


PATCH_POST = "analytics_hub.services.insights.requests.post"


class TestAssistant:

    def test_chat_sends_history(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(settings, "LLM_API_KEY", "key")
        messages = [
            {"role": "user", "content": "What is churn?"},
            {"role": "assistant", "content": "Customers leaving."},
            {"role": "user", "content": "How do I predict it?"},
        ]
        with patch(PATCH_POST, return_value=_reply("Train a classifier.")) as post:
            r = client.post(f"{API}/chat", json={"messages": messages}, headers=auth_headers)
        assert r.status_code == 200
        assert r.json() == {"message": "Train a classifier."}
        sent = post.call_args.kwargs["json"]["messages"]
        assert sent[0]["role"] == "system"
        assert sent[1:] == messages

    def test_chat_rate_limited(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(settings, "LLM_API_KEY", "key")
        with patch(PATCH_POST, return_value=_LLMResponse(429)):
            r = client.post(f"{API}/chat", json={"messages": [{"role": "user", "content": "hi"}]},
                            headers=auth_headers)
        assert r.status_code == 429
        assert "Rate limit" in r.json()["detail"]

    def test_chat_payment_required(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(settings, "LLM_API_KEY", "key")
        with patch(PATCH_POST, return_value=_LLMResponse(402)):
            r = client.post(f"{API}/chat", json={"messages": [{"role": "user", "content": "hi"}]},
                            headers=auth_headers)
        assert r.status_code == 402

    def test_chat_without_key_returns_fallback(self, client, auth_headers):
        with patch(PATCH_POST) as post:
            r = client.post(f"{API}/chat", json={"messages": [{"role": "user", "content": "hi"}]},
                            headers=auth_headers)
        assert r.status_code == 200
        assert r.json()["message"] == FALLBACK_REPLY
        post.assert_not_called()

    def test_chat_validation(self, client, auth_headers):
        assert client.post(f"{API}/chat", json={"messages": []}, headers=auth_headers).status_code == 422
        r = client.post(f"{API}/chat", json={"messages": [{"role": "system", "content": "x"}]}, headers=auth_headers)
        assert r.status_code == 422

    def test_chat_requires_token(self, client):
        r = client.post(f"{API}/chat", json={"messages": [{"role": "user", "content": "hi"}]})
        assert r.status_code == 401

    def test_analyze_content(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(settings, "LLM_API_KEY", "key")
        with patch(PATCH_POST, return_value=_reply("In short: sales rose.")) as post:
            r = client.post(f"{API}/analyze-content",
                            json={"content": "  Q3 sales rose 12% on strong ad spend.  ", "analysisType": "simplify"},
                            headers=auth_headers)
        assert r.status_code == 200
        assert r.json() == {"result": "In short: sales rose."}
        prompt = post.call_args.kwargs["json"]["messages"][0]["content"]
        assert prompt.startswith("Rewrite the following content in plain language")
        assert prompt.endswith("Q3 sales rose 12% on strong ad spend.")

    def test_analyze_defaults_to_summary(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(settings, "LLM_API_KEY", "key")
        with patch(PATCH_POST, return_value=_reply("Summary.")) as post:
            client.post(f"{API}/analyze-content", json={"content": "text"}, headers=auth_headers)
        assert post.call_args.kwargs["json"]["messages"][0]["content"].startswith("Summarize")

    def test_analyze_upstream_error_returns_fallback(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(settings, "LLM_API_KEY", "key")
        with patch(PATCH_POST, return_value=_LLMResponse(500)):
            r = client.post(f"{API}/analyze-content", json={"content": "text"}, headers=auth_headers)
        assert r.status_code == 200
        assert r.json()["result"] == FALLBACK_REPLY

    def test_analyze_validation(self, client, auth_headers):
        r = client.post(f"{API}/analyze-content", json={"content": "   "}, headers=auth_headers)
        assert r.status_code == 422
        r = client.post(f"{API}/analyze-content", json={"content": "x", "analysisType": "translate"},
                        headers=auth_headers)
        assert r.status_code == 422

"""
Tests for the HTTP API over in-memory services.
"""

import pytest

from umoyo.pipelines.hybrid import SAFE_REFUSAL

WHO_DOC = {
    "id": "who-malaria-2023",
    "title": "WHO Guidelines for Malaria",
    "source": "WHO",
    "category": "clinical-guideline",
    "local_path": "/data/who/malaria.pdf",
}


# ============================================
# Health
# ============================================


@pytest.mark.unit
def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["service"] == "umoyo-api"


@pytest.mark.unit
def test_ready_with_managed_corpus(client):
    response = client.get("/ready")
    assert response.status_code == 200
    body = response.json()
    assert body["ready"] is True
    assert body["checks"]["managed"]["file_count"] == 12
    assert body["checks"]["custom"]["chunks"] == 0
    assert body["checks"]["generator"] == "ok"
    assert body["checks"]["corpus"] is None


@pytest.mark.unit
def test_not_ready_without_any_corpus(client, managed_client):
    managed_client.check_status.return_value.ready = False
    response = client.get("/ready")
    assert response.json()["ready"] is False


# ============================================
# Query
# ============================================


@pytest.mark.unit
def test_query_returns_retrieval_result(client):
    response = client.post(
        "/api/v1/query",
        json={"message": "What is the treatment for malaria", "role": "patient"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["strategy_used"] == "managed"
    assert body["fallback_used"] is False
    assert body["confidence"] == pytest.approx(0.9)
    assert body["sources"][0]["origin"] == "managed"


@pytest.mark.unit
def test_query_accepts_healthcare_professional_role(client):
    response = client.post(
        "/api/v1/query",
        json={"message": "fever headache", "role": "healthcare-professional"},
    )
    assert response.status_code == 200
    # managed branch answers, custom corpus is empty
    assert response.json()["strategy_used"] == "hybrid"


@pytest.mark.unit
@pytest.mark.parametrize(
    "payload",
    [
        {"message": "hi"},
        {"message": "x" * 1001},
        {"message": "What is malaria?", "role": "surgeon"},
        {},
    ],
)
def test_query_validation_errors(client, payload):
    assert client.post("/api/v1/query", json=payload).status_code == 422


@pytest.mark.unit
def test_query_safe_refusal_when_everything_fails(client, managed_client):
    managed_client.query.side_effect = RuntimeError("vertex down")

    response = client.post(
        "/api/v1/query", json={"message": "What is the treatment for malaria"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["answer"] == SAFE_REFUSAL
    assert body["confidence"] == 0.0
    assert body["fallback_used"] is True


# ============================================
# Corpus and ingestion
# ============================================


@pytest.mark.unit
def test_corpus_404_before_ingestion(client):
    assert client.get("/api/v1/corpus").status_code == 404


@pytest.mark.unit
@pytest.mark.asyncio
async def test_corpus_metadata_after_ingestion(client, ingestion, sample_document, sample_text):
    await ingestion.ingest_text(sample_document, sample_text)

    response = client.get("/api/v1/corpus")

    assert response.status_code == 200
    body = response.json()
    assert body["total_documents"] == 1
    assert body["total_chunks"] == 5
    assert body["embedding_model"] == "fake-embedding"


@pytest.mark.unit
def test_ingest_queues_celery_job(client, mocker):
    task = mocker.Mock()
    task.id = "job-123"
    delay = mocker.patch("umoyo.worker.ingest_documents.delay", return_value=task)

    response = client.post("/api/v1/ingest", json={"documents": [WHO_DOC]})

    assert response.status_code == 202
    assert response.json() == {"job_id": "job-123", "status": "queued", "total": 1}
    delay.assert_called_once()


@pytest.mark.unit
def test_ingest_rejects_documents_without_path(client):
    doc = {k: v for k, v in WHO_DOC.items() if k != "local_path"}
    response = client.post("/api/v1/ingest", json={"documents": [doc]})
    assert response.status_code == 422


@pytest.mark.unit
def test_job_status(client, mocker):
    mocker.patch(
        "umoyo.worker.get_job_status",
        return_value={"job_id": "job-123", "status": "processing"},
    )
    response = client.get("/api/v1/jobs/job-123")
    assert response.json()["status"] == "processing"


# ============================================
# Metrics
# ============================================


@pytest.mark.unit
def test_metrics_count_queries(client):
    client.post("/api/v1/query", json={"message": "What is the treatment for malaria"})

    text = client.get("/metrics").text

    assert "queries_total 1" in text
    assert 'queries_by_strategy{strategy="managed"} 1' in text

    assert client.post("/metrics/reset").json() == {"status": "metrics_reset"}
    assert "queries_total 0" in client.get("/metrics").text

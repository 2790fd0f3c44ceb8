"""
Tests for the Celery ingestion worker.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from umoyo import worker
from umoyo.rag.ingestion import JobSummary

PAYLOAD = json.dumps(
    {
        "documents": [
            {
                "id": "who-malaria-2023",
                "title": "WHO Guidelines for Malaria",
                "source": "WHO",
                "category": "clinical-guideline",
                "local_path": "/data/who/malaria.pdf",
                "gcs_path": "gs://umoyo-health-pdfs/who/malaria.pdf",
            }
        ],
        "concurrency": 2,
    }
)


@pytest.fixture(autouse=True)
def clear_job_store():
    worker._job_store.clear()
    yield
    worker._job_store.clear()


@pytest.mark.unit
def test_parse_payload():
    documents, concurrency = worker.parse_payload(PAYLOAD)

    assert concurrency == 2
    assert [d.id for d in documents] == ["who-malaria-2023"]
    assert documents[0].category == "clinical-guideline"


@pytest.mark.unit
def test_parse_payload_defaults():
    documents, concurrency = worker.parse_payload("{}")
    assert documents == []
    assert concurrency == 1


@pytest.mark.unit
def test_ingest_task_returns_summary(mocker):
    summary = JobSummary(job_id="job-1", status="completed", total=1, processed=1, chunks_indexed=5)
    run = mocker.patch.object(worker, "run_ingestion_job", new=AsyncMock(return_value=summary))

    result = worker.ingest_documents.apply(args=[PAYLOAD], task_id="job-1").get()

    assert result["status"] == "completed"
    assert result["chunks_indexed"] == 5
    job_id, documents, concurrency = run.await_args.args
    assert job_id == "job-1"
    assert documents[0].id == "who-malaria-2023"
    assert concurrency == 2


@pytest.mark.unit
def test_ingest_task_records_failure(mocker):
    mocker.patch.object(
        worker, "run_ingestion_job", new=AsyncMock(side_effect=RuntimeError("db down"))
    )

    outcome = worker.ingest_documents.apply(args=[PAYLOAD], task_id="job-2")

    assert outcome.failed()
    assert worker.get_job_status("job-2") == {
        "job_id": "job-2",
        "status": "failed",
        "error": "db down",
    }


@pytest.mark.unit
@pytest.mark.asyncio
async def test_run_ingestion_job_tracks_progress_and_closes(mocker, ingestion):
    services = MagicMock()
    services.ingestion = ingestion
    services.close = AsyncMock()
    mocker.patch("umoyo.services.build_services", new=AsyncMock(return_value=services))

    summary = await worker.run_ingestion_job("job-3", [], concurrency=1)

    assert summary.status == "completed"
    assert worker._job_store["job-3"]["status"] == "completed"
    services.close.assert_awaited_once()


@pytest.mark.unit
def test_import_managed_documents(mocker):
    client = MagicMock()
    client.import_documents = AsyncMock(return_value={})
    mocker.patch.object(worker, "ManagedRetrievalClient", return_value=client)

    result = worker.import_managed_documents.apply(args=[PAYLOAD]).get()

    assert result == {"status": "submitted", "documents": 1}
    client.import_documents.assert_awaited_once_with(
        ["gs://umoyo-health-pdfs/who/malaria.pdf"]
    )


@pytest.mark.unit
def test_job_status_from_local_store():
    worker._job_store["job-4"] = {"job_id": "job-4", "status": "running", "processed": 2}
    assert worker.get_job_status("job-4")["processed"] == 2


@pytest.mark.unit
@pytest.mark.parametrize(
    "state,result,expected",
    [
        ("PENDING", None, {"status": "pending"}),
        ("STARTED", None, {"status": "processing"}),
        ("SUCCESS", {"status": "completed", "processed": 3}, {"status": "completed", "processed": 3}),
        ("FAILURE", RuntimeError("boom"), {"status": "failed", "error": "boom"}),
        ("RETRY", None, {"status": "retry"}),
    ],
)
def test_job_status_from_result_backend(mocker, state, result, expected):
    async_result = MagicMock()
    async_result.state = state
    async_result.result = result
    mocker.patch.object(worker.celery_app, "AsyncResult", return_value=async_result)

    assert worker.get_job_status("job-5") == {"job_id": "job-5", **expected}


@pytest.mark.unit
def test_job_status_backend_unreachable(mocker):
    mocker.patch.object(
        worker.celery_app, "AsyncResult", side_effect=ConnectionError("redis down")
    )
    assert worker.get_job_status("job-6") == {"job_id": "job-6", "status": "unknown"}

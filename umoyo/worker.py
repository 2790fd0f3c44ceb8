"""
Celery Worker for Umoyo

Background jobs for corpus maintenance:
- Batch ingestion into the custom vector corpus
- Import of Cloud Storage documents into the managed corpus
"""

import asyncio
import json
import logging
import os
import uuid

from celery import Celery

from umoyo.rag.ingestion import JobSummary, import_to_managed_corpus
from umoyo.rag.managed import ManagedRetrievalClient
from umoyo.rag.models import Document

logger = logging.getLogger(__name__)

# Initialize Celery app
celery_app = Celery(
    "umoyo",
    broker=os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/1"),
    backend=os.environ.get("CELERY_RESULT_BACKEND", "redis://localhost:6379/2"),
)

# Configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=1,
)

# In-memory job tracking for the current worker process
_job_store: dict[str, dict] = {}


def parse_payload(payload_json: str) -> tuple[list[Document], int]:
    """Decode an ingestion payload: {"documents": [...], "concurrency": n}."""
    payload = json.loads(payload_json)
    documents = [Document.model_validate(d) for d in payload.get("documents", [])]
    return documents, int(payload.get("concurrency", 1))


async def run_ingestion_job(
    job_id: str,
    documents: list[Document],
    concurrency: int = 1,
) -> JobSummary:
    """Build the services, ingest the batch and release connections."""
    from umoyo.services import build_services

    services = await build_services()
    try:
        return await services.ingestion.ingest_batch(
            documents,
            concurrency=concurrency,
            job_id=job_id,
            on_progress=lambda s: _job_store.__setitem__(job_id, s.to_dict()),
        )
    finally:
        await services.close()


@celery_app.task(bind=True, name="ingest_documents")
def ingest_documents(self, payload_json: str):  # type: ignore[no-untyped-def]
    """
    Ingest a batch of documents: extract, chunk, embed, store.

    Per-document failures are recorded in the returned summary; the task
    itself fails only if the job could not run at all.
    """
    job_id = self.request.id or str(uuid.uuid4())
    _job_store[job_id] = {"job_id": job_id, "status": "processing"}

    try:
        documents, concurrency = parse_payload(payload_json)
        summary = asyncio.run(run_ingestion_job(job_id, documents, concurrency))
    except Exception as e:
        logger.error("Ingestion job %s failed: %s", job_id, e)
        _job_store[job_id].update({"status": "failed", "error": str(e)})
        raise

    return summary.to_dict()


@celery_app.task(name="import_managed_documents")
def import_managed_documents(payload_json: str):  # type: ignore[no-untyped-def]
    """Submit the Cloud Storage copies of the given documents to the managed corpus."""
    documents, _ = parse_payload(payload_json)
    submitted = asyncio.run(
        import_to_managed_corpus(ManagedRetrievalClient(), documents)
    )
    return {"status": "submitted", "documents": submitted}


def get_job_status(job_id: str) -> dict:
    """Get the status of an ingestion job."""
    if job_id in _job_store:
        return {"job_id": job_id, **_job_store[job_id]}

    # Try Celery result backend
    try:
        result = celery_app.AsyncResult(job_id)
        if result.state == "PENDING":
            return {"job_id": job_id, "status": "pending"}
        elif result.state == "STARTED":
            return {"job_id": job_id, "status": "processing"}
        elif result.state == "SUCCESS":
            return {"job_id": job_id, **result.result}
        elif result.state == "FAILURE":
            return {"job_id": job_id, "status": "failed", "error": str(result.result)}
        return {"job_id": job_id, "status": result.state.lower()}
    except Exception as e:
        logger.warning("Job status lookup failed for %s: %s", job_id, e)
        return {"job_id": job_id, "status": "unknown"}


if __name__ == "__main__":
    celery_app.start()

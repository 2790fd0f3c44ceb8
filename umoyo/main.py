"""
Umoyo - FastAPI Application Entry Point

Hybrid retrieval-augmented medical question answering for Zambia.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from umoyo import __version__
from umoyo.security.input_validation import IngestRequest, QueryRequest
from umoyo.services import Services, build_services

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(services: Services | None = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        services: Pre-built services (tests). When omitted they are built
            during startup and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown events."""
        logger.info("Starting Umoyo API v%s", __version__)

        owned = services is None
        app.state.services = services or await build_services()

        generator = app.state.services.generator
        if await generator.health_check():
            logger.info("Answer generator is reachable")
        else:
            logger.warning("Answer generator is unreachable; custom RAG will fall back")

        yield

        logger.info("Shutting down Umoyo API")
        if owned:
            await app.state.services.close()

    app = FastAPI(
        title="Umoyo",
        description="Hybrid RAG medical question answering",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://localhost:8000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ============================================
    # Health Check Endpoints
    # ============================================

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": __version__,
            "service": "umoyo-api",
        }

    @app.get("/ready", tags=["Health"])
    async def readiness_check(request: Request) -> dict[str, Any]:
        """Readiness check with dependency status."""
        svc: Services = request.app.state.services

        retrieval = await svc.orchestrator.health_check()
        generator_ok = await svc.generator.health_check()
        try:
            metadata = await svc.store.get_metadata()
        except Exception as e:
            logger.warning("Corpus metadata lookup failed: %s", e)
            metadata = None

        ready = retrieval["managed"]["corpus_ready"] or (
            retrieval["custom"]["ready"] and generator_ok
        )
        return {
            "ready": ready,
            "checks": {
                "managed": retrieval["managed"],
                "custom": retrieval["custom"],
                "generator": "ok" if generator_ok else "unavailable",
                "corpus": metadata.model_dump() if metadata else None,
            },
        }

    # ============================================
    # API v1 Routes
    # ============================================

    @app.post("/api/v1/query", tags=["Query"])
    async def query_endpoint(body: QueryRequest, request: Request) -> dict[str, Any]:
        """
        Ask a medical question.

        Routes the question to the managed corpus, the custom corpus or both,
        falling back to the other strategy when the first one fails.
        """
        svc: Services = request.app.state.services
        result = await svc.orchestrator.hybrid_query(body.message, body.role)

        svc.metrics.record_query(
            latency_ms=result.processing_time_ms,
            strategy=result.strategy_used,
            fallback_used=result.fallback_used,
            answered=result.confidence > 0,
        )
        return result.to_dict()

    @app.get("/api/v1/corpus", tags=["Corpus"])
    async def corpus_endpoint(request: Request) -> dict[str, Any]:
        """Custom corpus metadata."""
        svc: Services = request.app.state.services
        metadata = await svc.store.get_metadata()
        if metadata is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Custom corpus has not been ingested yet",
            )
        return metadata.model_dump()

    @app.post("/api/v1/ingest", tags=["Corpus"], status_code=status.HTTP_202_ACCEPTED)
    async def ingest_endpoint(body: IngestRequest) -> dict[str, Any]:
        """Queue a batch ingestion job on the Celery worker."""
        from umoyo.worker import ingest_documents

        payload = json.dumps(
            {
                "documents": [d.model_dump() for d in body.documents],
                "concurrency": body.concurrency,
            }
        )
        task = ingest_documents.delay(payload)
        logger.info("Queued ingestion job %s (%d documents)", task.id, len(body.documents))
        return {"job_id": task.id, "status": "queued", "total": len(body.documents)}

    @app.get("/api/v1/jobs/{job_id}", tags=["Corpus"])
    async def job_status_endpoint(job_id: str) -> dict[str, Any]:
        """Status of an ingestion job."""
        from umoyo.worker import get_job_status

        return get_job_status(job_id)

    # ============================================
    # Metrics Endpoint
    # ============================================

    @app.get("/metrics", tags=["Monitoring"])
    async def metrics_endpoint(request: Request):
        """Prometheus metrics endpoint."""
        metrics = request.app.state.services.metrics
        return PlainTextResponse(content=metrics.get_metrics_text(), media_type="text/plain")

    @app.post("/metrics/reset", tags=["Monitoring"])
    async def reset_metrics_endpoint(request: Request):
        """Reset all metrics counters."""
        request.app.state.services.metrics.reset()
        return {"status": "metrics_reset"}

    # ============================================
    # Exception Handlers
    # ============================================

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors."""
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "detail": "An unexpected error occurred",
            },
        )

    return app


app = create_app()


# ============================================
# Main Entry Point
# ============================================


def main():
    """Run the application using uvicorn."""
    import uvicorn

    uvicorn.run(
        "umoyo.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )


if __name__ == "__main__":
    main()

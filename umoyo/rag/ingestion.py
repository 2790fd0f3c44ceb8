"""
Umoyo Ingestion Pipeline

Turns source documents into searchable vectors:

    extract text -> chunk -> embed -> upsert -> refresh corpus metadata

Documents are processed one at a time by default with a courtesy delay
between them. A failing document is recorded in the job summary and the
batch continues; an embedding failure after retries aborts only that
document. Chunk ids are content-addressed, so re-ingesting an unchanged
document rewrites the same records instead of adding new ones.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass, field
from pathlib import Path

from umoyo.exceptions import PipelineDocumentError
from umoyo.rag.chunker import FixedWindowChunker, PDFTextExtractor, is_text_sufficient
from umoyo.rag.embedding import EmbeddingGenerator
from umoyo.rag.managed import ManagedRetrievalClient
from umoyo.rag.models import Document, VectorChunk
from umoyo.rag.vector_store import VectorStore

logger = logging.getLogger(__name__)

# Pause between documents (external API courtesy)
DEFAULT_DOCUMENT_DELAY = 1.0

TEXT_SUFFIXES = {".txt", ".md"}


@dataclass
class JobSummary:
    """Outcome of one batch ingestion job."""

    job_id: str
    status: str = "pending"
    total: int = 0
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    chunks_indexed: int = 0
    errors: list[dict] = field(default_factory=list)
    started_at: float | None = None
    finished_at: float | None = None

    def to_dict(self) -> dict:
        return asdict(self)


ProgressCallback = Callable[[JobSummary], None]


class IngestionPipeline:
    """Extract, chunk, embed and store documents into the custom corpus."""

    def __init__(
        self,
        chunker: FixedWindowChunker,
        embedder: EmbeddingGenerator,
        store: VectorStore,
        extractor: PDFTextExtractor | None = None,
        document_delay: float = DEFAULT_DOCUMENT_DELAY,
    ) -> None:
        self.chunker = chunker
        self.embedder = embedder
        self.store = store
        self.extractor = extractor or PDFTextExtractor()
        self.document_delay = document_delay

    async def extract_text(self, source_path: str | Path) -> str:
        """Read text from a PDF (with OCR fallback) or a plain-text file."""
        path = Path(source_path)
        if path.suffix.lower() in TEXT_SUFFIXES:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        return await self.extractor.extract(path)

    async def ingest_text(self, document: Document, text: str) -> int:
        """
        Chunk, embed and store already-extracted text.

        Returns:
            Number of chunks indexed; 0 when the text was too short to index.
        """
        if not is_text_sufficient(text, self.extractor.min_length):
            logger.warning(
                "Skipping %s: insufficient content (%d characters)",
                document.id,
                len(text.strip()),
            )
            return 0

        chunks = self.chunker.prepare_chunks(document, text)
        embeddings = await self.embedder.embed_documents([c.content for c in chunks])
        vector_chunks = [
            VectorChunk.from_chunk(chunk, embedding)
            for chunk, embedding in zip(chunks, embeddings)
        ]

        written = await self.store.upsert_chunks(vector_chunks)

        # Chunk ids are positional, so only chunks past the new end are stale
        removed = await self.store.delete_document(
            document.id, from_index=len(vector_chunks)
        )
        if removed:
            logger.info("Removed %d stale chunks of %s", removed, document.id)

        await self.store.refresh_metadata()

        logger.info("Indexed %d chunks for %s (%s)", written, document.id, document.title)
        return written

    async def ingest_document(
        self,
        document: Document,
        source_path: str | Path | None = None,
    ) -> int:
        """
        Ingest a single document from disk.

        Args:
            document: Document being ingested.
            source_path: Local file to read; defaults to ``document.local_path``.

        Returns:
            Number of chunks indexed; 0 when the document was skipped for
            insufficient content.
        """
        path = source_path or document.local_path
        if not path:
            raise FileNotFoundError(f"No local file for document {document.id}")

        text = await self.extract_text(path)
        return await self.ingest_text(document, text)

    async def ingest_batch(
        self,
        documents: Sequence[Document],
        concurrency: int = 1,
        job_id: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> JobSummary:
        """
        Ingest many documents, recording per-document failures.

        With the default concurrency of 1 documents are processed strictly
        in order.
        """
        summary = JobSummary(
            job_id=job_id or str(uuid.uuid4()),
            status="running",
            total=len(documents),
            started_at=time.time(),
        )
        if on_progress:
            on_progress(summary)

        semaphore = asyncio.Semaphore(max(1, concurrency))
        last = len(documents) - 1

        async def run_one(position: int, document: Document) -> None:
            async with semaphore:
                try:
                    indexed = await self.ingest_document(document)
                except Exception as e:
                    error = PipelineDocumentError(document.id, e)
                    logger.error("%s", error)
                    summary.failed += 1
                    summary.errors.append(
                        {"document_id": document.id, "error": str(e)}
                    )
                else:
                    if indexed == 0:
                        summary.skipped += 1
                    else:
                        summary.processed += 1
                        summary.chunks_indexed += indexed

                if on_progress:
                    on_progress(summary)
                if position < last and self.document_delay > 0:
                    await asyncio.sleep(self.document_delay)

        await asyncio.gather(*(run_one(i, doc) for i, doc in enumerate(documents)))

        summary.status = "completed_with_errors" if summary.failed else "completed"
        summary.finished_at = time.time()
        if on_progress:
            on_progress(summary)

        logger.info(
            "Ingestion job %s finished: %d processed, %d skipped, %d failed, "
            "%d chunks",
            summary.job_id,
            summary.processed,
            summary.skipped,
            summary.failed,
            summary.chunks_indexed,
        )
        return summary


async def import_to_managed_corpus(
    client: ManagedRetrievalClient,
    documents: Sequence[Document],
    chunk_size: int | None = None,
    chunk_overlap: int | None = None,
) -> int:
    """Import the Cloud Storage copies of ``documents`` into the managed corpus.

    Documents without a ``gcs_path`` are left out. Returns the number of
    URIs submitted.
    """
    uris = [d.gcs_path for d in documents if d.gcs_path]
    if not uris:
        logger.warning("No documents with Cloud Storage paths to import")
        return 0

    kwargs = {}
    if chunk_size is not None:
        kwargs["chunk_size"] = chunk_size
    if chunk_overlap is not None:
        kwargs["chunk_overlap"] = chunk_overlap
    await client.import_documents(uris, **kwargs)
    return len(uris)

import uuid
from typing import Dict, Tuple

import dramatiq

from docvault.jobs import broker  # noqa: F401  registers the broker before actors
from docvault.ingest.extract import extract_text
from docvault.ingest.normalize import chunk_text, prepare_text
from docvault.jobs.status import set_job_status
from docvault.logging import get_logger, stage
from docvault.rag.llm import LLMClient
from docvault.rag.vectorstore import VectorStore
from docvault.storage import get_storage_client
from docvault.storage.base import StorageClient

logger = get_logger(__name__)


def build_services() -> Tuple[StorageClient, LLMClient, VectorStore]:
    return get_storage_client(), LLMClient(), VectorStore()


def run_index_pipeline(
    blob_path: str,
    storage: StorageClient,
    llm: LLMClient,
    vectors: VectorStore,
    job_id: str = "",
) -> Dict[str, object]:
    """
    Index one stored document into the vector store.

    Stages:
    1. download - fetch bytes and properties from blob storage
    2. extract - text types are decoded, everything else goes through markitdown
    3. normalize - strip page furniture, tidy whitespace
    4. chunk - overlapping word windows
    5. embed - one vector per chunk
    6. index - replace the document's previous vectors
    """
    with stage("download", job_id=job_id, blob_path=blob_path):
        record = storage.get_blob_info(blob_path)
        content = storage.download(blob_path)
        # documentId assigned at upload; unindexed legacy blobs get a stable id from the path
        doc_id = record.metadata.get("documentid") or str(uuid.uuid5(uuid.NAMESPACE_URL, blob_path))
        logger.info("blob_downloaded", extra={
            "job_id": job_id,
            "blob_path": blob_path,
            "size": len(content)
        })

    with stage("extract", doc_id=doc_id):
        raw_text = extract_text(content, blob_path, record.content_type)

    with stage("normalize", doc_id=doc_id):
        text = prepare_text(raw_text)

    with stage("chunk", doc_id=doc_id):
        chunks = chunk_text(text)

    with stage("embed", doc_id=doc_id, chunks=len(chunks)):
        embeddings = llm.embed(chunks) if chunks else []

    with stage("index", doc_id=doc_id):
        counts = vectors.replace_document_chunks(doc_id, blob_path, chunks, embeddings)

    return {"doc_id": doc_id, "counts": {"chunks": len(chunks), **counts}}


@dramatiq.actor(max_retries=2)
def index_document(job_id: str, blob_path: str):
    """Background wrapper around ``run_index_pipeline`` that records job status."""
    set_job_status(job_id, "processing", blob_path=blob_path)
    doc_id = None
    try:
        storage, llm, vectors = build_services()
        result = run_index_pipeline(blob_path, storage, llm, vectors, job_id=job_id)
        doc_id = result["doc_id"]
        set_job_status(job_id, "done", doc_id=doc_id, counts=result["counts"])
        logger.info("index_done", extra={
            "job_id": job_id,
            "doc_id": doc_id,
            "counts": result["counts"]
        })
    except Exception as e:
        set_job_status(job_id, "failed", doc_id=doc_id, error=str(e))
        logger.error("index_failed", extra={
            "job_id": job_id,
            "blob_path": blob_path,
            "error": str(e)
        })
        raise  # Re-raise for Dramatiq retry logic

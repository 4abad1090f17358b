"""API routes for the file manager, catalogue, RAG and health checks."""
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse

from docvault.api.deps import (
    get_archive_streamer,
    get_catalog,
    get_document_analyzer,
    get_file_operations,
    get_metadata_options,
    get_metadata_search,
    get_rag_service,
    get_storage,
)
from docvault.api.models import (
    AskRequest,
    BatchRequest,
    BatchResponse,
    DirectoryRequest,
    IndexRequest,
    IndexResponse,
    JobStatus,
    MoveRequest,
    OperationResponse,
    QueryRequest,
    RenameRequest,
    SearchRequest,
    UpdateMetadataRequest,
    UploadResponse,
    ZipRequest,
)
from docvault.analysis.document import DocumentAnalyzer
from docvault.catalog.compiler import MetadataCompiler
from docvault.catalog.options import MetadataOptionsStore
from docvault.errors import DocVaultError, NotFoundError
from docvault.files import paths
from docvault.files.archive import ArchiveStreamer
from docvault.files.operations import DOWNLOAD_URL_TTL_SECONDS, BatchResult, FileOperations, OperationResult
from docvault.ingest.metadata import parse_metadata
from docvault.jobs.status import get_job_status, set_job_status
from docvault.jobs.tasks import index_document
from docvault.logging import get_logger
from docvault.rag.qa import RAGService
from docvault.search.metadata_search import MetadataSearch, parse_filters
from docvault.storage.base import StorageClient

logger = get_logger(__name__)

# Create routers for different services
blob_router = APIRouter(prefix="/api/blob", tags=["blob"])
catalog_router = APIRouter(prefix="/api/catalog", tags=["catalog"])
rag_router = APIRouter(prefix="/api/rag", tags=["rag"])
metadata_router = APIRouter(prefix="/api/metadata", tags=["metadata"])
analysis_router = APIRouter(prefix="/api/document-analysis", tags=["analysis"])
health_router = APIRouter(prefix="/api/health", tags=["health"])

# forms must see edits to the options immediately
NO_STORE_HEADERS = {"Cache-Control": "no-store, no-cache, must-revalidate"}


def _json(model, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=model.model_dump(by_alias=True))


def _batch_response(batch: BatchResult, verb: str, done_message: Optional[str] = None) -> JSONResponse:
    if batch.errors:
        message = f"{verb} partially completed: {len(batch.succeeded)} succeeded, {len(batch.errors)} failed"
    else:
        message = done_message or f"{verb} completed successfully"
    body = BatchResponse(
        message=message,
        succeeded=batch.succeeded,
        success_count=len(batch.succeeded),
        errors=[e.to_dict() for e in batch.errors],
        items_copied=batch.items_copied,
        items_deleted=batch.items_deleted,
        warnings=batch.warnings,
    )
    return _json(body, 207 if batch.is_partial else 200)


def _single_as_batch(result: OperationResult, source: str, verb: str) -> JSONResponse:
    """A single move/copy answers in the batch shape so clients handle both alike."""
    batch = BatchResult(
        succeeded=[] if result.errors else [source],
        errors=list(result.errors),
        items_copied=result.items_copied,
        items_deleted=result.items_deleted,
        warnings=result.warnings,
    )
    return _batch_response(batch, verb, done_message=result.message or None)


# File manager endpoints
@blob_router.get("/test-connection")
def test_connection(storage: StorageClient = Depends(get_storage)):
    storage.ping()
    return {"message": "Connected to storage", "container": getattr(storage, "container_name", None)}


@blob_router.get("/list")
def list_directory(path: str = "", ops: FileOperations = Depends(get_file_operations)):
    return ops.list_directory(path)


@blob_router.post("/upload")
def upload(
    file: UploadFile = File(...),
    metadata: Optional[str] = Form(None),
    target_path: Optional[str] = Form(None, alias="targetPath"),
    ops: FileOperations = Depends(get_file_operations),
):
    """
    Upload a file with structured metadata.

    ``metadata`` is a JSON string; ``targetPath`` defaults to the uploaded
    file name at the container root.
    """
    parsed = parse_metadata(metadata)
    content = file.file.read()
    result = ops.upload(
        content,
        target_path or file.filename or "",
        metadata=parsed,
        content_type=file.content_type,
        original_filename=file.filename,
    )
    body = UploadResponse(
        message=result.message,
        file_path=result.path,
        document_id=result.document_id,
        warnings=result.warnings,
    )
    return _json(body, 201)


@blob_router.post("/directory")
def create_directory(request: DirectoryRequest, ops: FileOperations = Depends(get_file_operations)):
    result = ops.create_directory(request.path)
    return _json(OperationResponse(message=result.message, path=result.path), 201 if result.created else 200)


@blob_router.delete("/delete")
def delete(path: str = Query(...), ops: FileOperations = Depends(get_file_operations)):
    result = ops.delete(path)
    body = OperationResponse(
        message=result.message,
        path=result.path,
        items_deleted=result.items_deleted,
        errors=[e.to_dict() for e in result.errors],
        warnings=result.warnings,
    )
    return _json(body, 207 if result.errors else 200)


@blob_router.get("/download-url")
def download_url(path: str = Query(...), ops: FileOperations = Depends(get_file_operations)):
    return {"url": ops.download_url(path), "expiresIn": DOWNLOAD_URL_TTL_SECONDS}


@blob_router.post("/download-zip")
def download_zip(request: ZipRequest, streamer: ArchiveStreamer = Depends(get_archive_streamer)):
    filename, body = streamer.open(request.paths)
    logger.info("zip_download_started", extra={"paths": len(request.paths), "archive": filename})
    return StreamingResponse(
        body,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@blob_router.post("/move")
def move(request: MoveRequest, ops: FileOperations = Depends(get_file_operations)):
    result = ops.move(request.source_path, request.destination_folder_path)
    return _single_as_batch(result, request.source_path, "Move")


@blob_router.post("/move-batch")
def move_batch(request: BatchRequest, ops: FileOperations = Depends(get_file_operations)):
    return _batch_response(ops.move_batch(request.source_paths, request.destination_folder_path), "Move")


@blob_router.post("/copy")
def copy(request: MoveRequest, ops: FileOperations = Depends(get_file_operations)):
    result = ops.copy(request.source_path, request.destination_folder_path)
    return _single_as_batch(result, request.source_path, "Copy")


@blob_router.post("/copy-batch")
def copy_batch(request: BatchRequest, ops: FileOperations = Depends(get_file_operations)):
    return _batch_response(ops.copy_batch(request.source_paths, request.destination_folder_path), "Copy")


@blob_router.post("/rename")
def rename(request: RenameRequest, ops: FileOperations = Depends(get_file_operations)):
    result = ops.rename(request.original_path, request.new_path)
    body = OperationResponse(
        message=result.message,
        path=result.path,
        items_copied=result.items_copied,
        items_deleted=result.items_deleted,
        errors=[e.to_dict() for e in result.errors],
        warnings=result.warnings,
    )
    return _json(body, 207 if result.errors else 200)


@blob_router.get("/properties")
def properties(path: str = Query(...), ops: FileOperations = Depends(get_file_operations)):
    return ops.get_properties(path)


@blob_router.get("/metadata")
def index_document_for(path: str = "", ops: FileOperations = Depends(get_file_operations)):
    return ops.get_index_document(path)


@blob_router.put("/update-metadata")
def update_metadata(request: UpdateMetadataRequest, ops: FileOperations = Depends(get_file_operations)):
    result = ops.update_metadata(request.blob_path, parse_metadata(request.metadata))
    return {
        "message": result.message,
        "blobPath": result.path,
        "documentId": result.document_id,
        "warnings": result.warnings,
    }


@blob_router.post("/search")
def search(request: SearchRequest, searcher: MetadataSearch = Depends(get_metadata_search)):
    filters = parse_filters(tag.model_dump() for tag in request.tags)
    return searcher.search(
        filters,
        current_path=request.current_path,
        deep=request.deep_search,
        logic=request.filter_logic,
    )


# Catalogue endpoints
@catalog_router.get("/compile")
def compile_catalog(refresh: bool = False, catalog: MetadataCompiler = Depends(get_catalog)):
    return catalog.compile(force=refresh)


@catalog_router.get("/context")
def catalog_context(catalog: MetadataCompiler = Depends(get_catalog)):
    return {"context": catalog.metadata_context()}


@catalog_router.get("/document-url/{document_id}")
def document_url(
    document_id: str,
    catalog: MetadataCompiler = Depends(get_catalog),
    storage: StorageClient = Depends(get_storage),
):
    blob_path = catalog.find_document_path(document_id)
    if not blob_path:
        raise NotFoundError(f"Document {document_id} not found", error="NotFound")
    return {
        "documentId": document_id,
        "path": blob_path,
        "url": storage.generate_read_url(blob_path, DOWNLOAD_URL_TTL_SECONDS),
    }


# Metadata options endpoints
@metadata_router.get("/options")
def metadata_options(store: MetadataOptionsStore = Depends(get_metadata_options)):
    return JSONResponse(content=store.load(), headers=NO_STORE_HEADERS)


@metadata_router.post("/options")
def save_metadata_options(
    options: Dict[str, Any] = Body(...),
    no_backup: bool = Query(False, alias="noBackup"),
    store: MetadataOptionsStore = Depends(get_metadata_options),
):
    store.save(options, backup=not no_backup)
    return {"message": "Metadata options saved successfully"}


# Document analysis endpoints
@analysis_router.post("/analyze")
def analyze_document(file: UploadFile = File(...), analyzer: DocumentAnalyzer = Depends(get_document_analyzer)):
    """Suggest a description, keywords and language for a file before it is filed."""
    content = file.file.read()
    return analyzer.analyze(content, file.filename or "upload", file.content_type)


# RAG endpoints
@rag_router.post("/query")
def rag_query(request: QueryRequest, service: RAGService = Depends(get_rag_service)):
    matches = service.query(request.query_text, top_k=request.top_k)
    return {"matches": matches, "totalResults": len(matches)}


@rag_router.post("/ask")
def rag_ask(request: AskRequest, service: RAGService = Depends(get_rag_service)):
    try:
        return service.ask(request.question, top_k=request.top_k)
    except NotFoundError as e:
        # clients render the fallback answer as-is
        return JSONResponse(status_code=404, content={"message": e.message, **(e.details or {})})


@rag_router.post("/index", response_model=IndexResponse)
def rag_index(request: IndexRequest, storage: StorageClient = Depends(get_storage)):
    """
    Queue a stored document for vector indexing.

    Returns a job_id to track the async processing status.
    """
    blob_path = paths.validate(request.blob_path)
    storage.get_blob_info(blob_path)

    job_id = str(uuid.uuid4())
    set_job_status(job_id, "pending", blob_path=blob_path)
    index_document.send(job_id=job_id, blob_path=blob_path)

    logger.info("index_job_queued", extra={"job_id": job_id, "blob_path": blob_path})
    return IndexResponse(job_id=job_id, status="pending", message=f"Job {job_id} queued for processing")


@rag_router.get("/index/{job_id}", response_model=JobStatus)
def rag_index_status(job_id: str):
    """Returns job status, counts, and any error information."""
    status = get_job_status(job_id)
    if not status:
        raise NotFoundError(f"Job {job_id} not found", error="NotFound")
    return status


# Health endpoints
@health_router.get("/ready")
def ready_check(storage: StorageClient = Depends(get_storage)):
    """Check if service is ready to handle requests."""
    try:
        storage.ping()
    except DocVaultError as e:
        return JSONResponse(status_code=503, content={"status": "unavailable", "error": e.message})
    return {"status": "ready"}


@health_router.get("/live")
def liveness_check():
    """Simple liveness check."""
    return {"status": "alive"}

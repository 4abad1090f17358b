"""Shared service instances, resolved through FastAPI ``Depends`` so tests can override them."""
from functools import lru_cache

from fastapi import Depends

from docvault.analysis.document import DocumentAnalyzer
from docvault.analysis.language import LanguageClient
from docvault.catalog.compiler import MetadataCompiler
from docvault.catalog.options import MetadataOptionsStore
from docvault.files.archive import ArchiveStreamer
from docvault.files.operations import FileOperations
from docvault.rag.llm import LLMClient
from docvault.rag.qa import RAGService
from docvault.rag.vectorstore import VectorStore
from docvault.search.metadata_search import MetadataSearch
from docvault.storage import get_storage_client
from docvault.storage.base import StorageClient


@lru_cache
def get_storage() -> StorageClient:
    return get_storage_client()


@lru_cache
def get_vector_store() -> VectorStore:
    return VectorStore()


@lru_cache
def get_llm() -> LLMClient:
    return LLMClient()


# keyed by storage instance so the catalogue's TTL cache outlives a request
@lru_cache
def get_catalog(storage: StorageClient = Depends(get_storage)) -> MetadataCompiler:
    return MetadataCompiler(storage)


def get_file_operations(storage: StorageClient = Depends(get_storage)) -> FileOperations:
    return FileOperations(storage)


def get_archive_streamer(operations: FileOperations = Depends(get_file_operations)) -> ArchiveStreamer:
    return ArchiveStreamer(operations)


def get_metadata_search(storage: StorageClient = Depends(get_storage)) -> MetadataSearch:
    return MetadataSearch(storage)


def get_rag_service(
    llm: LLMClient = Depends(get_llm),
    vectors: VectorStore = Depends(get_vector_store),
    storage: StorageClient = Depends(get_storage),
) -> RAGService:
    return RAGService(llm, vectors, storage)


@lru_cache
def get_language_client() -> LanguageClient:
    return LanguageClient()


def get_document_analyzer(language: LanguageClient = Depends(get_language_client)) -> DocumentAnalyzer:
    return DocumentAnalyzer(language)


def get_metadata_options(storage: StorageClient = Depends(get_storage)) -> MetadataOptionsStore:
    return MetadataOptionsStore(storage)

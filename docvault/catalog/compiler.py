"""Compiled catalogue of every directory index, behind a TTL cache."""
import os
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from docvault.errors import DocVaultError
from docvault.files import paths
from docvault.index.directory_index import DirectoryIndexDocument
from docvault.logging import get_logger, stage
from docvault.storage.base import StorageClient

logger = get_logger(__name__)

CATALOG_CACHE_TTL_SECONDS = float(os.getenv("CATALOG_CACHE_TTL_SECONDS", "3600"))

T = TypeVar("T")


class TTLCache(Generic[T]):
    """Holds one computed value until it is older than ``ttl_seconds``.

    ``clock`` is any zero-argument callable returning seconds; tests pass a
    fake one to control staleness.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._value: Optional[T] = None
        self._computed_at: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def compiled_at(self) -> Optional[float]:
        return self._computed_at

    def is_fresh(self) -> bool:
        return self._computed_at is not None and self.clock() - self._computed_at < self.ttl_seconds

    def get_or_compute(self, compute: Callable[[], T], force: bool = False) -> T:
        with self._lock:
            if not force and self.is_fresh():
                return self._value
            value = compute()
            self._value = value
            self._computed_at = self.clock()
            return value

    def invalidate(self) -> None:
        with self._lock:
            self._value = None
            self._computed_at = None


def _first(*values: Any, default: str = "Unknown") -> Any:
    for value in values:
        if value not in (None, "", [], {}):
            return value
    return default


def _as_list(value: Any) -> list:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(v) for v in value] if isinstance(value, list) else []


class MetadataCompiler:
    """Reads every ``metadata.json`` and indexes the documents they describe."""

    def __init__(self, storage: StorageClient, cache: Optional[TTLCache] = None):
        self.storage = storage
        self.cache = cache or TTLCache(CATALOG_CACHE_TTL_SECONDS)

    def compile(self, force: bool = False) -> Dict[str, Any]:
        return self.cache.get_or_compute(self._compile, force=force)

    def _compile(self) -> Dict[str, Any]:
        catalog: Dict[str, Any] = {
            "documentIndex": {},
            "collectionIndex": {},
            "topicIndex": {},
            "compilationTime": datetime.now(timezone.utc).isoformat(),
        }
        with stage("catalog_compile"):
            index_files = [r.path for r in self.storage.iter_blobs("") if paths.is_index_file(r.path)]
            for index_file in index_files:
                try:
                    document = DirectoryIndexDocument.from_bytes(self.storage.download(index_file))
                except (DocVaultError, ValueError, UnicodeDecodeError) as e:
                    logger.warning("catalog_index_skipped", extra={"blob_path": index_file, "error": str(e)})
                    continue
                directory = paths.parent(index_file)
                for name, entry in document.files.items():
                    self._add(catalog, directory, name, entry if isinstance(entry, dict) else {})

        logger.info("catalog_compiled", extra={
            "index_files": len(index_files),
            "documents": len(catalog["documentIndex"])
        })
        return catalog

    @staticmethod
    def _add(catalog: Dict[str, Any], directory: str, name: str, entry: Dict[str, Any]) -> None:
        structured = entry.get("structuredPath") if isinstance(entry.get("structuredPath"), dict) else {}
        item = structured.get("item") if isinstance(structured.get("item"), dict) else {}
        thematic = structured.get("thematicFocus") if isinstance(structured.get("thematicFocus"), dict) else {}
        documents = catalog["documentIndex"]

        document_id = _first(entry.get("documentId"), entry.get("documentid"), default=f"doc-{len(documents) + 1}")
        record = {
            "documentId": document_id,
            "name": name,
            "path": paths.join(directory, name),
            "collection": str(_first(structured.get("collection"), entry.get("collection"))),
            "documentType": _first(entry.get("documentType"), structured.get("documentFunction")),
            "country": _first(entry.get("country")),
            "jurisdiction": _first(entry.get("jurisdiction")),
            "language": _first(entry.get("language"), default="en"),
            "fileType": _first(item.get("fileType"), entry.get("fileType"), paths.split_ext(name)[1].lstrip(".")),
            "accessLevel": _first(entry.get("accessLevel"), default="public"),
            "tags": _as_list(entry.get("tags")),
            "topics": _as_list(entry.get("topics")),
        }
        documents[document_id] = record

        catalog["collectionIndex"].setdefault(record["collection"], []).append(document_id)
        topics = record["topics"] or [str(_first(thematic.get("primary")))]
        for topic in topics:
            catalog["topicIndex"].setdefault(topic, []).append(document_id)

    def metadata_context(self) -> str:
        """Compact text summary of the catalogue for an LLM prompt."""
        catalog = self.compile()
        lines = [
            "Document collection metadata:",
            "",
            f"COLLECTIONS: {', '.join(sorted(catalog['collectionIndex']))}",
            f"TOPICS: {', '.join(sorted(catalog['topicIndex']))}",
            "",
            "DOCUMENTS:",
        ]
        for document_id, doc in catalog["documentIndex"].items():
            lines.append(
                f"- {document_id}: {doc['name']} | collection={doc['collection']} | "
                f"type={doc['documentType']} | jurisdiction={doc['jurisdiction']} ({doc['country']}) | "
                f"language={doc['language']}"
            )
        return "\n".join(lines)

    def find_document_path(self, document_id: str) -> Optional[str]:
        """Path of the blob carrying ``document_id``, via the catalogue first and
        then blob metadata for documents that were never indexed."""
        record = self.compile()["documentIndex"].get(document_id)
        if record:
            return record["path"]
        for blob in self.storage.iter_blobs(""):
            if blob.metadata.get("documentid") == document_id:
                return blob.path
        return None


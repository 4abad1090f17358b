"""In-process storage client.

Behaves like a blob container (flat names, prefix listing, ETags, metadata)
but keeps everything in a dict. Selected with ``STORAGE_TYPE=memory`` for
local development, and used by the test suite.
"""
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional, Tuple

from docvault.errors import NotFoundError, PreconditionFailedError
from docvault.logging import get_logger
from docvault.storage.base import (
    DEFAULT_CONTENT_TYPE,
    BlobPrefix,
    BlobRecord,
    ListPage,
    StorageClient,
)

logger = get_logger(__name__)


class InMemoryStorageClient(StorageClient):
    """Storage client backed by a thread-safe dict."""

    def __init__(self, container_name: str = "documents"):
        self.container_name = container_name
        self._blobs: Dict[str, Tuple[bytes, BlobRecord]] = {}
        self._lock = threading.RLock()

    def _get(self, blob_path: str) -> Tuple[bytes, BlobRecord]:
        try:
            return self._blobs[blob_path]
        except KeyError:
            raise NotFoundError(f"Blob not found: {blob_path}", error="BlobNotFound") from None

    @staticmethod
    def _snapshot(record: BlobRecord) -> BlobRecord:
        return BlobRecord(
            path=record.path,
            size=record.size,
            content_type=record.content_type,
            last_modified=record.last_modified,
            etag=record.etag,
            metadata=dict(record.metadata),
        )

    def list_page(
        self,
        prefix: str = "",
        hierarchical: bool = False,
        continuation_token: Optional[str] = None,
        page_size: int = 1000,
        include_metadata: bool = True,
    ) -> ListPage:
        with self._lock:
            names = sorted(name for name in self._blobs if name.startswith(prefix))
            entries = []
            seen_prefixes = set()
            for name in names:
                rest = name[len(prefix):]
                if hierarchical and "/" in rest:
                    sub = prefix + rest.split("/", 1)[0]
                    if sub not in seen_prefixes:
                        seen_prefixes.add(sub)
                        entries.append(BlobPrefix(path=sub))
                    continue
                record = self._snapshot(self._blobs[name][1])
                if not include_metadata:
                    record.metadata = {}
                entries.append(record)

        start = int(continuation_token or 0)
        end = start + page_size
        token = str(end) if end < len(entries) else None
        return ListPage(items=entries[start:end], continuation_token=token)

    def download_with_etag(self, blob_path: str) -> Tuple[bytes, Optional[str]]:
        with self._lock:
            content, record = self._get(blob_path)
            return content, record.etag

    def open_stream(self, blob_path: str, chunk_size: int = 4 * 1024 * 1024) -> Iterator[bytes]:
        content, _ = self.download_with_etag(blob_path)
        return (content[i:i + chunk_size] for i in range(0, len(content), chunk_size))

    def upload(
        self,
        blob_path: str,
        content: bytes,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        etag: Optional[str] = None,
        create_only: bool = False,
    ) -> BlobRecord:
        with self._lock:
            existing = self._blobs.get(blob_path)
            if create_only and existing is not None:
                raise PreconditionFailedError(f"Blob already exists: {blob_path}", error="BlobAlreadyExists")
            if etag and (existing is None or existing[1].etag != etag):
                raise PreconditionFailedError(f"Precondition failed for {blob_path}", error="ConditionNotMet")

            record = BlobRecord(
                path=blob_path,
                size=len(content),
                content_type=content_type or DEFAULT_CONTENT_TYPE,
                last_modified=datetime.now(timezone.utc),
                etag=f'"{uuid.uuid4().hex}"',
                metadata=metadata or {},
            )
            self._blobs[blob_path] = (bytes(content), record)
            return self._snapshot(record)

    def get_blob_info(self, blob_path: str) -> BlobRecord:
        with self._lock:
            return self._snapshot(self._get(blob_path)[1])

    def set_metadata(
        self,
        blob_path: str,
        metadata: Dict[str, str],
        content_type: Optional[str] = None,
    ) -> None:
        with self._lock:
            content, record = self._get(blob_path)
            updated = self._snapshot(record)
            updated.metadata = {str(k).lower(): str(v) for k, v in metadata.items()}
            if content_type:
                updated.content_type = content_type
            updated.etag = f'"{uuid.uuid4().hex}"'
            self._blobs[blob_path] = (content, updated)

    def delete(self, blob_path: str, etag: Optional[str] = None, missing_ok: bool = False) -> bool:
        with self._lock:
            existing = self._blobs.get(blob_path)
            if existing is None:
                if etag:
                    raise PreconditionFailedError(f"Blob changed concurrently: {blob_path}", error="ConditionNotMet")
                if missing_ok:
                    return False
                raise NotFoundError(f"Blob not found: {blob_path}", error="BlobNotFound")
            if etag and existing[1].etag != etag:
                raise PreconditionFailedError(f"Precondition failed for {blob_path}", error="ConditionNotMet")
            del self._blobs[blob_path]
            return True

    def copy(self, source_path: str, destination_path: str) -> None:
        with self._lock:
            content, record = self._get(source_path)
            self.upload(destination_path, content, record.content_type, record.metadata)

    def generate_read_url(self, blob_path: str, ttl_seconds: int = 3600) -> str:
        self.get_blob_info(blob_path)
        expires = int(datetime.now(timezone.utc).timestamp()) + ttl_seconds
        return f"memory://{self.container_name}/{blob_path}?se={expires}"

    def ping(self) -> None:
        return None

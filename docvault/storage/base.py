"""Base storage client abstract class.

IMPORTANT: Blob Metadata vs Document Metadata
=============================================

1. Blob Metadata (provider-level)
   - Flat string -> string map attached to each blob in Azure/S3
   - Keys are lower case, arrays are comma-joined
   - Examples: documentid, documenttype, tags, isdirectoryplaceholder
   - Always normalised to lower-case keys when read back

2. Document Metadata (application-level)
   - Rich JSON object kept in the per-directory ``metadata.json`` index
   - Owned by ``docvault.index``, NOT by the storage layer

The storage layer is agnostic to business logic: it knows nothing about
directories beyond prefixes, and nothing about the index documents.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple, Union
import posixpath

from docvault.errors import NotFoundError
from docvault.logging import get_logger

logger = get_logger(__name__)

PLACEHOLDER_METADATA_KEY = "isdirectoryplaceholder"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class BlobRecord:
    path: str
    size: int = 0
    content_type: str = DEFAULT_CONTENT_TYPE
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        self.metadata = {str(k).lower(): str(v) for k, v in (self.metadata or {}).items()}

    @property
    def name(self) -> str:
        return posixpath.basename(self.path.rstrip("/"))

    @property
    def is_directory_placeholder(self) -> bool:
        return (
            self.path.endswith("/")
            or self.metadata.get(PLACEHOLDER_METADATA_KEY, "").lower() == "true"
        )


@dataclass
class BlobPrefix:
    """A one-level "sub-directory" returned by hierarchical listing."""
    path: str  # without the trailing slash

    @property
    def name(self) -> str:
        return posixpath.basename(self.path)


@dataclass
class ListPage:
    items: List[Union[BlobRecord, BlobPrefix]]
    continuation_token: Optional[str] = None


class StorageClient(ABC):
    """Abstract base class for storage clients - pure storage operations only.

    Every method raises the ``docvault.errors`` types: ``NotFoundError`` when
    the blob is absent, ``PreconditionFailedError`` when an ETag/create-only
    condition fails, and ``UpstreamError`` for anything else the provider
    reports.
    """

    container_name: str = ""

    @abstractmethod
    def list_page(
        self,
        prefix: str = "",
        hierarchical: bool = False,
        continuation_token: Optional[str] = None,
        page_size: int = 1000,
        include_metadata: bool = True,
    ) -> ListPage:
        """
        List one page of blobs under ``prefix``.

        Args:
            prefix: Raw name prefix (callers add the trailing "/" for directories)
            hierarchical: Only immediate children, with sub-prefixes as BlobPrefix
            continuation_token: Opaque token from the previous page
            page_size: Maximum items in this page
            include_metadata: Fill BlobRecord.metadata

        Returns:
            ListPage whose continuation_token is None on the last page
        """

    @abstractmethod
    def download_with_etag(self, blob_path: str) -> Tuple[bytes, Optional[str]]:
        """Download blob content together with the ETag it was read at."""

    @abstractmethod
    def open_stream(self, blob_path: str, chunk_size: int = 4 * 1024 * 1024) -> Iterator[bytes]:
        """
        Start a download and return an iterator of bounded chunks.

        The initial request is made before returning, so a missing or
        unreadable blob raises here rather than half-way through iteration.
        """

    @abstractmethod
    def upload(
        self,
        blob_path: str,
        content: bytes,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        etag: Optional[str] = None,
        create_only: bool = False,
    ) -> BlobRecord:
        """
        Upload (overwrite) a blob.

        Args:
            etag: Only write if the blob still has this ETag
            create_only: Only write if the blob does not exist yet

        Raises:
            PreconditionFailedError: If either condition is not met
        """

    @abstractmethod
    def get_blob_info(self, blob_path: str) -> BlobRecord:
        """Get properties and metadata of a blob."""

    @abstractmethod
    def set_metadata(
        self,
        blob_path: str,
        metadata: Dict[str, str],
        content_type: Optional[str] = None,
    ) -> None:
        """
        Replace blob metadata. The content type is preserved unless
        ``content_type`` is given explicitly.
        """

    @abstractmethod
    def delete(self, blob_path: str, etag: Optional[str] = None, missing_ok: bool = False) -> bool:
        """
        Delete a blob.

        Returns:
            True if deleted, False if it was already gone and missing_ok is set
        """

    @abstractmethod
    def copy(self, source_path: str, destination_path: str) -> None:
        """
        Server-side copy. Metadata is NOT guaranteed to be carried over;
        callers re-apply it with set_metadata.
        """

    @abstractmethod
    def generate_read_url(self, blob_path: str, ttl_seconds: int = 3600) -> str:
        """Time-limited, read-only URL for a blob."""

    @abstractmethod
    def ping(self) -> None:
        """Raise if the container cannot be reached."""

    # -- helpers built on the primitives above --

    def download(self, blob_path: str) -> bytes:
        content, _ = self.download_with_etag(blob_path)
        return content

    def exists(self, blob_path: str) -> bool:
        try:
            self.get_blob_info(blob_path)
            return True
        except NotFoundError:
            return False

    def iter_blobs(self, prefix: str = "", page_size: int = 1000) -> Iterator[BlobRecord]:
        """Flat, recursive listing across all pages."""
        token = None
        while True:
            page = self.list_page(prefix, hierarchical=False, continuation_token=token, page_size=page_size)
            for item in page.items:
                if isinstance(item, BlobRecord):
                    yield item
            token = page.continuation_token
            if not token:
                break

    def walk(self, prefix: str = "", page_size: int = 1000) -> Iterator[Union[BlobRecord, BlobPrefix]]:
        """Immediate children of ``prefix`` across all pages."""
        token = None
        while True:
            page = self.list_page(prefix, hierarchical=True, continuation_token=token, page_size=page_size)
            yield from page.items
            token = page.continuation_token
            if not token:
                break

    def has_children(self, prefix: str) -> bool:
        page = self.list_page(prefix, hierarchical=False, page_size=1, include_metadata=False)
        return bool(page.items)

"""Azure Blob Storage client implementation."""
import os
import time
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterator, Optional, Tuple

from azure.core import MatchConditions
from azure.core.exceptions import (
    AzureError,
    ResourceExistsError,
    ResourceModifiedError,
    ResourceNotFoundError,
)
from azure.storage.blob import (
    BlobPrefix as AzureBlobPrefix,
    BlobSasPermissions,
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
)

from docvault.errors import ConflictError, NotFoundError, PreconditionFailedError, UpstreamError
from docvault.logging import get_logger
from docvault.storage.base import (
    DEFAULT_CONTENT_TYPE,
    BlobPrefix,
    BlobRecord,
    ListPage,
    StorageClient,
)

logger = get_logger(__name__)

COPY_POLL_INTERVAL = 0.2
COPY_TIMEOUT_SECONDS = 300


@contextmanager
def _translate_errors(operation: str, blob_path: str, conditional: bool = False):
    """Map azure-core exceptions onto the docvault error taxonomy."""
    try:
        yield
    except ResourceNotFoundError as e:
        if conditional:
            # the guarded blob vanished between read and write
            raise PreconditionFailedError(
                f"Blob changed concurrently: {blob_path}", error=_code(e)
            ) from e
        raise NotFoundError(f"Blob not found: {blob_path}", error=_code(e)) from e
    except ResourceModifiedError as e:
        raise PreconditionFailedError(
            f"Precondition failed for {blob_path}", error=_code(e)
        ) from e
    except ResourceExistsError as e:
        if conditional:
            raise PreconditionFailedError(
                f"Precondition failed for {blob_path}", error=_code(e)
            ) from e
        raise ConflictError(
            f"Azure storage {operation} conflicted for {blob_path or '<container>'}", error=_code(e)
        ) from e
    except AzureError as e:
        logger.error(f"{operation}_failed", extra={
            "blob_path": blob_path,
            "error": str(e),
        })
        raise UpstreamError(
            f"Azure storage {operation} failed for {blob_path or '<container>'}",
            error=_code(e),
            details=str(e),
        ) from e


def _code(error: AzureError) -> Optional[str]:
    code = getattr(error, "error_code", None)
    return str(code) if code else type(error).__name__


class AzureBlobClient(StorageClient):
    """Storage client for Azure Blob Storage."""

    def __init__(
        self,
        connection_string: Optional[str] = None,
        container_name: Optional[str] = None,
        account_url: Optional[str] = None,
        credential: Optional[str] = None
    ):
        """
        Initialize Azure Blob Storage client.

        Args:
            connection_string: Azure Storage connection string
            container_name: Container holding the document tree
            account_url: Alternative to connection string (requires credential)
            credential: Azure credential (SAS token, key, or DefaultAzureCredential)
        """
        self.connection_string = connection_string or os.getenv("AZURE_STORAGE_CONNECTION_STRING")
        self.container_name = container_name or os.getenv("AZURE_STORAGE_CONTAINER_NAME", "documents")

        if self.connection_string:
            self.blob_service_client = BlobServiceClient.from_connection_string(
                self.connection_string
            )
        elif account_url and credential:
            self.blob_service_client = BlobServiceClient(
                account_url=account_url,
                credential=credential
            )
        else:
            raise ValueError("Either connection_string or (account_url + credential) required")

        self.container_client = self.blob_service_client.get_container_client(
            self.container_name
        )

        self._ensure_container()

        logger.info("azure_client_initialized", extra={
            "container": self.container_name
        })

    def _ensure_container(self):
        """Create container if it doesn't exist."""
        try:
            self.container_client.get_container_properties()
        except ResourceNotFoundError:
            self.container_client.create_container()
            logger.info("container_created", extra={"container": self.container_name})

    def _record(self, props) -> BlobRecord:
        settings = getattr(props, "content_settings", None)
        return BlobRecord(
            path=props.name,
            size=props.size or 0,
            content_type=(settings.content_type if settings and settings.content_type else DEFAULT_CONTENT_TYPE),
            last_modified=props.last_modified,
            etag=props.etag,
            metadata=props.metadata or {},
        )

    def list_page(
        self,
        prefix: str = "",
        hierarchical: bool = False,
        continuation_token: Optional[str] = None,
        page_size: int = 1000,
        include_metadata: bool = True,
    ) -> ListPage:
        include = ["metadata"] if include_metadata else None
        with _translate_errors("list", prefix):
            if hierarchical:
                paged = self.container_client.walk_blobs(
                    name_starts_with=prefix or None,
                    include=include,
                    delimiter="/",
                    results_per_page=page_size,
                )
            else:
                paged = self.container_client.list_blobs(
                    name_starts_with=prefix or None,
                    include=include,
                    results_per_page=page_size,
                )
            pager = paged.by_page(continuation_token=continuation_token)
            items = []
            for item in next(pager, []):
                if isinstance(item, AzureBlobPrefix):
                    items.append(BlobPrefix(path=item.name.rstrip("/")))
                else:
                    items.append(self._record(item))
            next_token = pager.continuation_token or None

        logger.debug("blobs_listed", extra={
            "prefix": prefix,
            "hierarchical": hierarchical,
            "count": len(items)
        })
        return ListPage(items=items, continuation_token=next_token)

    def download_with_etag(self, blob_path: str) -> Tuple[bytes, Optional[str]]:
        with _translate_errors("download", blob_path):
            downloader = self.container_client.get_blob_client(blob_path).download_blob()
            content = downloader.readall()
            etag = downloader.properties.etag

        logger.info("blob_downloaded", extra={
            "blob_path": blob_path,
            "size": len(content)
        })
        return content, etag

    def open_stream(self, blob_path: str, chunk_size: int = 4 * 1024 * 1024) -> Iterator[bytes]:
        with _translate_errors("download", blob_path):
            downloader = self.container_client.get_blob_client(blob_path).download_blob(
                max_concurrency=1
            )
        return self._iter_chunks(downloader, blob_path, chunk_size)

    def _iter_chunks(self, downloader, blob_path: str, chunk_size: int) -> Iterator[bytes]:
        with _translate_errors("download", blob_path):
            for chunk in downloader.chunks():
                for start in range(0, len(chunk), chunk_size):
                    yield chunk[start:start + chunk_size]

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
        Upload content to Azure Blob Storage.

        Note: metadata here is blob-level metadata (stored in Azure),
        NOT the directory index document.
        """
        azure_metadata = {str(k): str(v) for k, v in (metadata or {}).items()}
        kwargs = {}
        if etag:
            kwargs.update(etag=etag, match_condition=MatchConditions.IfNotModified)

        with _translate_errors("upload", blob_path, conditional=bool(etag) or create_only):
            result = self.container_client.get_blob_client(blob_path).upload_blob(
                content,
                overwrite=not create_only,
                metadata=azure_metadata,
                content_settings=ContentSettings(content_type=content_type or DEFAULT_CONTENT_TYPE),
                **kwargs,
            )

        logger.info("blob_uploaded", extra={
            "blob_path": blob_path,
            "size": len(content),
            "conditional": bool(etag) or create_only,
        })
        return BlobRecord(
            path=blob_path,
            size=len(content),
            content_type=content_type or DEFAULT_CONTENT_TYPE,
            last_modified=result.get("last_modified"),
            etag=result.get("etag"),
            metadata=azure_metadata,
        )

    def get_blob_info(self, blob_path: str) -> BlobRecord:
        with _translate_errors("info", blob_path):
            props = self.container_client.get_blob_client(blob_path).get_blob_properties()
        record = self._record(props)
        record.path = blob_path
        return record

    def set_metadata(
        self,
        blob_path: str,
        metadata: Dict[str, str],
        content_type: Optional[str] = None,
    ) -> None:
        blob_client = self.container_client.get_blob_client(blob_path)
        with _translate_errors("set_metadata", blob_path):
            # metadata and HTTP headers are separate properties in Azure,
            # so setting one never resets the other
            blob_client.set_blob_metadata({str(k): str(v) for k, v in metadata.items()})
            if content_type:
                blob_client.set_http_headers(ContentSettings(content_type=content_type))

        logger.info("blob_metadata_set", extra={
            "blob_path": blob_path,
            "keys": sorted(metadata.keys())
        })

    def delete(self, blob_path: str, etag: Optional[str] = None, missing_ok: bool = False) -> bool:
        kwargs = {}
        if etag:
            kwargs.update(etag=etag, match_condition=MatchConditions.IfNotModified)
        try:
            with _translate_errors("delete", blob_path, conditional=bool(etag)):
                self.container_client.get_blob_client(blob_path).delete_blob(
                    delete_snapshots="include", **kwargs
                )
        except NotFoundError:
            if missing_ok:
                return False
            raise

        logger.info("blob_deleted", extra={"blob_path": blob_path})
        return True

    def copy(self, source_path: str, destination_path: str) -> None:
        source_client = self.container_client.get_blob_client(source_path)
        dest_client = self.container_client.get_blob_client(destination_path)

        with _translate_errors("copy", source_path):
            dest_client.start_copy_from_url(source_client.url)
            deadline = time.monotonic() + COPY_TIMEOUT_SECONDS
            props = dest_client.get_blob_properties()
            while props.copy.status == "pending":
                if time.monotonic() > deadline:
                    dest_client.abort_copy(props.copy.id)
                    raise UpstreamError(f"Copy timed out: {source_path} -> {destination_path}")
                time.sleep(COPY_POLL_INTERVAL)
                props = dest_client.get_blob_properties()

        if props.copy.status not in (None, "success"):
            raise UpstreamError(
                f"Copy {props.copy.status}: {source_path} -> {destination_path}",
                error="CopyFailed",
                details=props.copy.status_description,
            )

        logger.info("blob_copied", extra={
            "source": source_path,
            "destination": destination_path
        })

    def generate_read_url(self, blob_path: str, ttl_seconds: int = 3600) -> str:
        blob_client = self.container_client.get_blob_client(blob_path)
        account_name = os.getenv("AZURE_STORAGE_ACCOUNT_NAME") or self.blob_service_client.account_name
        account_key = os.getenv("AZURE_STORAGE_ACCOUNT_KEY") or getattr(
            self.blob_service_client.credential, "account_key", None
        )
        if not account_key:
            raise UpstreamError(
                "Cannot sign download URL: no storage account key configured",
                error="MissingAccountKey",
            )

        sas = generate_blob_sas(
            account_name=account_name,
            container_name=self.container_name,
            blob_name=blob_path,
            account_key=account_key,
            permission=BlobSasPermissions(read=True),
            expiry=datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
        )
        return f"{blob_client.url}?{sas}"

    def ping(self) -> None:
        with _translate_errors("ping", ""):
            self.container_client.get_container_properties()

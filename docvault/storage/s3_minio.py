"""S3/MinIO storage client implementation."""
import os
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

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

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}
_PRECONDITION_CODES = {"412", "PreconditionFailed", "ConditionalRequestConflict"}


@contextmanager
def _translate_errors(operation: str, blob_path: str, conditional: bool = False):
    """Map botocore exceptions onto the docvault error taxonomy."""
    try:
        yield
    except ClientError as e:
        code = str(e.response.get("Error", {}).get("Code", ""))
        status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if code in _PRECONDITION_CODES or (conditional and status in (409, 412)):
            raise PreconditionFailedError(f"Precondition failed for {blob_path}", error=code) from e
        if code in _NOT_FOUND_CODES or status == 404:
            if conditional:
                raise PreconditionFailedError(f"Blob changed concurrently: {blob_path}", error=code) from e
            raise NotFoundError(f"Blob not found: {blob_path}", error=code) from e
        if status == 409:
            raise ConflictError(f"S3 {operation} conflicted for {blob_path or '<bucket>'}", error=code or None) from e
        logger.error(f"{operation}_failed", extra={
            "blob_path": blob_path,
            "error": str(e)
        })
        raise UpstreamError(
            f"S3 {operation} failed for {blob_path or '<bucket>'}", error=code or None, details=str(e)
        ) from e
    except BotoCoreError as e:
        logger.error(f"{operation}_failed", extra={
            "blob_path": blob_path,
            "error": str(e)
        })
        raise UpstreamError(
            f"S3 {operation} failed for {blob_path or '<bucket>'}", error=type(e).__name__, details=str(e)
        ) from e


class S3MinioClient(StorageClient):
    """Storage client for S3-compatible storage (MinIO, AWS S3)."""

    def __init__(
        self,
        endpoint_url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        bucket_name: Optional[str] = None,
        use_ssl: bool = False
    ):
        """
        Initialize S3/MinIO client.

        Args:
            endpoint_url: S3 endpoint URL (for MinIO)
            access_key: Access key ID
            secret_key: Secret access key
            bucket_name: Bucket holding the document tree
            use_ssl: Whether to use SSL
        """
        self.endpoint_url = endpoint_url or os.getenv("MINIO_ENDPOINT", "http://minio:9000")
        self.access_key = access_key or os.getenv("MINIO_ACCESS_KEY", "minioadmin")
        self.secret_key = secret_key or os.getenv("MINIO_SECRET_KEY", "minioadmin")
        self.container_name = bucket_name or os.getenv("MINIO_BUCKET_NAME", "documents")

        self.client = boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=self.access_key,
            aws_secret_access_key=self.secret_key,
            use_ssl=use_ssl,
            verify=False  # For MinIO with self-signed certs
        )

        self._ensure_bucket()

        logger.info("s3_client_initialized", extra={
            "endpoint": self.endpoint_url,
            "bucket": self.container_name
        })

    def _ensure_bucket(self):
        """Create bucket if it doesn't exist."""
        try:
            self.client.head_bucket(Bucket=self.container_name)
        except ClientError as e:
            if e.response.get("ResponseMetadata", {}).get("HTTPStatusCode") != 404:
                logger.error("bucket_check_failed", extra={"error": str(e)})
                raise
            self.client.create_bucket(Bucket=self.container_name)
            logger.info("bucket_created", extra={"bucket": self.container_name})

    def _head(self, blob_path: str) -> dict:
        with _translate_errors("info", blob_path):
            return self.client.head_object(Bucket=self.container_name, Key=blob_path)

    @staticmethod
    def _record(blob_path: str, response: dict) -> BlobRecord:
        return BlobRecord(
            path=blob_path,
            size=response.get("ContentLength", response.get("Size", 0)),
            content_type=response.get("ContentType", DEFAULT_CONTENT_TYPE),
            last_modified=response.get("LastModified"),
            etag=response.get("ETag"),
            metadata=response.get("Metadata", {}),
        )

    def list_page(
        self,
        prefix: str = "",
        hierarchical: bool = False,
        continuation_token: Optional[str] = None,
        page_size: int = 1000,
        include_metadata: bool = True,
    ) -> ListPage:
        params = {"Bucket": self.container_name, "MaxKeys": page_size}
        if prefix:
            params["Prefix"] = prefix
        if hierarchical:
            params["Delimiter"] = "/"
        if continuation_token:
            params["ContinuationToken"] = continuation_token

        with _translate_errors("list", prefix):
            response = self.client.list_objects_v2(**params)

        items = [BlobPrefix(path=p["Prefix"].rstrip("/")) for p in response.get("CommonPrefixes", [])]
        for obj in response.get("Contents", []):
            if include_metadata:
                # ListObjectsV2 carries no user metadata
                items.append(self._record(obj["Key"], self._head(obj["Key"])))
            else:
                items.append(BlobRecord(
                    path=obj["Key"],
                    size=obj.get("Size", 0),
                    last_modified=obj.get("LastModified"),
                    etag=obj.get("ETag"),
                ))

        logger.debug("blobs_listed", extra={
            "prefix": prefix,
            "hierarchical": hierarchical,
            "count": len(items)
        })
        token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return ListPage(items=items, continuation_token=token)

    def download_with_etag(self, blob_path: str) -> Tuple[bytes, Optional[str]]:
        with _translate_errors("download", blob_path):
            response = self.client.get_object(Bucket=self.container_name, Key=blob_path)
            content = response["Body"].read()

        logger.info("blob_downloaded", extra={
            "blob_path": blob_path,
            "size": len(content)
        })
        return content, response.get("ETag")

    def open_stream(self, blob_path: str, chunk_size: int = 4 * 1024 * 1024) -> Iterator[bytes]:
        with _translate_errors("download", blob_path):
            response = self.client.get_object(Bucket=self.container_name, Key=blob_path)
        return self._iter_chunks(response["Body"], blob_path, chunk_size)

    def _iter_chunks(self, body, blob_path: str, chunk_size: int) -> Iterator[bytes]:
        try:
            with _translate_errors("download", blob_path):
                yield from body.iter_chunks(chunk_size=chunk_size)
        finally:
            body.close()

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
        Upload content to S3/MinIO.

        Note: metadata here is blob-level metadata (stored in S3),
        NOT the directory index document.
        """
        s3_metadata = {str(k): str(v) for k, v in (metadata or {}).items()}
        params = {
            "Bucket": self.container_name,
            "Key": blob_path,
            "Body": content,
            "Metadata": s3_metadata,
            "ContentType": content_type or DEFAULT_CONTENT_TYPE,
        }
        if etag:
            params["IfMatch"] = etag
        elif create_only:
            params["IfNoneMatch"] = "*"

        with _translate_errors("upload", blob_path, conditional=bool(etag) or create_only):
            response = self.client.put_object(**params)

        logger.info("blob_uploaded", extra={
            "blob_path": blob_path,
            "size": len(content),
            "conditional": bool(etag) or create_only,
        })
        return BlobRecord(
            path=blob_path,
            size=len(content),
            content_type=params["ContentType"],
            etag=response.get("ETag"),
            metadata=s3_metadata,
        )

    def get_blob_info(self, blob_path: str) -> BlobRecord:
        return self._record(blob_path, self._head(blob_path))

    def set_metadata(
        self,
        blob_path: str,
        metadata: Dict[str, str],
        content_type: Optional[str] = None,
    ) -> None:
        # S3 metadata is immutable; replace it with a self-copy that
        # restates the content type
        current = self._head(blob_path)
        with _translate_errors("set_metadata", blob_path):
            self.client.copy_object(
                Bucket=self.container_name,
                Key=blob_path,
                CopySource={"Bucket": self.container_name, "Key": blob_path},
                Metadata={str(k): str(v) for k, v in metadata.items()},
                MetadataDirective="REPLACE",
                ContentType=content_type or current.get("ContentType", DEFAULT_CONTENT_TYPE),
            )

        logger.info("blob_metadata_set", extra={
            "blob_path": blob_path,
            "keys": sorted(metadata.keys())
        })

    def delete(self, blob_path: str, etag: Optional[str] = None, missing_ok: bool = False) -> bool:
        # DeleteObject succeeds on missing keys, so check first
        try:
            self._head(blob_path)
        except NotFoundError as e:
            if etag:
                raise PreconditionFailedError(f"Blob changed concurrently: {blob_path}", error=e.error) from e
            if missing_ok:
                return False
            raise

        params = {"Bucket": self.container_name, "Key": blob_path}
        if etag:
            params["IfMatch"] = etag
        with _translate_errors("delete", blob_path, conditional=bool(etag)):
            self.client.delete_object(**params)

        logger.info("blob_deleted", extra={"blob_path": blob_path})
        return True

    def copy(self, source_path: str, destination_path: str) -> None:
        with _translate_errors("copy", source_path):
            self.client.copy_object(
                Bucket=self.container_name,
                Key=destination_path,
                CopySource={"Bucket": self.container_name, "Key": source_path},
            )

        logger.info("blob_copied", extra={
            "source": source_path,
            "destination": destination_path
        })

    def generate_read_url(self, blob_path: str, ttl_seconds: int = 3600) -> str:
        with _translate_errors("sign", blob_path):
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.container_name, "Key": blob_path},
                ExpiresIn=ttl_seconds,
            )

    def ping(self) -> None:
        with _translate_errors("ping", ""):
            self.client.head_bucket(Bucket=self.container_name)

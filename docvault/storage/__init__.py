"""Storage module with factory for different storage backends."""
import os
from typing import Optional

from docvault.logging import get_logger
from docvault.storage.azure_blob import AzureBlobClient
from docvault.storage.base import BlobPrefix, BlobRecord, ListPage, StorageClient
from docvault.storage.memory import InMemoryStorageClient
from docvault.storage.s3_minio import S3MinioClient

logger = get_logger(__name__)


def get_storage_client(storage_type: Optional[str] = None) -> StorageClient:
    """
    Factory function to get the appropriate storage client.

    Args:
        storage_type: Type of storage ('azure', 'minio', 's3', 'memory').
                     Defaults to env var STORAGE_TYPE or 'azure'.

    Returns:
        StorageClient instance

    Raises:
        ValueError: If storage type is unknown
    """
    storage_type = storage_type or os.getenv("STORAGE_TYPE", "azure")
    storage_type = storage_type.lower()

    logger.info("creating_storage_client", extra={"type": storage_type})

    if storage_type == "azure":
        return AzureBlobClient()
    elif storage_type in ("minio", "s3"):
        return S3MinioClient()
    elif storage_type == "memory":
        return InMemoryStorageClient(os.getenv("AZURE_STORAGE_CONTAINER_NAME", "documents"))
    else:
        raise ValueError(f"Unknown storage type: {storage_type}")


__all__ = [
    "BlobPrefix",
    "BlobRecord",
    "ListPage",
    "StorageClient",
    "AzureBlobClient",
    "S3MinioClient",
    "InMemoryStorageClient",
    "get_storage_client",
]

"""Milvus collection holding document chunk embeddings."""
import os
from typing import Any, Dict, List, Optional

from pymilvus import (
    Collection,
    CollectionSchema,
    DataType,
    FieldSchema,
    MilvusException,
    connections,
    utility,
)

from docvault.errors import UpstreamError
from docvault.logging import get_logger, stage

logger = get_logger(__name__)

TEXT_MAX_BYTES = 8192  # Milvus VARCHAR limit for the text field


def _clip(text: str, max_bytes: int = TEXT_MAX_BYTES) -> str:
    return text.encode("utf-8")[:max_bytes].decode("utf-8", errors="ignore")


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class VectorStore:
    """One Milvus collection: (doc_id, chunk_id, blob_path, text, embedding)."""

    def __init__(
        self,
        collection_name: Optional[str] = None,
        dim: Optional[int] = None,
        host: Optional[str] = None,
        port: Optional[str] = None,
        alias: str = "default",
    ):
        self.collection_name = collection_name or os.getenv("MILVUS_COLLECTION", "document_chunks")
        self.dim = dim or int(os.getenv("EMBEDDING_DIM", "1536"))
        self.host = host or os.getenv("MILVUS_HOST", "milvus-standalone")
        self.port = port or os.getenv("MILVUS_PORT", "19530")
        self.alias = alias
        self._collection: Optional[Collection] = None

    def _schema(self) -> CollectionSchema:
        return CollectionSchema(
            fields=[
                FieldSchema("id", DataType.INT64, is_primary=True, auto_id=True),
                FieldSchema("doc_id", DataType.VARCHAR, max_length=64),
                FieldSchema("chunk_id", DataType.VARCHAR, max_length=16),
                FieldSchema("blob_path", DataType.VARCHAR, max_length=1024),
                FieldSchema("text", DataType.VARCHAR, max_length=TEXT_MAX_BYTES),
                FieldSchema("embedding", DataType.FLOAT_VECTOR, dim=self.dim),
            ],
            description="Document chunks for retrieval",
        )

    def ensure_collection(self) -> Collection:
        """Connect, create the collection and its index if missing, and load it."""
        if self._collection is not None:
            return self._collection
        try:
            connections.connect(alias=self.alias, host=self.host, port=self.port)
            if utility.has_collection(self.collection_name, using=self.alias):
                collection = Collection(self.collection_name, using=self.alias)
            else:
                collection = Collection(self.collection_name, schema=self._schema(), using=self.alias)
                collection.create_index(
                    field_name="embedding",
                    index_params={"index_type": "IVF_FLAT", "metric_type": "COSINE", "params": {"nlist": 128}},
                )
                logger.info("created_collection", extra={"collection": self.collection_name, "dim": self.dim})
            collection.load()
        except MilvusException as e:
            logger.error("collection_setup_failed", extra={"collection": self.collection_name, "error": str(e)})
            raise UpstreamError("Vector store unavailable", error="MilvusError", details=str(e)) from e

        self._collection = collection
        logger.info("collection_ready", extra={"collection": self.collection_name})
        return collection

    def replace_document_chunks(
        self,
        doc_id: str,
        blob_path: str,
        chunks: List[str],
        vectors: List[List[float]],
    ) -> Dict[str, int]:
        """
        Delete existing vectors for doc_id, then insert new ones.
        Re-indexing a document therefore never leaves stale chunks behind.
        """
        if len(chunks) != len(vectors):
            raise ValueError("chunks and vectors must have the same length")
        collection = self.ensure_collection()
        try:
            with stage("milvus_delete", doc_id=doc_id):
                result = collection.delete(f'doc_id == "{_quote(doc_id)}"')
                deleted = getattr(result, "delete_count", 0)

            if not chunks:
                return {"inserted": 0, "deleted": deleted}

            with stage("milvus_insert", doc_id=doc_id, count=len(chunks)):
                result = collection.insert([
                    [doc_id] * len(chunks),
                    [f"{i:04d}" for i in range(len(chunks))],
                    [blob_path] * len(chunks),
                    [_clip(chunk) for chunk in chunks],
                    vectors,
                ])
                # make the new vectors searchable right away
                collection.flush()
        except MilvusException as e:
            logger.error("milvus_operation_failed", extra={"doc_id": doc_id, "error": str(e)})
            raise UpstreamError("Vector store write failed", error="MilvusError", details=str(e)) from e

        return {"inserted": len(result.primary_keys), "deleted": deleted}

    def search(self, vector: List[float], top_k: int = 3) -> List[Dict[str, Any]]:
        collection = self.ensure_collection()
        try:
            results = collection.search(
                data=[vector],
                anns_field="embedding",
                param={"metric_type": "COSINE", "params": {"nprobe": 10}},
                limit=top_k,
                output_fields=["doc_id", "chunk_id", "blob_path", "text"],
            )
        except MilvusException as e:
            logger.error("milvus_search_failed", extra={"error": str(e)})
            raise UpstreamError("Vector search failed", error="MilvusError", details=str(e)) from e

        return [
            {
                "doc_id": hit.entity.get("doc_id"),
                "chunk_id": hit.entity.get("chunk_id"),
                "blob_path": hit.entity.get("blob_path"),
                "text": hit.entity.get("text"),
                "score": float(hit.distance),
            }
            for hit in results[0]
        ]

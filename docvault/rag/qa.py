"""Retrieval-augmented question answering over indexed documents."""
import os
from typing import Any, Dict, List, Optional

from docvault.errors import DocVaultError, InvalidRequestError, NotFoundError
from docvault.logging import get_logger, stage
from docvault.rag.llm import LLMClient
from docvault.rag.vectorstore import VectorStore
from docvault.storage.base import StorageClient

logger = get_logger(__name__)

SOURCE_LINK_TTL_SECONDS = int(os.getenv("DOWNLOAD_URL_TTL_SECONDS", "3600"))
SOURCE_PREVIEW_CHARS = 150

NO_MATCH_ANSWER = (
    "I couldn't find any relevant information to answer your question. "
    "Please try rephrasing or asking something else."
)

SYSTEM_PROMPT = (
    "You are a helpful assistant specialising in constitutional history and legal documents. "
    "Answer the user's question based ONLY on the provided document contexts. "
    "If the answer cannot be found in the documents, say "
    "\"I don't have enough information to answer that question.\" "
    "Cite your sources by referring to the document numbers in your answer."
)


class RAGService:
    def __init__(self, llm: LLMClient, vectors: VectorStore, storage: StorageClient):
        self.llm = llm
        self.vectors = vectors
        self.storage = storage

    def _link(self, blob_path: Optional[str]) -> Optional[str]:
        if not blob_path:
            return None
        try:
            return self.storage.generate_read_url(blob_path, SOURCE_LINK_TTL_SECONDS)
        except DocVaultError as e:
            logger.warning("source_link_failed", extra={"blob_path": blob_path, "error": str(e)})
            return None

    def query(self, text: str, top_k: int = 3) -> List[Dict[str, Any]]:
        """Embed ``text`` and return the closest chunks with read links."""
        if not text or not text.strip():
            raise InvalidRequestError("Query text is required", error="EmptyQuery")

        with stage("rag_retrieve", top_k=top_k):
            vector = self.llm.embed([text.strip()])[0]
            hits = self.vectors.search(vector, top_k=top_k)

        return [
            {
                "text": hit["text"],
                "score": hit["score"],
                "documentId": hit["doc_id"],
                "blobPath": hit["blob_path"],
                "link": self._link(hit["blob_path"]),
            }
            for hit in hits
        ]

    def ask(self, question: str, top_k: int = 3) -> Dict[str, Any]:
        """
        Answer ``question`` from the retrieved chunks.

        Raises:
            NotFoundError: Nothing relevant was retrieved; ``details`` carries
                the fallback answer and an empty source list
        """
        matches = self.query(question, top_k=top_k)
        if not matches:
            raise NotFoundError(
                "No relevant documents found",
                error="NoRelevantDocuments",
                details={"answer": NO_MATCH_ANSWER, "sources": []},
            )
        logger.info("rag_matches_found", extra={"count": len(matches)})

        context = "\n\n".join(
            f"Document {i}: {match['text']}\nSource: {match['link'] or match['blobPath']}"
            for i, match in enumerate(matches, start=1)
        )
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": f"Question: {question}\n\nContexts from relevant documents:\n{context}"},
        ]
        with stage("rag_answer", sources=len(matches)):
            answer = self.llm.chat(messages, temperature=0.3, max_tokens=500)

        sources = [
            {
                "text": match["text"][:SOURCE_PREVIEW_CHARS] + ("..." if len(match["text"]) > SOURCE_PREVIEW_CHARS else ""),
                "documentId": match["documentId"],
                "blobPath": match["blobPath"],
                "link": match["link"],
            }
            for match in matches
        ]
        return {"answer": answer, "sources": sources}

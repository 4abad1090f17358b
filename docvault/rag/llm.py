"""Chat and embedding calls against OpenAI or Azure OpenAI."""
import os
from typing import Dict, List, Optional

from openai import AzureOpenAI, OpenAI, OpenAIError

from docvault.errors import UpstreamError
from docvault.logging import get_logger

logger = get_logger(__name__)

EMBED_BATCH_SIZE = 64


class LLMClient:
    """
    Thin wrapper over the OpenAI SDK.

    Azure OpenAI is used when ``AZURE_OPENAI_ENDPOINT`` is set; the model
    names are then deployment names.
    """

    def __init__(self, client=None, chat_model: Optional[str] = None, embedding_model: Optional[str] = None):
        self.chat_model = chat_model or os.getenv("OPENAI_CHAT_MODEL", "gpt-4o-mini")
        self.embedding_model = embedding_model or os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
        self.client = client or self._build_client()

    @staticmethod
    def _build_client():
        endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")
        if endpoint:
            logger.info("llm_client_initialized", extra={"provider": "azure", "endpoint": endpoint})
            return AzureOpenAI(
                azure_endpoint=endpoint,
                api_key=os.getenv("AZURE_OPENAI_API_KEY"),
                api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-06-01"),
            )
        logger.info("llm_client_initialized", extra={"provider": "openai"})
        return OpenAI(api_key=os.getenv("OPENAI_API_KEY"))

    def embed(self, texts: List[str]) -> List[List[float]]:
        """Embed ``texts`` in order, batching requests."""
        vectors: List[List[float]] = []
        try:
            for start in range(0, len(texts), EMBED_BATCH_SIZE):
                batch = texts[start:start + EMBED_BATCH_SIZE]
                response = self.client.embeddings.create(model=self.embedding_model, input=batch)
                # response.data is ordered by input index
                vectors.extend(item.embedding for item in response.data)
        except OpenAIError as e:
            logger.error("embedding_failed", extra={"model": self.embedding_model, "error": str(e)})
            raise UpstreamError("Embedding request failed", error=type(e).__name__, details=str(e)) from e
        return vectors

    def chat(self, messages: List[Dict[str, str]], temperature: float = 0.2, max_tokens: int = 800) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.chat_model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except OpenAIError as e:
            logger.error("chat_completion_failed", extra={"model": self.chat_model, "error": str(e)})
            raise UpstreamError("Chat completion request failed", error=type(e).__name__, details=str(e)) from e

        answer = response.choices[0].message.content or ""
        logger.info("chat_completion_done", extra={
            "model": self.chat_model,
            "answer_chars": len(answer)
        })
        return answer

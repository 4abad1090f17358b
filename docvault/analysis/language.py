"""Key phrase extraction and language detection through Azure AI Language."""
import os
from typing import Any, Callable, List, Optional

from azure.ai.textanalytics import TextAnalyticsClient
from azure.core.credentials import AzureKeyCredential
from azure.core.exceptions import AzureError

from docvault.errors import UpstreamError
from docvault.logging import get_logger

logger = get_logger(__name__)


class LanguageClient:
    """
    Thin wrapper over the Azure AI Language (Text Analytics) SDK.

    Every call sends one document and returns that document's result; a
    per-document error from the service is raised like a failed request.
    """

    def __init__(self, client=None, endpoint: Optional[str] = None, key: Optional[str] = None):
        self.endpoint = endpoint or os.getenv("AZURE_LANGUAGE_ENDPOINT")
        self.client = client or self._build_client(self.endpoint, key or os.getenv("AZURE_LANGUAGE_KEY"))

    @staticmethod
    def _build_client(endpoint: Optional[str], key: Optional[str]) -> TextAnalyticsClient:
        if not endpoint or not key:
            raise UpstreamError(
                "Azure AI Language is not configured (AZURE_LANGUAGE_ENDPOINT, AZURE_LANGUAGE_KEY)",
                error="AnalysisNotConfigured",
            )
        logger.info("language_client_initialized", extra={"endpoint": endpoint})
        return TextAnalyticsClient(endpoint=endpoint, credential=AzureKeyCredential(key))

    def key_phrases(self, text: str, language: str = "en") -> List[str]:
        document = self._first(
            "key_phrases", self.client.extract_key_phrases, [{"id": "1", "language": language, "text": text}]
        )
        return list(document.key_phrases)

    def detect_language(self, text: str) -> Optional[str]:
        """ISO 639-1 code of the text's primary language."""
        document = self._first("detect_language", self.client.detect_language, [{"id": "1", "text": text}])
        return document.primary_language.iso6391_name or None

    @staticmethod
    def _first(operation: str, call: Callable[..., List[Any]], documents: List[dict]) -> Any:
        try:
            results = call(documents)
        except AzureError as e:
            logger.error(f"{operation}_failed", extra={"error": str(e)})
            raise UpstreamError(
                f"Azure AI Language {operation} failed", error=type(e).__name__, details=str(e)
            ) from e

        document = results[0]
        if document.is_error:
            raise UpstreamError(
                f"Azure AI Language rejected the document: {document.error.message}",
                error=str(document.error.code),
            )
        return document

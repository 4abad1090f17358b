"""
Metadata suggestions for a document before it is filed.

The upload is turned into text the same way the indexing job does it, cut
to what Azure AI Language accepts in one request, and then described:
a short description from the opening paragraph, keywords from the key
phrases and the detected language.
"""
import os
from typing import Any, Dict, Iterable, List, Optional

from docvault.analysis.language import LanguageClient
from docvault.errors import DocVaultError, InvalidRequestError, UnprocessableContentError
from docvault.ingest.extract import extract_text
from docvault.logging import get_logger, stage

logger = get_logger(__name__)

ANALYSIS_MAX_UPLOAD_BYTES = int(os.getenv("ANALYSIS_MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
ANALYSIS_MAX_CHARS = int(os.getenv("ANALYSIS_MAX_CHARS", "5000"))
ANALYSIS_MIN_CHARS = 50
MAX_KEYWORDS = 10
DESCRIPTION_CHARS = 500
PARAGRAPH_MIN_CHARS = 30


def describe(text: str) -> str:
    """The first paragraph longer than a heading, or else the opening of the text."""
    paragraphs = [p.strip() for p in text.split("\n") if len(p.strip()) > PARAGRAPH_MIN_CHARS]
    source = paragraphs[0] if paragraphs else text
    return " ".join(source.split())[:DESCRIPTION_CHARS].strip()


def rank_key_phrases(phrases: Iterable[str], limit: int = MAX_KEYWORDS) -> List[str]:
    """Multi-word phrases first (they are more specific), single characters dropped."""
    seen = set()
    unique = []
    for phrase in phrases:
        phrase = (phrase or "").strip()
        if len(phrase) <= 1 or phrase.lower() in seen:
            continue
        seen.add(phrase.lower())
        unique.append(phrase)
    multi_word = [p for p in unique if " " in p]
    single_word = [p for p in unique if " " not in p]
    return (multi_word + single_word)[:limit]


class DocumentAnalyzer:
    def __init__(self, language: LanguageClient):
        self.language = language

    def analyze(self, content: bytes, filename: str, content_type: Optional[str] = None) -> Dict[str, Any]:
        """
        Suggest a description, keywords and language for an upload.

        Raises:
            InvalidRequestError: No file, or a file over the size limit
            UnprocessableContentError: Too little readable text to analyse
        """
        if not content:
            raise InvalidRequestError("No file uploaded", error="NoFile")
        if len(content) > ANALYSIS_MAX_UPLOAD_BYTES:
            raise InvalidRequestError(
                f"File is larger than {ANALYSIS_MAX_UPLOAD_BYTES} bytes", error="FileTooLarge"
            )

        try:
            with stage("analysis_extract", file_name=filename):
                text = extract_text(content, filename, content_type)
        except InvalidRequestError as e:
            raise UnprocessableContentError(e.message, error=e.error, details=e.details) from e

        text = text.strip()[:ANALYSIS_MAX_CHARS]
        if len(text) < ANALYSIS_MIN_CHARS:
            raise UnprocessableContentError(
                "Could not extract sufficient text from the document",
                error="InsufficientText",
                details={"chars": len(text)},
            )

        warnings: List[str] = []
        language = self._detect_language(text, warnings)
        keywords = self._keywords(text, language or "en", warnings)
        description = describe(text)

        logger.info("document_analyzed", extra={
            "file_name": filename,
            "chars": len(text),
            "keywords": len(keywords),
            "language": language,
            "warnings": len(warnings)
        })
        return {
            "success": True,
            "description": description,
            "keywords": keywords,
            "language": language,
            "suggestedMetadata": {
                "description": description,
                "tags": keywords,
                "language": language,
            },
            "warnings": warnings,
        }

    # a failed suggestion leaves that field empty; the upload form still works
    def _detect_language(self, text: str, warnings: List[str]) -> Optional[str]:
        try:
            return self.language.detect_language(text)
        except DocVaultError as e:
            logger.warning("language_detection_failed", extra={"error": e.message})
            warnings.append(f"Language detection failed: {e.message}")
            return None

    def _keywords(self, text: str, language: str, warnings: List[str]) -> List[str]:
        try:
            return rank_key_phrases(self.language.key_phrases(text, language=language))
        except DocVaultError as e:
            logger.warning("key_phrase_extraction_failed", extra={"error": e.message})
            warnings.append(f"Keyword extraction failed: {e.message}")
            return []

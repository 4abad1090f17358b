"""Text extraction from stored documents."""
import os
import tempfile
from typing import Optional

from markitdown import MarkItDown

from docvault.errors import InvalidRequestError
from docvault.files import paths
from docvault.logging import get_logger

logger = get_logger(__name__)

TEXT_CONTENT_TYPES = ("text/", "application/json", "application/xml")
TEXT_EXTENSIONS = {".txt", ".md", ".csv", ".json", ".xml", ".html", ".htm"}

_converter: Optional[MarkItDown] = None


def _markitdown() -> MarkItDown:
    global _converter
    if _converter is None:
        _converter = MarkItDown()
    return _converter


def is_plain_text(blob_path: str, content_type: Optional[str]) -> bool:
    if content_type and content_type.startswith(TEXT_CONTENT_TYPES):
        return True
    return paths.split_ext(paths.basename(blob_path))[1].lower() in TEXT_EXTENSIONS


def extract_text(content: bytes, blob_path: str, content_type: Optional[str] = None) -> str:
    """
    Turn document bytes into text.

    Plain-text types are decoded directly; anything else (PDF, DOCX, PPTX,
    XLSX, ...) goes through MarkItDown, which needs a file on disk with the
    right extension.

    Raises:
        InvalidRequestError: If nothing readable could be extracted
    """
    if is_plain_text(blob_path, content_type):
        return content.decode("utf-8", errors="replace")

    suffix = paths.split_ext(paths.basename(blob_path))[1]
    fd, tmp_path = tempfile.mkstemp(suffix=suffix)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(content)
        result = _markitdown().convert(tmp_path)
    except Exception as e:
        logger.error("text_extraction_failed", extra={"blob_path": blob_path, "error": str(e)})
        raise InvalidRequestError(
            f"Could not extract text from {blob_path}", error="ExtractionFailed", details=str(e)
        ) from e
    finally:
        os.unlink(tmp_path)

    text = result.text_content or ""
    logger.info("text_extracted", extra={"blob_path": blob_path, "chars": len(text)})
    return text

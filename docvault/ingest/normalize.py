"""
Text clean-up and chunking for documents headed into the vector store.

Extraction output (PDF text, markdown from converters) carries page furniture
and line-wrap artefacts. ``prepare_text`` removes the worst of it before
``chunk_text`` cuts the result into overlapping word windows.
"""
import re
from collections import Counter
from typing import List

from docvault.logging import get_logger

logger = get_logger(__name__)

CHUNK_WORDS = 500
CHUNK_OVERLAP_WORDS = 50

_BULLET = re.compile(r"^\s*[•●▪\-\*]\s+")
_NUMBERED = re.compile(r"^\s*(\d+)[.)]\s+")


def strip_repeating_lines(text: str, threshold: int = 3, min_length: int = 10) -> str:
    """
    Drop lines that repeat at least ``threshold`` times (running headers,
    footers, page stamps).

    Args:
        text: Extracted text, one physical line per line
        threshold: Occurrences before a line counts as page furniture
        min_length: Shorter lines are never dropped

    Returns:
        Text without the repeating lines
    """
    lines = text.split("\n")
    if len(lines) < 10:
        return text

    counts = Counter(line.strip() for line in lines if len(line.strip()) >= min_length)
    repeating = {line for line, count in counts.items() if count >= threshold}
    if not repeating:
        return text

    kept = [line for line in lines if line.strip() not in repeating]
    logger.info("repeating_lines_removed", extra={
        "original_lines": len(lines),
        "kept_lines": len(kept),
        "patterns_removed": len(repeating)
    })
    return "\n".join(kept)


def markdown_lists(text: str) -> str:
    """Rewrite bullet and numbered list markers as markdown."""
    out = []
    for line in text.split("\n"):
        numbered = _NUMBERED.match(line)
        if numbered:
            out.append(f"{numbered.group(1)}. {line[numbered.end():].strip()}")
        elif _BULLET.match(line):
            out.append(f"- {_BULLET.sub('', line, count=1).strip()}")
        else:
            out.append(line)
    return "\n".join(out)


def collapse_text(text: str) -> str:
    """Join wrapped lines into running text and tidy punctuation spacing."""
    if not text or not text.strip():
        return ""
    # hyphenated line wraps: "consti-\ntution" -> "constitution"
    text = re.sub(r"(\w)-\n\s*(\w)", r"\1\2", text)
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"\s+([,.;:!?])", r"\1", text)
    text = re.sub(r"([,.;:!?])(?=[A-Za-z])", r"\1 ", text)
    # OCR stutter such as "aaaaa"
    text = re.sub(r"(.)\1{3,}", r"\1\1", text)
    return text.strip()


def prepare_text(raw: str) -> str:
    """Full clean-up pipeline applied to extracted text."""
    cleaned = collapse_text(markdown_lists(strip_repeating_lines(raw)))
    logger.info("text_normalized", extra={
        "original_length": len(raw),
        "normalized_length": len(cleaned)
    })
    return cleaned


def chunk_text(text: str, chunk_words: int = CHUNK_WORDS, overlap_words: int = CHUNK_OVERLAP_WORDS) -> List[str]:
    """Split text into windows of ``chunk_words`` words that overlap by ``overlap_words``."""
    if overlap_words >= chunk_words:
        raise ValueError("overlap_words must be smaller than chunk_words")
    words = text.split()
    if not words:
        return []

    step = chunk_words - overlap_words
    chunks = []
    for start in range(0, len(words), step):
        chunks.append(" ".join(words[start:start + chunk_words]))
        if start + chunk_words >= len(words):
            break
    return chunks

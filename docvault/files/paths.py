"""Blob path helpers.

A path is a slash-delimited name inside one flat container. "Directories"
are prefixes; the root directory is the empty string.
"""
import posixpath
import re
from typing import Callable, Optional

from docvault.errors import InvalidPathError

INDEX_FILE_NAME = "metadata.json"
# service-owned blobs (metadata options); not addressable as a user path
SYSTEM_DIRECTORY = ".docvault"

_FORBIDDEN_CHARS = re.compile(r'[\\:*?"<>|\x00-\x1f\x7f]')


def normalize(path: Optional[str]) -> str:
    """Strip surrounding whitespace and trailing slashes. ``None`` is the root."""
    return (path or "").strip().rstrip("/")


def validate(path: Optional[str], allow_root: bool = False) -> str:
    """Return the normalized path or raise ``InvalidPathError``."""
    cleaned = normalize(path)
    if not cleaned:
        if allow_root:
            return ""
        raise InvalidPathError("Path is required", error="InvalidPath")
    if cleaned.startswith("/"):
        raise InvalidPathError(f"Path must not start with '/': {path}", error="InvalidPath")
    for segment in cleaned.split("/"):
        if not segment:
            raise InvalidPathError(f"Path has an empty segment: {path}", error="InvalidPath")
        if segment in (".", ".."):
            raise InvalidPathError(f"Relative segments are not allowed: {path}", error="InvalidPath")
        if segment.endswith("."):
            raise InvalidPathError(f"Segment must not end with '.': {segment}", error="InvalidPath")
        if _FORBIDDEN_CHARS.search(segment):
            raise InvalidPathError(f"Path contains a disallowed character: {path}", error="InvalidPath")
    if is_system_path(cleaned):
        raise InvalidPathError(f"'{SYSTEM_DIRECTORY}' is reserved", error="ReservedName")
    return cleaned


def parent(path: str) -> str:
    head = posixpath.dirname(normalize(path))
    return "" if head == "." else head


def basename(path: str) -> str:
    return posixpath.basename(normalize(path))


def join(directory: str, *names: str) -> str:
    parts = [p.strip("/") for p in (directory, *names) if p and p.strip("/")]
    return "/".join(parts)


def dir_prefix(directory: str) -> str:
    """Listing prefix for a directory: ``"a/b/"``, or ``""`` for the root."""
    directory = normalize(directory)
    return f"{directory}/" if directory else ""


def index_path(directory: str) -> str:
    return join(directory, INDEX_FILE_NAME)


def is_index_file(path: str) -> bool:
    return basename(path) == INDEX_FILE_NAME


def is_system_path(path: str) -> bool:
    return normalize(path).split("/", 1)[0] == SYSTEM_DIRECTORY


def is_same_or_descendant(path: str, ancestor: str) -> bool:
    path, ancestor = normalize(path), normalize(ancestor)
    if not ancestor:
        return True
    return path == ancestor or path.startswith(ancestor + "/")


def split_ext(name: str):
    """Like ``os.path.splitext`` but a leading dot is part of the stem."""
    stem, ext = posixpath.splitext(name)
    return (stem, ext) if stem else (name, "")


def copy_name(name: str, exists: Callable[[str], bool], is_directory: bool = False) -> str:
    """First free ``"<base> - Copy<ext>"`` / ``"<base> - Copy (n)<ext>"`` name.

    ``exists`` receives each candidate leaf name in turn.
    """
    stem, ext = (name, "") if is_directory else split_ext(name)
    candidate = f"{stem} - Copy{ext}"
    counter = 2
    while exists(candidate):
        candidate = f"{stem} - Copy ({counter}){ext}"
        counter += 1
    return candidate

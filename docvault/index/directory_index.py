"""
Per-directory metadata index.

Every directory that describes at least one child holds a ``metadata.json``
blob of the form ``{"files": {name: metadata}, "folders": {name: metadata}}``.
All writes are read-modify-write guarded by the ETag captured on read (or by
"must not exist" when there was nothing to read), so a concurrent writer
surfaces as ``PreconditionFailedError`` instead of a lost update.

This module never retries; callers wrap mutations in
``docvault.index.retry.with_conflict_retry``.
"""
import json
import threading
import weakref
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from docvault.errors import NotFoundError
from docvault.files import paths
from docvault.logging import get_logger
from docvault.storage.base import StorageClient

logger = get_logger(__name__)


class _DirectoryLock:
    """A plain lock that can be held in a weak registry."""

    def __init__(self):
        self._lock = threading.Lock()

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, *exc):
        self._lock.release()


_registry_lock = threading.Lock()
# entries disappear once no writer holds a reference
_directory_locks: "weakref.WeakValueDictionary[Tuple[str, str], _DirectoryLock]" = weakref.WeakValueDictionary()


def _directory_lock(container: str, directory: str) -> _DirectoryLock:
    """One lock per (container, directory) for the whole process."""
    key = (container, directory)
    with _registry_lock:
        lock = _directory_locks.get(key)
        if lock is None:
            lock = _directory_locks[key] = _DirectoryLock()
        return lock


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)


@dataclass
class DirectoryIndexEntry:
    name: str
    metadata: Dict[str, Any]
    is_folder: bool = False


@dataclass
class DirectoryIndexDocument:
    files: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    folders: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    # unknown top-level keys written by other tools are carried through
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_bytes(cls, raw: bytes) -> "DirectoryIndexDocument":
        """Parse a stored document. Raises ValueError if it is not a JSON object."""
        data = json.loads(raw.decode("utf-8"))
        if not isinstance(data, dict):
            raise ValueError("index document is not a JSON object")
        files = data.pop("files", None) or {}
        folders = data.pop("folders", None) or {}
        if not isinstance(files, dict) or not isinstance(folders, dict):
            raise ValueError("index 'files'/'folders' must be objects")
        return cls(files=files, folders=folders, extra=data)

    def to_bytes(self) -> bytes:
        body = dict(self.extra)
        body["files"] = self.files
        body["folders"] = self.folders
        return json.dumps(body, indent=2, ensure_ascii=False).encode("utf-8")

    def to_dict(self) -> Dict[str, Any]:
        return {**self.extra, "files": self.files, "folders": self.folders}

    def is_empty(self) -> bool:
        return not self.files and not self.folders

    def get(self, name: str) -> Optional[DirectoryIndexEntry]:
        if name in self.files:
            return DirectoryIndexEntry(name, self.files[name], is_folder=False)
        if name in self.folders:
            return DirectoryIndexEntry(name, self.folders[name], is_folder=True)
        return None

    def put(self, entry: DirectoryIndexEntry) -> bool:
        """Insert or replace ``entry``. Returns False if nothing changed."""
        target, other = (self.folders, self.files) if entry.is_folder else (self.files, self.folders)
        if entry.name in target and entry.name not in other:
            if _canonical(target[entry.name]) == _canonical(entry.metadata):
                return False
        other.pop(entry.name, None)
        target[entry.name] = entry.metadata
        return True

    def remove(self, name: str) -> bool:
        removed = name in self.files or name in self.folders
        self.files.pop(name, None)
        self.folders.pop(name, None)
        return removed


class DirectoryIndex:
    """ETag-guarded access to the ``metadata.json`` of each directory."""

    def __init__(self, storage: StorageClient):
        self.storage = storage

    def read(self, directory: str) -> Tuple[DirectoryIndexDocument, Optional[str]]:
        """
        Load a directory's index document.

        Returns:
            (document, etag). A missing index gives an empty document and
            ``None``. A malformed one gives an empty document but keeps its
            ETag, so the next write replaces it conditionally.
        """
        blob_path = paths.index_path(directory)
        try:
            raw, etag = self.storage.download_with_etag(blob_path)
        except NotFoundError:
            return DirectoryIndexDocument(), None

        try:
            return DirectoryIndexDocument.from_bytes(raw), etag
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning("index_document_malformed", extra={
                "directory": directory,
                "error": str(e)
            })
            return DirectoryIndexDocument(), etag

    def get_entry(self, directory: str, name: str) -> Optional[DirectoryIndexEntry]:
        document, _ = self.read(directory)
        return document.get(name)

    def upsert_entry(
        self,
        directory: str,
        name: str,
        metadata: Dict[str, Any],
        is_folder: bool = False,
    ) -> bool:
        """Add or replace one entry. Returns False when it was already identical."""
        entry = DirectoryIndexEntry(name, metadata, is_folder)
        changed = self._mutate(directory, lambda document: document.put(entry))
        if changed:
            logger.info("index_entry_upserted", extra={
                "directory": directory,
                "entry_name": name,
                "is_folder": is_folder
            })
        return changed

    def remove_entry(self, directory: str, name: str) -> bool:
        """Remove one entry. Removing an absent name is a no-op."""
        changed = self._mutate(directory, lambda document: document.remove(name))
        if changed:
            logger.info("index_entry_removed", extra={"directory": directory, "entry_name": name})
        return changed

    def reassign_document_ids(self, directory: str, new_ids: Dict[str, str]) -> bool:
        """Rewrite ``documentId`` of the named file entries."""
        def apply(document: DirectoryIndexDocument) -> bool:
            changed = False
            for name, document_id in new_ids.items():
                current = document.files.get(name)
                if current is not None and current.get("documentId") != document_id:
                    document.files[name] = {**current, "documentId": document_id}
                    changed = True
            return changed

        return self._mutate(directory, apply)

    def delete_document(self, directory: str) -> bool:
        """Drop a directory's index blob outright (used when the directory goes)."""
        with _directory_lock(self.storage.container_name, directory):
            return self.storage.delete(paths.index_path(directory), missing_ok=True)

    def _mutate(self, directory: str, change: Callable[[DirectoryIndexDocument], bool]) -> bool:
        blob_path = paths.index_path(directory)
        with _directory_lock(self.storage.container_name, directory):
            document, etag = self.read(directory)
            if not change(document):
                return False

            if document.is_empty():
                if etag is None:
                    return False
                self.storage.delete(blob_path, etag=etag)
                logger.info("index_document_deleted", extra={"directory": directory})
                return True

            self.storage.upload(
                blob_path,
                document.to_bytes(),
                content_type="application/json",
                etag=etag,
                create_only=etag is None,
            )
            return True

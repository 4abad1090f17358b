"""
File operations over the blob container.

Each operation is a short pipeline: validate paths, do the physical blob
work (copy, delete, metadata set), then bring the per-directory index in
line. Index updates are best effort: a failure there is returned as a
warning on an otherwise successful result, never rolled back.
"""
import contextvars
import os
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from docvault.errors import (
    ConflictError,
    DocVaultError,
    InvalidPathError,
    InvalidRequestError,
    NotFoundError,
    PreconditionFailedError,
)
from docvault.files import paths
from docvault.index.directory_index import DirectoryIndex
from docvault.index.retry import with_conflict_retry
from docvault.ingest.metadata import DocumentMetadata
from docvault.logging import get_logger
from docvault.storage.base import PLACEHOLDER_METADATA_KEY, BlobPrefix, BlobRecord, StorageClient

logger = get_logger(__name__)

TRANSFER_MAX_WORKERS = int(os.getenv("TRANSFER_MAX_WORKERS", "8"))
DOWNLOAD_URL_TTL_SECONDS = int(os.getenv("DOWNLOAD_URL_TTL_SECONDS", "3600"))
DIRECTORY_CONTENT_TYPE = "inode/directory"


class ItemKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"


@dataclass
class ItemError:
    path: str
    message: str
    error: Optional[str] = None

    @classmethod
    def from_exception(cls, path: str, exc: DocVaultError) -> "ItemError":
        return cls(path=path, message=exc.message, error=exc.error or type(exc).__name__)

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "message": self.message, "error": self.error}


@dataclass
class OperationResult:
    path: str
    message: str = ""
    document_id: Optional[str] = None
    created: bool = True
    items_copied: int = 0
    items_deleted: int = 0
    errors: List[ItemError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class BatchResult:
    succeeded: List[str] = field(default_factory=list)
    errors: List[ItemError] = field(default_factory=list)
    items_copied: int = 0
    items_deleted: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.errors)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


class FileOperations:
    """Upload, delete, rename, move and copy, keeping ``metadata.json`` in step."""

    def __init__(
        self,
        storage: StorageClient,
        index: Optional[DirectoryIndex] = None,
        max_workers: Optional[int] = None,
    ):
        self.storage = storage
        self.index = index or DirectoryIndex(storage)
        self.max_workers = max_workers or TRANSFER_MAX_WORKERS

    # -- lookups --

    def classify(self, path: str) -> ItemKind:
        """
        Decide whether ``path`` names a file or a directory.

        An exact, non-placeholder blob is a file. Otherwise a placeholder
        ``<path>/`` or any blob under ``<path>/`` makes it a directory.

        Raises:
            NotFoundError: If neither exists
        """
        path = paths.validate(path)
        try:
            if not self.storage.get_blob_info(path).is_directory_placeholder:
                return ItemKind.FILE
        except NotFoundError:
            pass
        if self.storage.has_children(paths.dir_prefix(path)):
            return ItemKind.DIRECTORY
        raise NotFoundError(f"Item not found: {path}", error="NotFound")

    def _name_taken(self, path: str) -> bool:
        return self.storage.exists(path) or self.storage.has_children(paths.dir_prefix(path))

    def list_directory(self, path: Optional[str] = "") -> List[Dict[str, Any]]:
        directory = paths.validate(path, allow_root=True)
        prefix = paths.dir_prefix(directory)
        items = []
        seen_any = False

        for item in self.storage.walk(prefix):
            seen_any = True
            if paths.is_system_path(item.path):
                continue
            if isinstance(item, BlobPrefix):
                items.append({
                    "id": item.path,
                    "name": item.name,
                    "path": item.path,
                    "isDirectory": True,
                    "size": 0,
                    "lastModified": None,
                    "contentType": DIRECTORY_CONTENT_TYPE,
                    "metadata": {},
                })
                continue
            if item.path == prefix or paths.is_index_file(item.path) or item.is_directory_placeholder:
                continue
            items.append({
                "id": item.path,
                "name": item.name,
                "path": item.path,
                "isDirectory": False,
                "size": item.size,
                "lastModified": _iso(item.last_modified),
                "contentType": item.content_type,
                "metadata": item.metadata,
            })

        if directory and not seen_any:
            raise NotFoundError(f"Directory not found: {directory}", error="NotFound")

        logger.info("directory_listed", extra={"path": directory, "count": len(items)})
        return items

    def get_properties(self, path: str) -> Dict[str, Any]:
        path = paths.validate(path)
        kind = self.classify(path)
        if kind is ItemKind.FILE:
            info = self.storage.get_blob_info(path)
            return {
                "name": info.name,
                "path": path,
                "isDirectory": False,
                "size": info.size,
                "lastModified": _iso(info.last_modified),
                "contentType": info.content_type,
                "etag": info.etag,
                "metadata": info.metadata,
            }

        try:
            placeholder = self.storage.get_blob_info(paths.dir_prefix(path))
        except NotFoundError:
            placeholder = None
        return {
            "name": paths.basename(path),
            "path": path,
            "isDirectory": True,
            "size": None,
            "lastModified": _iso(placeholder.last_modified) if placeholder else None,
            "contentType": DIRECTORY_CONTENT_TYPE,
            "etag": placeholder.etag if placeholder else None,
            "metadata": placeholder.metadata if placeholder else {},
        }

    def get_index_document(self, path: Optional[str]) -> Dict[str, Any]:
        """The parsed ``metadata.json`` for a directory (or the index path itself)."""
        target = paths.validate(path, allow_root=True)
        directory = paths.parent(target) if paths.is_index_file(target) else target
        document, etag = self.index.read(directory)
        if etag is None:
            raise NotFoundError(f"No metadata index in: {directory or '(root)'}", error="NotFound")
        return document.to_dict()

    def download_url(self, path: str, ttl_seconds: Optional[int] = None) -> str:
        path = paths.validate(path)
        if self.storage.get_blob_info(path).is_directory_placeholder:
            raise InvalidRequestError(f"Not a file: {path}", error="NotAFile")
        return self.storage.generate_read_url(path, ttl_seconds or DOWNLOAD_URL_TTL_SECONDS)

    # -- index helpers --

    def _index_call(self, warnings: List[str], description: str, fn: Callable, *args) -> None:
        """Run an index mutation with retry; failures become warnings."""
        try:
            with_conflict_retry(fn, *args)
        except DocVaultError as e:
            logger.warning("index_update_failed", extra={
                "operation": description,
                "error": e.message
            })
            warnings.append(f"Search index update failed ({description}): {e.message}")

    def _index_entry(self, directory: str, name: str, warnings: List[str]):
        try:
            return self.index.get_entry(directory, name)
        except DocVaultError as e:
            logger.warning("index_read_failed", extra={"directory": directory, "entry_name": name, "error": e.message})
            warnings.append(f"Could not read search index for {name}: {e.message}")
            return None

    # -- mutations --

    def create_directory(self, path: str) -> OperationResult:
        path = paths.validate(path)
        if self.storage.exists(path):
            raise ConflictError(f"A file with the same name already exists: {path}", error="NameConflict")

        placeholder = paths.dir_prefix(path)
        if self.storage.exists(placeholder):
            return OperationResult(path=path, message="Directory already exists", created=False)
        try:
            self.storage.upload(
                placeholder,
                b"",
                content_type=DIRECTORY_CONTENT_TYPE,
                metadata={PLACEHOLDER_METADATA_KEY: "true"},
                create_only=True,
            )
        except PreconditionFailedError:
            return OperationResult(path=path, message="Directory already exists", created=False)

        logger.info("directory_created", extra={"path": path})
        return OperationResult(path=path, message="Directory created.")

    def upload(
        self,
        content: bytes,
        target_path: str,
        metadata: Optional[DocumentMetadata] = None,
        content_type: Optional[str] = None,
        original_filename: Optional[str] = None,
    ) -> OperationResult:
        """
        Store a file and describe it in its directory's index.

        Args:
            content: File bytes
            target_path: Full blob path; backslashes are treated as separators
            metadata: Validated client metadata; a documentId is generated if absent
            content_type: MIME type to store with the blob
            original_filename: Name of the file on the client

        Returns:
            OperationResult with ``document_id``; ``warnings`` lists any
            follow-up step that failed after the blob was written
        """
        target = paths.validate((target_path or "").replace("\\", "/"))
        if paths.is_index_file(target):
            raise InvalidPathError(f"'{paths.INDEX_FILE_NAME}' is a reserved name", error="ReservedName")
        if self.storage.has_children(paths.dir_prefix(target)):
            raise ConflictError(f"A directory with the same name already exists: {target}", error="NameConflict")

        metadata = metadata or DocumentMetadata()
        document_id = metadata.ensure_document_id()
        blob_metadata = metadata.to_blob_metadata(original_filename=original_filename)
        warnings: List[str] = []

        self.storage.upload(target, content, content_type=content_type, metadata=blob_metadata)

        try:
            self.storage.set_metadata(target, blob_metadata)
        except DocVaultError as e:
            logger.warning("metadata_reassert_failed", extra={"blob_path": target, "error": e.message})
            warnings.append(f"File stored, but setting its metadata failed: {e.message}")

        self._index_call(
            warnings, f"upsert {target}",
            self.index.upsert_entry, paths.parent(target), paths.basename(target), metadata.to_index_entry(), False,
        )

        logger.info("file_uploaded", extra={
            "blob_path": target,
            "document_id": document_id,
            "size": len(content),
            "warnings": len(warnings)
        })
        return OperationResult(
            path=target,
            message="File uploaded successfully with metadata!",
            document_id=document_id,
            warnings=warnings,
        )

    def update_metadata(self, blob_path: str, metadata: DocumentMetadata) -> OperationResult:
        """Replace a file's structured metadata; the content type is left alone."""
        path = paths.validate(blob_path)
        info = self.storage.get_blob_info(path)
        if info.is_directory_placeholder:
            raise InvalidRequestError(f"Not a file: {path}", error="NotAFile")

        # edits never change a document's identity
        current_id = info.metadata.get("documentid")
        if current_id:
            if metadata.document_id and metadata.document_id != current_id:
                raise ConflictError(
                    f"documentId of {path} is {current_id}; it cannot be changed by a metadata edit",
                    error="DocumentIdMismatch",
                )
            metadata.document_id = current_id
        document_id = metadata.ensure_document_id()

        self.storage.set_metadata(
            path, metadata.to_blob_metadata(original_filename=info.metadata.get("originalfilename"))
        )
        warnings: List[str] = []
        self._index_call(
            warnings, f"upsert {path}",
            self.index.upsert_entry, paths.parent(path), paths.basename(path), metadata.to_index_entry(), False,
        )
        logger.info("metadata_updated", extra={"blob_path": path, "document_id": document_id})
        return OperationResult(path=path, message="Metadata updated.", document_id=document_id, warnings=warnings)

    def delete(self, path: str) -> OperationResult:
        path = paths.validate(path)
        kind = self.classify(path)
        directory, name = paths.parent(path), paths.basename(path)
        result = OperationResult(path=path)

        if kind is ItemKind.FILE:
            self.storage.delete(path)
            result.items_deleted = 1
            result.message = f'File "{path}" deleted.'
        else:
            for blob in list(self.storage.iter_blobs(paths.dir_prefix(path))):
                try:
                    if self.storage.delete(blob.path, missing_ok=True):
                        result.items_deleted += 1
                except DocVaultError as e:
                    logger.error("blob_delete_failed", extra={"blob_path": blob.path, "error": e.message})
                    result.errors.append(ItemError.from_exception(blob.path, e))
            try:
                self.index.delete_document(path)
                self.storage.delete(paths.dir_prefix(path), missing_ok=True)
            except DocVaultError as e:
                result.errors.append(ItemError.from_exception(path, e))
            if result.errors:
                result.message = f'Directory "{path}" partially deleted: {len(result.errors)} item(s) could not be removed.'
            else:
                result.message = f'Directory "{path}" deleted.'

        # a directory with blobs left behind keeps its entry in the parent
        if not result.errors:
            self._index_call(result.warnings, f"remove {path}", self.index.remove_entry, directory, name)
        logger.info("item_deleted", extra={
            "path": path,
            "kind": kind.value,
            "items_deleted": result.items_deleted,
            "errors": len(result.errors)
        })
        return result

    def rename(self, original_path: str, new_path: str) -> OperationResult:
        original = paths.validate(original_path)
        target = paths.validate(new_path)
        if paths.parent(original) != paths.parent(target):
            raise InvalidPathError("Rename must stay in the same directory; use move instead", error="CrossDirectoryRename")
        if original == target:
            raise InvalidPathError("New name is the same as the current one", error="SameName")

        kind = self.classify(original)
        if self._name_taken(target):
            raise ConflictError(f"An item named '{paths.basename(target)}' already exists", error="NameConflict")

        directory = paths.parent(original)
        result = OperationResult(path=target)
        entry = self._index_entry(directory, paths.basename(original), result.warnings)
        metadata = entry.metadata if entry else {}

        self._relocate(original, target, kind, move=True, result=result)

        if not result.errors:
            self._index_call(
                result.warnings, f"remove {original}",
                self.index.remove_entry, directory, paths.basename(original),
            )
        if result.items_copied:
            self._index_call(
                result.warnings, f"upsert {target}",
                self.index.upsert_entry, directory, paths.basename(target), metadata, kind is ItemKind.DIRECTORY,
            )
        result.message = f'Renamed "{original}" to "{target}".'
        logger.info("item_renamed", extra={"source": original, "destination": target, "errors": len(result.errors)})
        return result

    def move(self, source_path: str, destination_folder: str) -> OperationResult:
        return self._transfer(source_path, destination_folder, move=True)

    def copy(self, source_path: str, destination_folder: str) -> OperationResult:
        return self._transfer(source_path, destination_folder, move=False)

    def move_batch(self, source_paths: Sequence[str], destination_folder: str) -> BatchResult:
        return self._batch(source_paths, destination_folder, self.move)

    def copy_batch(self, source_paths: Sequence[str], destination_folder: str) -> BatchResult:
        return self._batch(source_paths, destination_folder, self.copy)

    def _batch(self, source_paths: Sequence[str], destination_folder: str, operation) -> BatchResult:
        if not source_paths:
            raise InvalidRequestError("At least one source path is required", error="NoSources")

        batch = BatchResult()
        for source in source_paths:
            try:
                result = operation(source, destination_folder)
            except DocVaultError as e:
                logger.warning("batch_item_failed", extra={"path": source, "error": e.message})
                batch.errors.append(ItemError.from_exception(source, e))
                continue

            batch.items_copied += result.items_copied
            batch.items_deleted += result.items_deleted
            batch.warnings.extend(result.warnings)
            if result.errors:
                batch.errors.append(ItemError(
                    path=source,
                    message=f"{len(result.errors)} item(s) could not be transferred: "
                            + "; ".join(f"{e.path}: {e.message}" for e in result.errors),
                    error="PartialTransfer",
                ))
            else:
                batch.succeeded.append(source)

        logger.info("batch_completed", extra={
            "operation": operation.__name__,
            "succeeded": len(batch.succeeded),
            "failed": len(batch.errors)
        })
        return batch

    def _transfer(self, source_path: str, destination_folder: str, move: bool) -> OperationResult:
        source = paths.validate(source_path)
        destination = paths.validate(destination_folder, allow_root=True)
        kind = self.classify(source)
        source_dir, name = paths.parent(source), paths.basename(source)

        if kind is ItemKind.DIRECTORY and paths.is_same_or_descendant(destination, source):
            raise InvalidPathError("Cannot move or copy a directory into itself", error="InvalidDestination")

        if destination == source_dir:
            if move:
                raise InvalidPathError(f"'{name}' is already in that directory", error="SameLocation")
            target_name = paths.copy_name(
                name,
                lambda candidate: self._name_taken(paths.join(destination, candidate)),
                is_directory=kind is ItemKind.DIRECTORY,
            )
        else:
            target_name = name
            if self._name_taken(paths.join(destination, target_name)):
                raise ConflictError(
                    f"An item named '{target_name}' already exists in the destination", error="NameConflict"
                )

        target = paths.join(destination, target_name)
        result = OperationResult(path=target)
        entry = self._index_entry(source_dir, name, result.warnings)

        new_ids = self._relocate(source, target, kind, move=move, result=result)

        if move and not result.errors:
            self._index_call(result.warnings, f"remove {source}", self.index.remove_entry, source_dir, name)
        if entry is not None and result.items_copied:
            metadata = entry.metadata
            if not move and kind is ItemKind.FILE and target in new_ids:
                metadata = {**metadata, "documentId": new_ids[target]}
            self._index_call(
                result.warnings, f"upsert {target}",
                self.index.upsert_entry, destination, target_name, metadata, entry.is_folder,
            )

        verb = "Moved" if move else "Copied"
        result.message = f'{verb} "{source}" to "{target}".'
        logger.info("item_moved" if move else "item_copied", extra={
            "source": source,
            "destination": target,
            "items_copied": result.items_copied,
            "errors": len(result.errors)
        })
        return result

    def _relocate(
        self,
        source: str,
        target: str,
        kind: ItemKind,
        move: bool,
        result: OperationResult,
    ) -> Dict[str, str]:
        """
        Copy (and for a move, delete) every blob of ``source`` to ``target``.

        Copies get a fresh documentId per file. Returns the new ids keyed by
        destination blob path.
        """
        if kind is ItemKind.FILE:
            record = self.storage.get_blob_info(source)
            new_id = None if move else str(uuid.uuid4())
            self._transfer_blob(record, target, move, new_id)
            result.items_copied = 1
            result.items_deleted = 1 if move else 0
            return {target: new_id} if new_id else {}

        source_prefix, target_prefix = paths.dir_prefix(source), paths.dir_prefix(target)
        plan = []
        for record in self.storage.iter_blobs(source_prefix):
            destination = target_prefix + record.path[len(source_prefix):]
            fresh = not move and not record.is_directory_placeholder and not paths.is_index_file(record.path)
            plan.append((record, destination, str(uuid.uuid4()) if fresh else None))

        new_ids: Dict[str, str] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {}
            for record, destination, new_id in plan:
                ctx = contextvars.copy_context()
                futures[pool.submit(ctx.run, self._transfer_blob, record, destination, move, new_id)] = (
                    record, destination, new_id
                )
            for future in as_completed(futures):
                record, destination, new_id = futures[future]
                try:
                    future.result()
                except DocVaultError as e:
                    logger.error("transfer_failed", extra={
                        "source": record.path,
                        "destination": destination,
                        "error": e.message
                    })
                    result.errors.append(ItemError.from_exception(record.path, e))
                    continue
                result.items_copied += 1
                if move:
                    result.items_deleted += 1
                if new_id:
                    new_ids[destination] = new_id

        if new_ids:
            by_directory: Dict[str, Dict[str, str]] = {}
            for destination, new_id in new_ids.items():
                by_directory.setdefault(paths.parent(destination), {})[paths.basename(destination)] = new_id
            for directory, ids in by_directory.items():
                self._index_call(result.warnings, f"reassign ids in {directory}",
                                 self.index.reassign_document_ids, directory, ids)
        return new_ids

    def _transfer_blob(self, record: BlobRecord, destination: str, move: bool, new_id: Optional[str]) -> None:
        self.storage.copy(record.path, destination)
        metadata = dict(record.metadata)
        if new_id:
            metadata["documentid"] = new_id
        self.storage.set_metadata(destination, metadata)
        if move:
            self.storage.delete(record.path, missing_ok=True)

"""Streaming ZIP export of files and directories."""
import time
from typing import Iterator, List, Sequence, Tuple

import zipstream

from docvault.errors import DocVaultError, InvalidRequestError
from docvault.files import paths
from docvault.files.operations import FileOperations, ItemKind
from docvault.logging import get_logger

logger = get_logger(__name__)


def archive_name(selected: Sequence[str]) -> str:
    stamp = int(time.time() * 1000)
    if len(selected) == 1:
        return f"{paths.basename(selected[0]) or 'download'}-{stamp}.zip"
    return f"download-{stamp}.zip"


def _error_note(arcname: str) -> str:
    head, leaf = paths.parent(arcname), paths.basename(arcname) or "item"
    return paths.join(head, f"ERROR_{leaf}.txt")


class ArchiveStreamer:
    """
    Builds a ZIP of the selected paths as a byte iterator.

    Entries are flushed one at a time, so only one source blob's chunk
    stream is open at any moment and the archive is never held in memory.
    A blob that cannot be read becomes an ``ERROR_<name>.txt`` entry.
    """

    def __init__(self, operations: FileOperations, chunk_size: int = 1024 * 1024):
        self.operations = operations
        self.storage = operations.storage
        self.chunk_size = chunk_size

    def open(self, selected: Sequence[str]) -> Tuple[str, Iterator[bytes]]:
        """Validate the request up front and return (filename, body iterator)."""
        cleaned: List[str] = [p for p in (selected or []) if p and p.strip()]
        if not cleaned:
            raise InvalidRequestError("At least one path is required", error="NoPaths")
        return archive_name(cleaned), self.stream(cleaned)

    def stream(self, selected: Sequence[str]) -> Iterator[bytes]:
        archive = zipstream.ZipFile(mode="w", compression=zipstream.ZIP_DEFLATED, allowZip64=True)
        entries = 0

        for raw_path in selected:
            try:
                path = paths.validate(raw_path)
                kind = self.operations.classify(path)
            except DocVaultError as e:
                logger.warning("archive_item_missing", extra={"path": raw_path, "error": e.message})
                archive.writestr(_error_note(paths.basename(raw_path)), self._note(raw_path, e))
                yield from archive.flush()
                continue

            if kind is ItemKind.FILE:
                entries += 1
                yield from self._add_blob(archive, path, paths.basename(path))
                continue

            base = paths.basename(path)
            prefix = paths.dir_prefix(path)
            try:
                for record in self.storage.iter_blobs(prefix):
                    if record.is_directory_placeholder or paths.is_index_file(record.path):
                        continue
                    entries += 1
                    yield from self._add_blob(archive, record.path, paths.join(base, record.path[len(prefix):]))
            except DocVaultError as e:
                logger.error("archive_listing_failed", extra={"path": path, "error": e.message})
                archive.writestr(paths.join(base, "ERROR_listing_directory.txt"), self._note(path, e))
                yield from archive.flush()

        yield from archive
        logger.info("archive_streamed", extra={"paths": len(selected), "entries": entries})

    def _add_blob(self, archive, blob_path: str, arcname: str) -> Iterator[bytes]:
        try:
            chunks = self.storage.open_stream(blob_path, chunk_size=self.chunk_size)
        except DocVaultError as e:
            logger.warning("archive_entry_failed", extra={"blob_path": blob_path, "error": e.message})
            archive.writestr(_error_note(arcname), self._note(blob_path, e))
        else:
            archive.write_iter(arcname, chunks)
        yield from archive.flush()

    @staticmethod
    def _note(path: str, error: DocVaultError) -> bytes:
        lines = [f"Could not add '{path}' to the archive.", f"Reason: {error.message}"]
        if error.error:
            lines.append(f"Code: {error.error}")
        return ("\n".join(lines) + "\n").encode("utf-8")

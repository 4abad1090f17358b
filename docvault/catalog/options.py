"""
Metadata options: the editable vocabularies (document types, languages,
countries, topics, collections, jurisdictions) the upload and edit forms
offer. Kept as one JSON blob under the service's reserved directory so it
travels with the container and never shows up in listings or search.
"""
import copy
import json
from typing import Any, Dict

from docvault.errors import DocVaultError, InvalidRequestError, NotFoundError
from docvault.files import paths
from docvault.logging import get_logger
from docvault.storage.base import StorageClient

logger = get_logger(__name__)

OPTIONS_BLOB_PATH = paths.join(paths.SYSTEM_DIRECTORY, "metadata-options.json")

DEFAULT_OPTIONS: Dict[str, Any] = {
    "documentTypes": [],
    "languages": [],
    "countries": [],
    "topics": [],
    "collections": [],
    "jurisdictions": {"types": [], "names": []},
}


class MetadataOptionsStore:
    def __init__(self, storage: StorageClient, blob_path: str = OPTIONS_BLOB_PATH):
        self.storage = storage
        self.blob_path = blob_path
        self.backup_path = f"{blob_path}.backup"

    def load(self) -> Dict[str, Any]:
        """Stored options, or the empty defaults when none are stored or they are unreadable."""
        try:
            raw = self.storage.download(self.blob_path)
        except NotFoundError:
            return copy.deepcopy(DEFAULT_OPTIONS)

        try:
            options = json.loads(raw.decode("utf-8"))
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning("metadata_options_malformed", extra={"blob_path": self.blob_path, "error": str(e)})
            return copy.deepcopy(DEFAULT_OPTIONS)
        if not isinstance(options, dict):
            logger.warning("metadata_options_malformed", extra={
                "blob_path": self.blob_path,
                "error": f"expected an object, got {type(options).__name__}"
            })
            return copy.deepcopy(DEFAULT_OPTIONS)

        logger.info("metadata_options_loaded", extra={"keys": sorted(options)})
        return options

    def save(self, options: Dict[str, Any], backup: bool = True) -> None:
        """
        Replace the stored options.

        With ``backup`` the previous version is copied to ``<path>.backup``
        first; a failed backup is logged and does not stop the save.
        """
        if not isinstance(options, dict):
            raise InvalidRequestError("Metadata options must be a JSON object", error="InvalidOptions")

        if backup and self.storage.exists(self.blob_path):
            try:
                self.storage.copy(self.blob_path, self.backup_path)
            except DocVaultError as e:
                logger.warning("metadata_options_backup_failed", extra={"blob_path": self.backup_path, "error": e.message})

        self.storage.upload(
            self.blob_path,
            json.dumps(options, indent=2, ensure_ascii=False).encode("utf-8"),
            content_type="application/json",
        )
        logger.info("metadata_options_saved", extra={"keys": sorted(options), "backup": backup})

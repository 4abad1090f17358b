"""Document metadata: validation at ingress and flattening to blob metadata."""
import json
import uuid
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from docvault.errors import InvalidRequestError
from docvault.logging import get_logger

logger = get_logger(__name__)

# blob metadata key -> model attribute, in the order they are written
BLOB_METADATA_FIELDS = {
    "documentid": "document_id",
    "documenttype": "document_type",
    "level": "level",
    "language": "language",
    "tags": "tags",
    "topics": "topics",
    "accesslevel": "access_level",
    "filetype": "file_type",
    "country": "country",
    "jurisdiction": "jurisdiction",
    "license": "license",
    "entitiesmentioned": "entities_mentioned",
    "collection": "collection",
}

LIST_FIELDS = {"tags", "topics", "entitiesmentioned"}


class DocumentMetadata(BaseModel):
    """Structured metadata a client attaches to a document.

    Unknown keys (``structuredPath``, ``publicationDate``, ...) are kept as
    extras so the index entry round-trips exactly what the client sent.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    document_id: Optional[str] = None
    document_type: Optional[str] = None
    level: Optional[str] = None
    language: Optional[str] = None
    tags: Optional[List[str]] = None
    topics: Optional[List[str]] = None
    access_level: Optional[str] = None
    file_type: Optional[str] = None
    country: Optional[str] = None
    jurisdiction: Optional[str] = None
    license: Optional[str] = None
    entities_mentioned: Optional[List[str]] = None
    collection: Optional[str] = None
    description: Optional[str] = None

    @field_validator("tags", "topics", "entities_mentioned", mode="before")
    @classmethod
    def _split_comma_string(cls, value):
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    def ensure_document_id(self) -> str:
        """Assign a fresh UUID if the client did not supply one."""
        if not self.document_id:
            self.document_id = str(uuid.uuid4())
            logger.info("document_id_generated", extra={"document_id": self.document_id})
        return self.document_id

    def to_blob_metadata(self, original_filename: Optional[str] = None) -> Dict[str, str]:
        """Flatten into the provider's string map: lower-case keys, arrays
        comma-joined, empty values dropped. ``description`` is left out."""
        flat: Dict[str, str] = {}
        for key, attr in BLOB_METADATA_FIELDS.items():
            value = getattr(self, attr)
            if isinstance(value, list):
                value = ",".join(str(v) for v in value)
            if value:
                flat[key] = str(value)
        if original_filename:
            flat["originalfilename"] = original_filename
        return flat

    def to_index_entry(self) -> Dict[str, Any]:
        """The JSON object stored under this document's name in metadata.json."""
        entry = self.model_dump(by_alias=True, exclude_unset=True)
        if self.document_id:
            entry["documentId"] = self.document_id
        return entry


def parse_metadata(raw: Union[str, bytes, Dict[str, Any], None]) -> DocumentMetadata:
    """Parse and validate client metadata (a JSON string or an object).

    Raises:
        InvalidRequestError: If the payload is not a JSON object or fails validation
    """
    if raw is None or raw == "":
        return DocumentMetadata()
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidRequestError("Invalid metadata: not valid JSON", error="InvalidMetadata", details=str(e)) from e
    if not isinstance(raw, dict):
        raise InvalidRequestError("Invalid metadata: expected a JSON object", error="InvalidMetadata")
    try:
        return DocumentMetadata.model_validate(raw)
    except ValidationError as e:
        logger.warning("metadata_validation_failed", extra={"errors": e.errors(include_url=False, include_context=False)})
        raise InvalidRequestError(
            "Invalid metadata", error="InvalidMetadata", details=e.errors(include_url=False, include_context=False)
        ) from e

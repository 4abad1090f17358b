"""
Tag search over blob metadata merged with directory index entries.

Matching is deliberately forgiving: both sides are lower-cased, underscores
become spaces, whitespace is collapsed, and a filter matches when its value
is contained in the field value.
"""
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from docvault.errors import DocVaultError, InvalidRequestError
from docvault.files import paths
from docvault.index.directory_index import DirectoryIndex
from docvault.logging import get_logger
from docvault.storage.base import BlobRecord, StorageClient

logger = get_logger(__name__)

SEARCH_MAX_BLOBS = int(os.getenv("SEARCH_MAX_BLOBS", "10000"))

CATEGORY_ALIASES = {
    "jurisdictiontype": ("jurisdiction_type",),
    "jurisdictionname": ("jurisdiction_name",),
    "thematicfocusprimary": ("thematicfocus_primary",),
    "thematicfocussubthemes": ("thematicfocus_subthemes",),
    "issuingauthority_type": ("issuingauthority_type", "issuing_authority_type"),
    "workflowstage_primary": ("workflowstage_primary", "workflow_stage_primary"),
}

LIST_VALUED_FIELDS = {"tags", "topics", "entitiesmentioned", "thematicfocus_subthemes"}

# structuredPath children that flatten straight into the top level
_UNPREFIXED_GROUPS = {"item"}


def normalize_match_value(value: Any) -> str:
    text = str(value or "").lower().replace("_", " ")
    return re.sub(r"\s+", " ", text).strip()


def value_matches(candidate: Any, wanted: str) -> bool:
    needle = normalize_match_value(wanted)
    if not needle:
        return False
    return needle in normalize_match_value(candidate)


@dataclass
class TagFilter:
    category: str
    value: str


def _scalar(value: Any) -> str:
    if isinstance(value, list):
        return ",".join(str(v) for v in value if v is not None)
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


def _flatten_into(target: Dict[str, str], value: Any, key: str) -> None:
    if isinstance(value, dict):
        for child_key, child in value.items():
            _flatten_into(target, child, f"{key}_{child_key.lower()}" if key else child_key.lower())
    else:
        target[key] = _scalar(value)


def merge_metadata(blob_metadata: Dict[str, str], entry: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Blob metadata overlaid with a flattened index entry (the entry wins)."""
    merged = dict(blob_metadata)
    if not entry:
        return merged

    structured = entry.get("structuredPath")
    if isinstance(structured, dict):
        for key, value in structured.items():
            if key in _UNPREFIXED_GROUPS and isinstance(value, dict):
                _flatten_into(merged, value, "")
            else:
                _flatten_into(merged, value, key.lower())

    for key, value in entry.items():
        if key == "structuredPath":
            continue
        _flatten_into(merged, value, key.lower())
    return merged


def _candidate_keys(category: str, merged: Dict[str, str]) -> List[str]:
    category = category.lower().strip()
    if category in CATEGORY_ALIASES:
        return [k for k in CATEGORY_ALIASES[category] if k in merged]
    if category in merged:
        return [category]
    return [k for k in merged if category in k]


def filter_matches(tag: TagFilter, merged: Dict[str, str]) -> bool:
    for key in _candidate_keys(tag.category, merged):
        value = merged.get(key)
        if not value:
            continue
        if key in LIST_VALUED_FIELDS:
            if any(value_matches(part.strip(), tag.value) for part in value.split(",")):
                return True
        elif value_matches(value, tag.value):
            return True
    return False


class MetadataSearch:
    """Scan blobs under a scope and keep those whose metadata matches the filters."""

    def __init__(
        self,
        storage: StorageClient,
        index: Optional[DirectoryIndex] = None,
        max_blobs: Optional[int] = None,
        page_size: int = 100,
    ):
        self.storage = storage
        self.index = index or DirectoryIndex(storage)
        self.max_blobs = max_blobs or SEARCH_MAX_BLOBS
        self.page_size = page_size

    def _scope(self, current_path: str, deep: bool) -> Iterator[BlobRecord]:
        # the scoped scan still covers every sub-directory of current_path
        prefix = "" if deep else paths.dir_prefix(current_path)
        return self.storage.iter_blobs(prefix, page_size=self.page_size)

    def search(
        self,
        filters: Sequence[TagFilter],
        current_path: Optional[str] = "",
        deep: bool = False,
        logic: str = "AND",
    ) -> Dict[str, Any]:
        """
        Run a tag search.

        Args:
            filters: (category, value) pairs
            current_path: Directory scanned, sub-directories included, when ``deep`` is False
            deep: Scan the whole container instead of one directory
            logic: "AND" (every filter matches) or "OR" (any filter matches)

        Returns:
            {"items", "totalItems", "truncated", "message"}
        """
        logic = (logic or "AND").upper()
        if logic not in ("AND", "OR"):
            raise InvalidRequestError(f"Unknown filter logic: {logic}", error="InvalidFilterLogic")
        filters = [f for f in filters if f.category and f.value]
        if not filters:
            raise InvalidRequestError("At least one tag is required for searching", error="NoTags")
        directory = paths.validate(current_path, allow_root=True)

        combine = all if logic == "AND" else any
        index_cache: Dict[str, Dict[str, Any]] = {}
        items = []
        scanned = 0
        truncated = False

        for record in self._scope(directory, deep):
            if scanned >= self.max_blobs:
                truncated = True
                break
            scanned += 1
            if record.is_directory_placeholder or paths.is_index_file(record.path) or paths.is_system_path(record.path):
                continue

            parent = paths.parent(record.path)
            if parent not in index_cache:
                index_cache[parent] = self._load_entries(parent)
            merged = merge_metadata(record.metadata, index_cache[parent].get(record.name))

            if combine(filter_matches(tag, merged) for tag in filters):
                items.append({
                    "id": f"blob:{record.path}",
                    "name": record.name,
                    "path": record.path,
                    "isDirectory": False,
                    "size": record.size,
                    "lastModified": record.last_modified.isoformat() if record.last_modified else None,
                    "contentType": record.content_type,
                    "metadata": merged,
                })

        message = f"Found {len(items)} matching files ({logic} logic)"
        if truncated:
            message += f"; stopped after scanning {self.max_blobs} blobs"
        logger.info("metadata_search_completed", extra={
            "filters": len(filters),
            "logic": logic,
            "deep": deep,
            "scanned": scanned,
            "matches": len(items),
            "truncated": truncated
        })
        return {"items": items, "totalItems": len(items), "truncated": truncated, "message": message}

    def _load_entries(self, directory: str) -> Dict[str, Any]:
        try:
            document, _ = self.index.read(directory)
        except DocVaultError as e:
            logger.warning("search_index_unavailable", extra={"directory": directory, "error": e.message})
            return {}
        return document.files


def parse_filters(raw: Iterable[Dict[str, Any]]) -> List[TagFilter]:
    """Accept ``{category, value}`` as well as the older ``{category, tag}``."""
    return [
        TagFilter(category=str(item.get("category") or ""), value=str(item.get("value") or item.get("tag") or ""))
        for item in raw
    ]

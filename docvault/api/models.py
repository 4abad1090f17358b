"""API request/response models."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """snake_case in Python, camelCase on the wire; either is accepted on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# File manager models
class DirectoryRequest(CamelModel):
    path: str = Field(..., description="Directory path to create")


class MoveRequest(CamelModel):
    source_path: str = Field(..., description="File or directory to move/copy")
    destination_folder_path: str = Field("", description="Target directory; empty for the container root")


class BatchRequest(CamelModel):
    source_paths: List[str] = Field(..., description="Files or directories to move/copy")
    destination_folder_path: str = Field("", description="Target directory; empty for the container root")


class RenameRequest(CamelModel):
    original_path: str
    new_path: str


class ZipRequest(CamelModel):
    paths: List[str] = Field(..., description="Files and directories to include in the archive")


class UpdateMetadataRequest(CamelModel):
    blob_path: str
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Structured document metadata")


class TagFilterModel(CamelModel):
    category: str
    value: Optional[str] = None
    tag: Optional[str] = Field(None, description="Older name for value")


class SearchRequest(CamelModel):
    tags: List[TagFilterModel] = Field(default_factory=list)
    current_path: str = ""
    deep_search: bool = False
    filter_logic: str = "AND"


class ItemErrorModel(CamelModel):
    path: str
    message: str
    error: Optional[str] = None


class OperationResponse(CamelModel):
    message: str
    path: Optional[str] = None
    items_copied: int = 0
    items_deleted: int = 0
    errors: List[ItemErrorModel] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class BatchResponse(CamelModel):
    message: str
    succeeded: List[str]
    success_count: int
    errors: List[ItemErrorModel]
    items_copied: int = 0
    items_deleted: int = 0
    warnings: List[str] = Field(default_factory=list)


class UploadResponse(CamelModel):
    message: str
    file_path: str
    document_id: str
    warnings: List[str] = Field(default_factory=list)


# RAG models
class QueryRequest(CamelModel):
    query_text: str = Field(..., description="Text to match against indexed chunks")
    top_k: int = Field(default=3, ge=1, le=50)


class AskRequest(CamelModel):
    question: str
    top_k: int = Field(default=3, ge=1, le=20)


class IndexRequest(CamelModel):
    blob_path: str = Field(..., description="Path to blob in storage")


class IndexResponse(CamelModel):
    job_id: str
    status: str
    message: str


class JobStatus(CamelModel):
    job_id: str
    status: str  # pending, processing, done, failed
    blob_path: Optional[str] = None
    doc_id: Optional[str] = None
    error: Optional[str] = None
    counts: Optional[Dict[str, int]] = None
    created_at: str
    updated_at: str

import json

import pytest

from docvault.errors import ConflictError, InvalidPathError, InvalidRequestError, NotFoundError, UpstreamError
from docvault.files.operations import FileOperations, ItemKind
from docvault.ingest.metadata import parse_metadata
from docvault.storage.memory import InMemoryStorageClient
from fakes import RefusingStorage


def index_files(storage, directory):
    path = f"{directory}/metadata.json" if directory else "metadata.json"
    if not storage.exists(path):
        return {}
    return json.loads(storage.download(path))["files"]


def index_folders(storage, directory):
    path = f"{directory}/metadata.json" if directory else "metadata.json"
    if not storage.exists(path):
        return {}
    return json.loads(storage.download(path))["folders"]


def upload(ops, path, metadata=None, content=b"hello"):
    return ops.upload(content, path, metadata=parse_metadata(metadata or {}), content_type="text/plain")


# -- upload / metadata --

def test_upload_round_trips_metadata(ops, storage):
    sent = {
        "documentType": "constitution",
        "tags": ["rights", "equality"],
        "structuredPath": {"collection": "founding", "item": {"fileType": "pdf"}},
        "description": "Überblick",
    }
    result = upload(ops, "south_africa/national/constitution/en/report.pdf", sent)

    entry = index_files(storage, "south_africa/national/constitution/en")["report.pdf"]
    assert entry == {**sent, "documentId": result.document_id}

    blob = storage.get_blob_info("south_africa/national/constitution/en/report.pdf")
    assert blob.metadata["documenttype"] == "constitution"
    assert blob.metadata["tags"] == "rights,equality"
    assert blob.metadata["documentid"] == result.document_id
    assert "description" not in blob.metadata


def test_upload_keeps_client_document_id(ops, storage):
    result = upload(ops, "a/x.txt", {"documentId": "doc-42"})
    assert result.document_id == "doc-42"
    assert index_files(storage, "a")["x.txt"]["documentId"] == "doc-42"


def test_upload_normalizes_backslashes(ops, storage):
    result = upload(ops, "a\\b\\x.txt")
    assert result.path == "a/b/x.txt"
    assert storage.exists("a/b/x.txt")


def test_upload_rejects_index_name(ops):
    with pytest.raises(InvalidPathError):
        upload(ops, "a/metadata.json")


def test_upload_over_directory_conflicts(ops):
    upload(ops, "a/b/x.txt")
    with pytest.raises(ConflictError):
        upload(ops, "a/b")


class FlakyMetadataStorage(InMemoryStorageClient):
    def set_metadata(self, blob_path, metadata, content_type=None):
        raise UpstreamError("provider dropped the request")


def test_upload_metadata_failure_is_partial():
    storage = FlakyMetadataStorage()
    result = FileOperations(storage).upload(b"x", "a/x.txt", metadata=parse_metadata({"level": "national"}))
    assert storage.exists("a/x.txt")
    assert result.warnings and "setting its metadata failed" in result.warnings[0]
    assert index_files(storage, "a")["x.txt"]["level"] == "national"


class BrokenIndexStorage(InMemoryStorageClient):
    def upload(self, blob_path, content, content_type=None, metadata=None, etag=None, create_only=False):
        if blob_path.endswith("metadata.json"):
            raise UpstreamError("index write refused")
        return super().upload(blob_path, content, content_type, metadata, etag, create_only)


def test_index_failure_becomes_warning():
    storage = BrokenIndexStorage()
    result = FileOperations(storage).upload(b"x", "a/x.txt")
    assert storage.exists("a/x.txt")
    assert any("Search index update failed" in w for w in result.warnings)


def test_update_metadata_preserves_identity_and_content_type(ops, storage):
    original = upload(ops, "a/x.txt", {"level": "national"})
    result = ops.update_metadata("a/x.txt", parse_metadata({"level": "provincial", "tags": "one, two"}))

    assert result.document_id == original.document_id
    blob = storage.get_blob_info("a/x.txt")
    assert blob.content_type == "text/plain"
    assert blob.metadata["level"] == "provincial"
    assert blob.metadata["tags"] == "one,two"
    assert index_files(storage, "a")["x.txt"] == {
        "level": "provincial", "tags": ["one", "two"], "documentId": original.document_id,
    }


def test_update_metadata_missing_blob(ops):
    with pytest.raises(NotFoundError):
        ops.update_metadata("nope.txt", parse_metadata({}))


def test_update_metadata_cannot_change_document_id(ops, storage):
    original = upload(ops, "a/x.txt", {"level": "national"})
    with pytest.raises(ConflictError) as excinfo:
        ops.update_metadata("a/x.txt", parse_metadata({"documentId": "someone-else", "level": "provincial"}))
    assert excinfo.value.error == "DocumentIdMismatch"

    assert storage.get_blob_info("a/x.txt").metadata["documentid"] == original.document_id
    assert index_files(storage, "a")["x.txt"] == {"level": "national", "documentId": original.document_id}


def test_update_metadata_accepts_its_own_document_id(ops, storage):
    original = upload(ops, "a/x.txt")
    result = ops.update_metadata("a/x.txt", parse_metadata({"documentId": original.document_id, "level": "local"}))
    assert result.document_id == original.document_id
    assert index_files(storage, "a")["x.txt"]["level"] == "local"


# -- listing / lookups --

def test_list_directory_hides_index_and_placeholders(ops, storage):
    upload(ops, "a/x.txt", {"documentType": "act"})
    ops.create_directory("a/empty")
    items = {item["name"]: item for item in ops.list_directory("a")}
    assert set(items) == {"x.txt", "empty"}
    assert items["empty"]["isDirectory"] is True
    assert items["x.txt"]["metadata"]["documenttype"] == "act"


def test_list_missing_directory_is_not_found(ops):
    with pytest.raises(NotFoundError):
        ops.list_directory("ghost")
    assert ops.list_directory("") == []


def test_classify(ops, storage):
    upload(ops, "a/x.txt")
    ops.create_directory("empty")
    assert ops.classify("a/x.txt") is ItemKind.FILE
    assert ops.classify("a") is ItemKind.DIRECTORY
    assert ops.classify("empty") is ItemKind.DIRECTORY
    with pytest.raises(NotFoundError):
        ops.classify("missing")


def test_properties_and_index_document(ops):
    upload(ops, "a/x.txt", {"level": "national"})
    props = ops.get_properties("a/x.txt")
    assert props["isDirectory"] is False and props["size"] == 5
    assert ops.get_properties("a")["isDirectory"] is True
    assert ops.get_index_document("a/metadata.json")["files"]["x.txt"]["level"] == "national"
    with pytest.raises(NotFoundError):
        ops.get_index_document("elsewhere")


def test_download_url(ops):
    upload(ops, "a/x.txt")
    assert ops.download_url("a/x.txt").startswith("memory://documents/a/x.txt?se=")
    with pytest.raises(NotFoundError):
        ops.download_url("a/none.txt")


# -- directories / delete --

def test_create_directory_is_idempotent(ops, storage):
    assert ops.create_directory("new").created
    assert not ops.create_directory("new").created
    assert storage.get_blob_info("new/").metadata["isdirectoryplaceholder"] == "true"


def test_create_directory_over_file_conflicts(ops):
    upload(ops, "a/x.txt")
    with pytest.raises(ConflictError):
        ops.create_directory("a/x.txt")


def test_delete_file_removes_entry(ops, storage):
    upload(ops, "a/x.txt")
    upload(ops, "a/y.txt")
    result = ops.delete("a/x.txt")
    assert result.items_deleted == 1
    assert not storage.exists("a/x.txt")
    assert set(index_files(storage, "a")) == {"y.txt"}


def test_delete_directory_removes_everything(ops, storage):
    upload(ops, "a/sub/x.txt")
    upload(ops, "a/sub/deeper/y.txt")
    ops.index.upsert_entry("a", "sub", {"collection": "c"}, True)

    result = ops.delete("a/sub")

    assert result.errors == []
    assert [r.path for r in storage.iter_blobs("a/sub/")] == []
    assert not storage.exists("a/sub/metadata.json")
    assert "sub" not in index_folders(storage, "a")
    with pytest.raises(NotFoundError):
        ops.delete("a/sub")


def test_delete_directory_reports_blobs_left_behind():
    storage = RefusingStorage(refuse_delete={"a/sub/y.txt"})
    ops = FileOperations(storage)
    upload(ops, "a/sub/x.txt")
    upload(ops, "a/sub/y.txt")
    ops.index.upsert_entry("a", "sub", {"collection": "c"}, True)

    result = ops.delete("a/sub")

    assert [e.path for e in result.errors] == ["a/sub/y.txt"]
    assert result.errors[0].error == "AuthorizationFailure"
    assert "partially deleted" in result.message
    assert not storage.exists("a/sub/x.txt")
    assert storage.exists("a/sub/y.txt")
    assert index_folders(storage, "a") == {"sub": {"collection": "c"}}


# -- rename --

def test_rename_file_preserves_entry(ops, storage):
    original = upload(ops, "a/x.txt", {"level": "national"})
    ops.rename("a/x.txt", "a/z.txt")
    assert not storage.exists("a/x.txt")
    assert storage.get_blob_info("a/z.txt").metadata["documentid"] == original.document_id
    assert index_files(storage, "a") == {"z.txt": {"level": "national", "documentId": original.document_id}}


def test_rename_onto_existing_conflicts_and_changes_nothing(ops, storage):
    upload(ops, "a/x.txt", {"level": "one"})
    upload(ops, "a/y.txt", {"level": "two"})
    before = index_files(storage, "a")
    with pytest.raises(ConflictError):
        ops.rename("a/x.txt", "a/y.txt")
    assert storage.exists("a/x.txt") and storage.exists("a/y.txt")
    assert index_files(storage, "a") == before


def test_rename_across_directories_is_invalid(ops):
    upload(ops, "a/x.txt")
    with pytest.raises(InvalidPathError):
        ops.rename("a/x.txt", "b/x.txt")


def test_rename_directory(ops, storage):
    upload(ops, "a/old/x.txt", {"level": "l"})
    ops.index.upsert_entry("a", "old", {"collection": "c"}, True)
    ops.rename("a/old", "a/new")
    assert storage.exists("a/new/x.txt")
    assert index_files(storage, "a/new")["x.txt"]["level"] == "l"
    assert index_folders(storage, "a") == {"new": {"collection": "c"}}


def test_rename_without_entry_writes_empty_entry(ops, storage, put):
    put("a/raw.txt")
    ops.rename("a/raw.txt", "a/cooked.txt")
    assert index_files(storage, "a") == {"cooked.txt": {}}


# -- move / copy --

def test_move_and_back_restores_indexes(ops, storage):
    doc = upload(ops, "a/x.txt", {"level": "national"})
    upload(ops, "b/keep.txt")
    a_before, b_before = index_files(storage, "a"), index_files(storage, "b")

    ops.move("a/x.txt", "b")
    assert index_files(storage, "b")["x.txt"]["documentId"] == doc.document_id
    assert "x.txt" not in index_files(storage, "a")
    ops.move("b/x.txt", "a")

    assert index_files(storage, "a") == a_before
    assert index_files(storage, "b") == b_before
    assert storage.get_blob_info("a/x.txt").metadata["documentid"] == doc.document_id


def test_move_to_same_directory_is_rejected(ops):
    upload(ops, "a/x.txt")
    with pytest.raises(InvalidPathError):
        ops.move("a/x.txt", "a")


def test_move_directory_into_itself_is_rejected(ops, storage):
    upload(ops, "a/x.txt")
    with pytest.raises(InvalidPathError):
        ops.move("a", "a/inner")
    assert storage.exists("a/x.txt")


def test_move_onto_existing_name_conflicts(ops):
    upload(ops, "a/x.txt")
    upload(ops, "b/x.txt")
    with pytest.raises(ConflictError):
        ops.move("a/x.txt", "b")


def test_same_directory_copy_names(ops, storage):
    upload(ops, "a/x.txt", {"level": "l"})
    first = ops.copy("a/x.txt", "a")
    second = ops.copy("a/x.txt", "a")
    assert first.path == "a/x - Copy.txt"
    assert second.path == "a/x - Copy (2).txt"
    assert storage.download("a/x - Copy (2).txt") == b"hello"


def test_copy_gets_fresh_document_id(ops, storage):
    doc = upload(ops, "a/x.txt", {"level": "l"})
    ops.copy("a/x.txt", "b")
    copied_id = storage.get_blob_info("b/x.txt").metadata["documentid"]
    assert copied_id != doc.document_id
    assert index_files(storage, "b")["x.txt"] == {"level": "l", "documentId": copied_id}
    assert index_files(storage, "a")["x.txt"]["documentId"] == doc.document_id


def test_copy_directory_recurses_and_reassigns_nested_ids(ops, storage):
    nested = upload(ops, "src/docs/inner/y.txt", {"level": "deep"})
    upload(ops, "src/docs/x.txt")
    ops.index.upsert_entry("src", "docs", {"collection": "c"}, True)

    result = ops.copy("src/docs", "dst")

    assert result.errors == []
    assert result.items_copied == 4  # two files and two metadata.json
    copied = index_files(storage, "dst/docs/inner")["y.txt"]
    assert copied["level"] == "deep"
    assert copied["documentId"] == storage.get_blob_info("dst/docs/inner/y.txt").metadata["documentid"]
    assert copied["documentId"] != nested.document_id
    assert index_folders(storage, "dst") == {"docs": {"collection": "c"}}
    assert storage.exists("src/docs/x.txt")


def test_batch_move_reports_partial_success(ops, storage):
    upload(ops, "a/1.txt")
    batch = ops.move_batch(["a/1.txt", "a/2.txt"], "b")
    assert batch.succeeded == ["a/1.txt"]
    assert [e.path for e in batch.errors] == ["a/2.txt"]
    assert batch.is_partial
    assert storage.exists("b/1.txt")


def test_directory_move_with_failed_copy_keeps_source_entry():
    storage = RefusingStorage(refuse_copy={"src/docs/y.txt"})
    ops = FileOperations(storage, max_workers=2)
    upload(ops, "src/docs/x.txt")
    upload(ops, "src/docs/y.txt")
    ops.index.upsert_entry("src", "docs", {"collection": "c"}, True)

    batch = ops.move_batch(["src/docs"], "dst")

    assert batch.succeeded == []
    assert [(e.path, e.error) for e in batch.errors] == [("src/docs", "PartialTransfer")]
    assert "src/docs/y.txt: copy refused" in batch.errors[0].message
    assert storage.exists("dst/docs/x.txt") and not storage.exists("src/docs/x.txt")
    assert storage.exists("src/docs/y.txt")
    assert index_folders(storage, "src") == {"docs": {"collection": "c"}}


def test_batch_requires_sources(ops):
    with pytest.raises(InvalidRequestError):
        ops.copy_batch([], "b")

import pytest

from docvault.errors import NotFoundError, PreconditionFailedError
from docvault.storage import get_storage_client
from docvault.storage.base import BlobPrefix, BlobRecord
from docvault.storage.memory import InMemoryStorageClient


def test_factory_selects_memory_backend():
    assert isinstance(get_storage_client("memory"), InMemoryStorageClient)
    with pytest.raises(ValueError):
        get_storage_client("ftp")


def test_metadata_keys_are_lower_cased(storage):
    storage.upload("a.txt", b"x", metadata={"DocumentType": "act"})
    assert storage.get_blob_info("a.txt").metadata == {"documenttype": "act"}
    storage.set_metadata("a.txt", {"Level": "national"})
    assert storage.get_blob_info("a.txt").metadata == {"level": "national"}


def test_conditional_writes(storage):
    first = storage.upload("i.json", b"{}", create_only=True)
    with pytest.raises(PreconditionFailedError):
        storage.upload("i.json", b"{}", create_only=True)
    second = storage.upload("i.json", b"[]", etag=first.etag)
    with pytest.raises(PreconditionFailedError):
        storage.upload("i.json", b"{}", etag=first.etag)
    with pytest.raises(PreconditionFailedError):
        storage.delete("i.json", etag=first.etag)
    assert storage.delete("i.json", etag=second.etag)


def test_delete_missing(storage):
    with pytest.raises(NotFoundError):
        storage.delete("ghost")
    assert storage.delete("ghost", missing_ok=True) is False


def test_hierarchical_walk_and_paging(storage):
    for name in ["d/a.txt", "d/b.txt", "d/sub/c.txt", "d/sub/d.txt", "e.txt"]:
        storage.upload(name, b"x")
    items = list(storage.walk("d/", page_size=1))
    assert [i.path for i in items if isinstance(i, BlobRecord)] == ["d/a.txt", "d/b.txt"]
    assert [i.name for i in items if isinstance(i, BlobPrefix)] == ["sub"]
    assert [r.path for r in storage.iter_blobs("d/", page_size=2)] == [
        "d/a.txt", "d/b.txt", "d/sub/c.txt", "d/sub/d.txt",
    ]
    assert storage.has_children("d/sub/")
    assert not storage.has_children("x/")


def test_copy_carries_content_type_and_metadata(storage):
    storage.upload("a.pdf", b"pdf", content_type="application/pdf", metadata={"documentid": "1"})
    storage.copy("a.pdf", "b/a.pdf")
    copied = storage.get_blob_info("b/a.pdf")
    assert copied.content_type == "application/pdf"
    assert copied.metadata == {"documentid": "1"}
    assert b"".join(storage.open_stream("b/a.pdf", chunk_size=2)) == b"pdf"

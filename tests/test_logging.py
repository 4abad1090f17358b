import json
import logging

import pytest

from docvault.errors import PreconditionFailedError, UpstreamError
from docvault.files.operations import FileOperations
from docvault.index.retry import with_conflict_retry
from docvault.ingest.metadata import parse_metadata
from docvault.logging import JsonFormatter, init_logging, request_id_var, stage
from docvault.storage.memory import InMemoryStorageClient


@pytest.fixture(autouse=True)
def info_logging():
    init_logging("INFO")


def events(caplog, message):
    return [r for r in caplog.records if r.getMessage() == message]


def as_json(record):
    return json.loads(JsonFormatter().format(record))


def test_file_operations_log_at_info(ops, caplog):
    ops.upload(b"x", "a/x.txt", metadata=parse_metadata({"level": "national"}))
    ops.rename("a/x.txt", "a/y.txt")
    ops.delete("a/y.txt")

    upserted = events(caplog, "index_entry_upserted")
    assert [r.entry_name for r in upserted] == ["x.txt", "y.txt"]
    assert [r.entry_name for r in events(caplog, "index_entry_removed")] == ["x.txt", "y.txt"]

    line = as_json(upserted[0])
    assert line["entry_name"] == "x.txt"
    assert line["directory"] == "a"
    assert line["logger"] == "docvault.index.directory_index"


class UnreadableIndexStorage(InMemoryStorageClient):
    def download_with_etag(self, blob_path):
        if blob_path.endswith("metadata.json"):
            raise UpstreamError("index read refused")
        return super().download_with_etag(blob_path)


def test_index_read_failure_logs_entry_name(caplog):
    storage = UnreadableIndexStorage()
    storage.upload("a/x.txt", b"x")
    result = FileOperations(storage).rename("a/x.txt", "a/y.txt")

    assert storage.exists("a/y.txt")
    assert any("Could not read search index for x.txt" in w for w in result.warnings)
    (record,) = events(caplog, "index_read_failed")
    assert record.entry_name == "x.txt"
    assert record.levelno == logging.WARNING


def test_conflict_retry_logs_the_call(caplog):
    calls = []

    def upsert_entry(directory, name):
        calls.append((directory, name))
        if len(calls) == 1:
            raise PreconditionFailedError("changed under us")
        return True

    assert with_conflict_retry(upsert_entry, "docs", "mine.pdf") is True
    (record,) = events(caplog, "index_write_conflict")
    assert record.call_args == ["docs", "mine.pdf"]
    assert as_json(record)["operation"] == "upsert_entry"


def test_stage_and_request_id(caplog):
    token = request_id_var.set("req-1")
    try:
        with stage("extract", doc_id="d1"):
            pass
    finally:
        request_id_var.reset(token)

    ok = [r for r in caplog.records if r.name == "stage.extract" and r.getMessage() == "ok"]
    line = as_json(ok[0])
    assert line["doc_id"] == "d1"
    assert line["request_id"] == "req-1"
    assert isinstance(line["duration_ms"], int)

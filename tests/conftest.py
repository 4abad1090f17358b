import os

# must be set before docvault modules read them at import time
os.environ.setdefault("STORAGE_TYPE", "memory")
os.environ.setdefault("DRAMATIQ_BROKER", "stub")
os.environ.setdefault("VECTOR_STORE_ENABLED", "false")
os.environ.setdefault("INDEX_RETRY_WAIT_MAX", "0.01")

import pytest

from docvault.files.operations import FileOperations
from docvault.logging import init_logging
from docvault.storage.memory import InMemoryStorageClient
from fakes import FakeRedis

# run every log call the way the service does
init_logging("INFO")


@pytest.fixture
def storage():
    return InMemoryStorageClient()


@pytest.fixture
def ops(storage):
    return FileOperations(storage, max_workers=4)


@pytest.fixture
def put(storage):
    """Write a blob directly, bypassing the orchestrator."""
    def _put(path, content=b"data", metadata=None, content_type="text/plain"):
        return storage.upload(path, content, content_type=content_type, metadata=metadata or {})
    return _put


@pytest.fixture
def job_store():
    from docvault.jobs.status import JobStatusStore, set_job_store

    store = JobStatusStore(client=FakeRedis())
    set_job_store(store)
    yield store
    set_job_store(None)

import json

import pytest

from docvault.errors import InvalidRequestError, NotFoundError, UpstreamError
from docvault.jobs import tasks
from docvault.jobs.status import get_job_status, set_job_status
from docvault.rag.qa import NO_MATCH_ANSWER, RAGService
from fakes import FakeLLM, FakeVectors, hit


def test_query_returns_matches_with_links(storage, put):
    put("docs/a.txt")
    service = RAGService(FakeLLM(), FakeVectors([hit("chunk one"), hit("gone", path="docs/deleted.txt")]), storage)
    matches = service.query("rights", top_k=2)

    assert matches[0]["documentId"] == "doc-1"
    assert matches[0]["link"].startswith("memory://documents/docs/a.txt")
    assert matches[1]["link"] is None


def test_query_requires_text(storage):
    with pytest.raises(InvalidRequestError):
        RAGService(FakeLLM(), FakeVectors(), storage).query("   ")


def test_ask_cites_sources(storage, put):
    put("docs/a.txt")
    llm = FakeLLM()
    service = RAGService(llm, FakeVectors([hit("x" * 200)]), storage)
    result = service.ask("What rights exist?")

    assert result["answer"] == "The answer [Document 1]."
    assert result["sources"][0]["text"] == "x" * 150 + "..."
    assert "Document 1: " + "x" * 200 in llm.messages[1]["content"]
    assert llm.messages[0]["role"] == "system"


def test_ask_without_matches_is_not_found(storage):
    with pytest.raises(NotFoundError) as excinfo:
        RAGService(FakeLLM(), FakeVectors(), storage).ask("anything?")
    assert excinfo.value.details == {"answer": NO_MATCH_ANSWER, "sources": []}


def test_index_pipeline(storage, put):
    put("docs/a.txt", b"Everyone is equal before the law. " * 300, metadata={"documentid": "doc-a"})
    llm, vectors = FakeLLM(), FakeVectors()

    result = tasks.run_index_pipeline("docs/a.txt", storage, llm, vectors, job_id="j1")

    doc_id, blob_path, chunks, embedded = vectors.replaced
    assert (doc_id, blob_path) == ("doc-a", "docs/a.txt")
    assert len(chunks) == len(embedded) == result["counts"]["chunks"] > 1
    assert result["doc_id"] == "doc-a"


def test_index_pipeline_derives_stable_id(storage, put):
    put("docs/b.txt", b"short text")
    first = tasks.run_index_pipeline("docs/b.txt", storage, FakeLLM(), FakeVectors())
    second = tasks.run_index_pipeline("docs/b.txt", storage, FakeLLM(), FakeVectors())
    assert first["doc_id"] == second["doc_id"]


def test_job_status_keeps_created_at(job_store):
    set_job_status("j1", "pending", blob_path="a.txt")
    created = get_job_status("j1").created_at
    set_job_status("j1", "done", doc_id="d", counts={"chunks": 2})

    status = get_job_status("j1")
    assert status.status == "done"
    assert status.created_at == created
    assert status.blob_path == "a.txt"
    assert status.counts == {"chunks": 2}
    assert job_store.client.ttls["job:j1"] == 3600
    assert get_job_status("unknown") is None


def test_actor_records_success(job_store, storage, put, monkeypatch):
    put("docs/a.txt", b"some words to index")
    monkeypatch.setattr(tasks, "build_services", lambda: (storage, FakeLLM(), FakeVectors()))

    tasks.index_document("j2", "docs/a.txt")

    status = get_job_status("j2")
    assert status.status == "done" and status.counts["chunks"] == 1


def test_actor_records_failure(job_store, storage, monkeypatch):
    monkeypatch.setattr(tasks, "build_services", lambda: (storage, FakeLLM(), FakeVectors()))
    with pytest.raises(NotFoundError):
        tasks.index_document("j3", "docs/missing.txt")
    stored = json.loads(job_store.client.data["job:j3"])
    assert stored["status"] == "failed" and "missing" in stored["error"]


class FailingLLM(FakeLLM):
    def embed(self, texts):
        raise UpstreamError("Embedding request failed")


def test_embedding_failure_propagates(storage, put):
    put("docs/a.txt", b"text")
    with pytest.raises(UpstreamError):
        tasks.run_index_pipeline("docs/a.txt", storage, FailingLLM(), FakeVectors())

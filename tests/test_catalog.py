from docvault.catalog.compiler import MetadataCompiler, TTLCache
from docvault.ingest.metadata import parse_metadata


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_ttl_cache_recomputes_only_when_stale():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=60, clock=clock)
    calls = []

    def compute():
        calls.append(clock.now)
        return len(calls)

    assert cache.get_or_compute(compute) == 1
    clock.now += 59
    assert cache.get_or_compute(compute) == 1
    clock.now += 2
    assert cache.get_or_compute(compute) == 2
    assert cache.get_or_compute(compute, force=True) == 3
    assert cache.compiled_at == clock.now

    cache.invalidate()
    assert not cache.is_fresh()
    assert cache.get_or_compute(compute) == 4


def seed(ops):
    ops.upload(b"1", "za/constitution.pdf", metadata=parse_metadata({
        "documentId": "doc-za",
        "documentType": "constitution",
        "country": "South Africa",
        "topics": ["rights", "land"],
        "structuredPath": {"collection": "founding", "item": {"fileType": "pdf"}},
    }))
    ops.upload(b"2", "ke/act.docx", metadata=parse_metadata({
        "documentId": "doc-ke",
        "collection": "statutes",
        "structuredPath": {"thematicFocus": {"primary": "devolution"}},
    }))


def test_compile_builds_indexes(ops):
    seed(ops)
    catalog = MetadataCompiler(ops.storage, TTLCache(60, FakeClock())).compile()

    za = catalog["documentIndex"]["doc-za"]
    assert za["path"] == "za/constitution.pdf"
    assert za["collection"] == "founding"
    assert za["fileType"] == "pdf"
    assert za["language"] == "en" and za["accessLevel"] == "public"
    assert za["jurisdiction"] == "Unknown"

    ke = catalog["documentIndex"]["doc-ke"]
    assert ke["fileType"] == "docx"
    assert catalog["collectionIndex"] == {"founding": ["doc-za"], "statutes": ["doc-ke"]}
    assert catalog["topicIndex"] == {"rights": ["doc-za"], "land": ["doc-za"], "devolution": ["doc-ke"]}
    assert catalog["compilationTime"]


def test_compile_is_cached_until_refresh(ops):
    seed(ops)
    clock = FakeClock()
    compiler = MetadataCompiler(ops.storage, TTLCache(60, clock))
    first = compiler.compile()
    ops.upload(b"3", "za/new.pdf", metadata=parse_metadata({"documentId": "doc-new"}))

    assert compiler.compile() is first
    assert "doc-new" in compiler.compile(force=True)["documentIndex"]


def test_malformed_index_is_skipped(ops, put):
    seed(ops)
    put("broken/metadata.json", b"[1, 2")
    catalog = MetadataCompiler(ops.storage).compile()
    assert set(catalog["documentIndex"]) == {"doc-za", "doc-ke"}


def test_metadata_context_lists_documents(ops):
    seed(ops)
    context = MetadataCompiler(ops.storage).metadata_context()
    assert "COLLECTIONS: founding, statutes" in context
    assert "- doc-za: constitution.pdf" in context


def test_find_document_path(ops, put):
    seed(ops)
    put("loose/unindexed.txt", metadata={"documentid": "doc-loose"})
    compiler = MetadataCompiler(ops.storage)
    assert compiler.find_document_path("doc-ke") == "ke/act.docx"
    assert compiler.find_document_path("doc-loose") == "loose/unindexed.txt"
    assert compiler.find_document_path("nope") is None

import pytest

from docvault.errors import InvalidRequestError
from docvault.search.metadata_search import (
    MetadataSearch,
    TagFilter,
    filter_matches,
    merge_metadata,
    normalize_match_value,
    parse_filters,
)


@pytest.fixture
def library(ops):
    ops.upload(b"1", "za/national/constitution.pdf", metadata=_meta({
        "documentType": "constitution", "tags": ["Bill_of_Rights", "equality"], "country": "South Africa",
        "structuredPath": {"jurisdiction": {"type": "national", "name": "South Africa"}, "item": {"fileType": "pdf"}},
    }))
    ops.upload(b"2", "za/provincial/gauteng.pdf", metadata=_meta({
        "documentType": "provincial act", "tags": ["housing"], "country": "South Africa",
    }))
    ops.upload(b"3", "ke/national/constitution.pdf", metadata=_meta({
        "documentType": "constitution", "tags": ["devolution"], "country": "Kenya",
    }))
    return MetadataSearch(ops.storage, page_size=2)


def _meta(raw):
    from docvault.ingest.metadata import parse_metadata
    return parse_metadata(raw)


def paths_of(result):
    return sorted(item["path"] for item in result["items"])


def test_normalize_match_value():
    assert normalize_match_value("Bill_of__Rights  Act") == "bill of rights act"
    assert normalize_match_value(None) == ""


def test_merge_prefers_index_entry_and_flattens_structured_path():
    merged = merge_metadata(
        {"documenttype": "old", "level": "national"},
        {"documentType": "new", "structuredPath": {"jurisdiction": {"type": "national"}, "item": {"fileType": "pdf"}}},
    )
    assert merged["documenttype"] == "new"
    assert merged["level"] == "national"
    assert merged["jurisdiction_type"] == "national"
    assert merged["filetype"] == "pdf"


def test_list_fields_match_per_element():
    merged = {"tags": "housing,land reform"}
    assert filter_matches(TagFilter("tags", "land_reform"), merged)
    assert not filter_matches(TagFilter("tags", "housing,land"), merged)


def test_deep_and_search(library):
    result = library.search([TagFilter("documentType", "constitution"), TagFilter("country", "south")], deep=True)
    assert paths_of(result) == ["za/national/constitution.pdf"]
    assert result["totalItems"] == 1 and result["truncated"] is False


def test_deep_or_search(library):
    result = library.search(
        [TagFilter("tags", "bill of rights"), TagFilter("tags", "devolution")], deep=True, logic="or"
    )
    assert paths_of(result) == ["ke/national/constitution.pdf", "za/national/constitution.pdf"]


def test_shallow_search_stays_in_directory(library):
    result = library.search([TagFilter("country", "south africa")], current_path="za/provincial")
    assert paths_of(result) == ["za/provincial/gauteng.pdf"]


def test_shallow_search_covers_nested_directories(library):
    result = library.search([TagFilter("documentType", "constitution")], current_path="za")
    assert paths_of(result) == ["za/national/constitution.pdf"]
    result = library.search([TagFilter("country", "a")], current_path="za")
    assert paths_of(result) == ["za/national/constitution.pdf", "za/provincial/gauteng.pdf"]


def test_category_aliases(library):
    result = library.search([TagFilter("jurisdictionType", "national")], deep=True)
    assert paths_of(result) == ["za/national/constitution.pdf"]


def test_results_never_include_index_files(library):
    result = library.search([TagFilter("files", "constitution")], deep=True)
    assert all(not item["path"].endswith("metadata.json") for item in result["items"])


def test_scan_cap_truncates(ops, library):
    capped = MetadataSearch(ops.storage, max_blobs=2)
    result = capped.search([TagFilter("country", "a")], deep=True)
    assert result["truncated"] is True
    assert "stopped after scanning 2 blobs" in result["message"]


def test_invalid_requests(library):
    with pytest.raises(InvalidRequestError):
        library.search([], deep=True)
    with pytest.raises(InvalidRequestError):
        library.search([TagFilter("tags", "x")], logic="XOR")


def test_parse_filters_accepts_tag_key():
    filters = parse_filters([{"category": "tags", "tag": "housing"}, {"category": "level", "value": "national"}])
    assert filters == [TagFilter("tags", "housing"), TagFilter("level", "national")]

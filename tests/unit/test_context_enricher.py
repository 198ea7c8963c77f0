"""Unit tests for context metadata enrichment."""
from datetime import datetime, timedelta, timezone

import pytest

from adaptive_rag.core.domain import ChunkSearchResult, DocumentSidecar, DocumentType
from adaptive_rag.services.context_enricher import (
    ContextEnricher, calculate_complexity, detect_document_type, recency_days
)


@pytest.mark.parametrize("text,expected", [
    ("def f():\n    return 1  # a function", DocumentType.CODE),
    ("| name | value |\n| a | 1 |", DocumentType.TABLE),
    ("Plain prose about rivers.", DocumentType.TEXT),
])
def test_document_type(text, expected):
    assert detect_document_type(text) == expected


def test_complexity_is_capped():
    assert calculate_complexity(" ".join(["word"] * 50)) == 1.0
    assert calculate_complexity("One two. Three four.") == pytest.approx((4 / 3) / 10)


class TestRecency:

    def test_days_since_upload(self):
        now = datetime(2024, 3, 11, tzinfo=timezone.utc)
        sidecar = DocumentSidecar(upload_date=(now - timedelta(days=10)).isoformat())
        assert recency_days(sidecar, now) == pytest.approx(10.0)

    def test_zulu_suffix(self):
        now = datetime(2024, 3, 11, tzinfo=timezone.utc)
        assert recency_days(DocumentSidecar(upload_date="2024-03-10T00:00:00Z"), now) == pytest.approx(1.0)

    @pytest.mark.parametrize("sidecar", [None, DocumentSidecar(), DocumentSidecar(upload_date="yesterday")])
    def test_unknown_upload_date(self, sidecar):
        assert recency_days(sidecar) == 30.0


def test_enrich(make_chunk):
    chunk = make_chunk("doc", 3, "Rivers erode valleys.", [1.0], section="Geology")
    result = ChunkSearchResult(chunk=chunk, score=0.77, chunk_index=3, document_id="doc")

    ctx = ContextEnricher(trustworthiness=0.9, authority=0.6).enrich(result, score=0.5, fusion_type="hybrid")

    assert (ctx.document_id, ctx.chunk_index, ctx.chunk_id) == ("doc", 3, "doc_3")
    assert ctx.score == 0.5
    assert ctx.metadata.trustworthiness == 0.9
    assert ctx.metadata.authority == 0.6
    assert ctx.metadata.semantic_tags == ["Geology"]
    assert ctx.metadata.fusion_type == "hybrid"
    assert ctx.metadata.document_type == DocumentType.TEXT

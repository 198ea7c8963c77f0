"""
Unit tests for HybridSearchEngine: sparse scoring, rank fusion,
diversity filtering and the dense-only fallback.
"""
import itertools

import pytest

from adaptive_rag.core.domain import ChunkSearchResult, QueryIntent
from adaptive_rag.core.exceptions import DimensionMismatchError
from adaptive_rag.services.hybrid_search import (
    HybridSearchEngine, aggregate_multi_document, apply_diversity_filter,
    build_sparse_tokens, detect_multi_document_query, sparse_score
)
from adaptive_rag.utils.similarity import jaccard_similarity


@pytest.fixture
def engine(store, embedding_service):
    return HybridSearchEngine(store, embedding_service)


@pytest.fixture
def hit(make_chunk):
    def _hit(document_id, index, score, content=None):
        chunk = make_chunk(document_id, index, content or f"{document_id} chunk {index}", [1.0])
        return ChunkSearchResult(chunk=chunk, score=score, chunk_index=index, document_id=document_id)
    return _hit


# =============================================================================
# Sparse pass
# =============================================================================

class TestSparse:

    def test_tokens_merge_sources_and_drop_short(self, make_analysis):
        analysis = make_analysis("What is an API gateway", keywords=["Gateway", "ok"], entities=["Kong"])

        tokens, keyword_tokens = build_sparse_tokens(analysis.original_query, analysis)

        assert tokens == {"what", "api", "gateway", "kong"}
        assert keyword_tokens == {"gateway"}

    def test_whole_word_matches_only(self):
        score, matched = sparse_score("the category of concatenation", {"cat"}, set())
        assert (score, matched) == (0.0, 0)

    def test_weighted_score_formula(self):
        text = "alpha beta alpha"
        score, matched = sparse_score(text, {"alpha", "beta"}, {"alpha"})

        # alpha: 2 matches x weight 2, beta: 1 match x weight 1 -> 5; 2 tokens matched
        expected = (5 * 2) / (len(text) / 100 + 2)
        assert matched == 2
        assert score == pytest.approx(expected)

    def test_case_insensitive_and_regex_safe(self):
        score, matched = sparse_score("Use C++ or c++ daily", {"c++"}, set())
        assert matched == 1
        assert score > 0


# =============================================================================
# Fusion
# =============================================================================

class TestFusion:

    def test_rrf_for_chunks_in_both_lists(self, engine, hit):
        dense = [hit("A", 0, 0.95), hit("A", 1, 0.90)]
        sparse = [hit("A", 1, 42.0), hit("B", 0, 1.0)]

        fused = {ctx.key: ctx for ctx in engine.fuse(dense, sparse, QueryIntent.QUESTION)}

        assert fused[("A", 1)].score == pytest.approx(1 / (60 + 2) + 1 / (60 + 1))
        assert fused[("A", 1)].metadata.fusion_type == "hybrid"
        assert fused[("A", 0)].score == pytest.approx(0.95 * 0.6)
        assert fused[("A", 0)].metadata.fusion_type == "dense_only"
        assert fused[("B", 0)].score == pytest.approx(1.0 * 0.4)
        assert fused[("B", 0)].metadata.fusion_type == "sparse_only"

    def test_rrf_ignores_raw_scores(self, engine, hit):
        low = engine.fuse([hit("A", 0, 0.31)], [hit("A", 0, 0.01)], QueryIntent.QUESTION)
        high = engine.fuse([hit("A", 0, 0.99)], [hit("A", 0, 99.0)], QueryIntent.QUESTION)
        assert low[0].score == pytest.approx(2 / 61)
        assert high[0].score == pytest.approx(2 / 61)

    def test_definition_intent_weights_dense_higher(self, engine, hit):
        fused = engine.fuse([hit("A", 0, 0.8)], [hit("B", 0, 0.5)], QueryIntent.DEFINITION)
        scores = {ctx.key: ctx.score for ctx in fused}
        assert scores[("A", 0)] == pytest.approx(0.8 * 0.7)
        assert scores[("B", 0)] == pytest.approx(0.5 * 0.3)

    def test_single_source_scores_capped_at_one(self, engine, hit):
        fused = engine.fuse([], [hit("B", 0, 50.0)], QueryIntent.QUESTION)
        assert fused[0].score == 1.0


# =============================================================================
# Diversity
# =============================================================================

class TestDiversity:

    def test_near_duplicate_pair_keeps_higher_score(self, make_context):
        base = "solar panels convert sunlight into electricity using photovoltaic silicon cells"
        near = "solar panels convert sunlight into electricity using photovoltaic silicon modules"
        other = "wind turbines generate power from moving air"

        kept = apply_diversity_filter([
            make_context(near, 0.88, chunk_index=1),
            make_context(base, 0.91, chunk_index=0),
            make_context(other, 0.50, chunk_index=2),
        ], threshold=0.7)

        assert jaccard_similarity(base, near) > 0.7
        assert [c.chunk_index for c in kept] == [0, 2]

    def test_output_is_pairwise_diverse(self, make_context):
        texts = [
            "a b c d e f", "a b c d e g", "a b c x y z", "p q r s t u",
            "p q r s t v", "m n o p q r", "a b c d e f g",
        ]
        contexts = [make_context(t, 1.0 - i * 0.05, chunk_index=i) for i, t in enumerate(texts)]

        kept = apply_diversity_filter(contexts, threshold=0.7)

        for a, b in itertools.combinations(kept, 2):
            assert jaccard_similarity(a.text, b.text) <= 0.7
        assert kept[0].chunk_index == 0

    def test_empty_and_single(self, make_context):
        assert apply_diversity_filter([], 0.7) == []
        single = [make_context("only one", 0.4)]
        assert apply_diversity_filter(single, 0.7) == single


# =============================================================================
# Multi-document aggregation
# =============================================================================

class TestMultiDocument:

    def test_detects_comparison_wording(self):
        assert detect_multi_document_query("Compare the two reports")
        assert detect_multi_document_query("differences across documents")
        assert not detect_multi_document_query("what is the boiling point of water")

    def test_caps_each_document(self, make_context, make_analysis):
        contexts = [
            make_context("a0", 0.9, "A", 0), make_context("a1", 0.8, "A", 1),
            make_context("a2", 0.7, "A", 2), make_context("b0", 0.6, "B", 0),
        ]
        analysis = make_analysis("compare A and B", intent=QueryIntent.COMPARISON)

        aggregated = aggregate_multi_document(contexts, analysis)

        assert [c.text for c in aggregated] == ["a0", "a1", "b0"]

    def test_other_intents_untouched(self, make_context, make_analysis):
        contexts = [make_context("a0", 0.9, "A", 0), make_context("a1", 0.8, "A", 1)]
        analysis = make_analysis("what is A", intent=QueryIntent.QUESTION)
        assert aggregate_multi_document(contexts, analysis) is contexts


# =============================================================================
# End-to-end search over a real store
# =============================================================================

class TestSearch:

    @pytest.mark.asyncio
    async def test_empty_store(self, engine, make_analysis):
        result = await engine.search("anything at all", make_analysis("anything at all"))
        assert result.contexts == []
        assert result.total_found == 0

    @pytest.mark.asyncio
    async def test_chunk_found_by_both_passes(self, engine, store, embedding_service,
                                              make_chunk, make_analysis):
        texts = [
            "protein folding determines protein structure",
            "the stock market closed higher today",
        ]
        await store.store_document("bio", [
            make_chunk("bio", i, t, embedding_service.embed(t)) for i, t in enumerate(texts)
        ])
        analysis = make_analysis("protein folding", keywords=["protein"])

        result = await engine.search(analysis.original_query, analysis)

        top = result.contexts[0]
        assert result.search_strategy == "hybrid_dense_sparse"
        assert top.chunk_id == "bio_0"
        assert top.metadata.fusion_type == "hybrid"
        assert top.score == pytest.approx(2 / 61)
        assert top.metadata.recency == 30.0

    @pytest.mark.asyncio
    async def test_dense_pass_embeds_expanded_query(self, engine, embedding_service, make_analysis):
        analysis = make_analysis("ml", expanded="machine learning models")
        await engine.search("ml", analysis)
        await engine.search("refined stage query", analysis)
        assert embedding_service.queries == ["machine learning models", "refined stage query"]

    @pytest.mark.asyncio
    async def test_scope_limits_documents(self, engine, store, embedding_service,
                                          make_chunk, make_analysis):
        text = "graph databases store nodes and edges"
        for doc_id in ("one", "two"):
            await store.store_document(doc_id, [make_chunk(doc_id, 0, text, embedding_service.embed(text))])
        analysis = make_analysis("graph databases")

        result = await engine.search(analysis.original_query, analysis, document_ids=["two"])

        assert {c.document_id for c in result.contexts} == {"two"}

    @pytest.mark.asyncio
    async def test_fusion_failure_falls_back_to_dense(self, engine, store, embedding_service,
                                                      make_chunk, make_analysis, monkeypatch):
        text = "quantum entanglement links particle states"
        await store.store_document("phys", [make_chunk("phys", 0, text, embedding_service.embed(text))])

        def broken_fuse(*args, **kwargs):
            raise RuntimeError("boom")
        monkeypatch.setattr(engine, "fuse", broken_fuse)

        analysis = make_analysis("quantum entanglement")
        result = await engine.search(analysis.original_query, analysis)

        assert result.search_strategy == "fallback_dense"
        assert [c.chunk_id for c in result.contexts] == ["phys_0"]
        assert result.contexts[0].metadata.fusion_type == "dense_only"

    @pytest.mark.asyncio
    async def test_dimension_mismatch_is_not_swallowed(self, engine, store, make_chunk, make_analysis):
        await store.store_document("tiny", [make_chunk("tiny", 0, "three dims", [1.0, 0.0, 0.0])])
        analysis = make_analysis("three dims")

        with pytest.raises(DimensionMismatchError):
            await engine.search(analysis.original_query, analysis)

    @pytest.mark.asyncio
    async def test_results_carry_the_storage_key(self, engine, store, embedding_service,
                                                 make_chunk, make_analysis):
        first = "solar panels convert sunlight into power"
        second = "solar panels lose efficiency when hot"
        await store.store_document("D1", [make_chunk("D1", 0, first, embedding_service.embed(first))])
        # Chunk metadata claims D1 but the chunk is stored under D2
        await store.store_document("D2", [make_chunk("D1", 0, second, embedding_service.embed(second))])
        analysis = make_analysis("solar panels")

        scoped = await engine.search(analysis.original_query, analysis, document_ids=["D2"])
        unscoped = await engine.search(analysis.original_query, analysis)

        assert [c.document_id for c in scoped.contexts] == ["D2"]
        assert sorted((c.document_id, c.chunk_index) for c in unscoped.contexts) == [("D1", 0), ("D2", 0)]
        assert unscoped.total_found == 2

# services/hybrid_search.py
"""Dense + sparse retrieval with rank fusion and diversity filtering"""
import asyncio
import logging
import math
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

from adaptive_rag.config import settings
from adaptive_rag.core.domain import (
    ChunkSearchResult, DocumentChunk, DocumentSidecar, EnhancedContext,
    QueryAnalysis, QueryIntent
)
from adaptive_rag.core.exceptions import AdaptiveRAGError
from adaptive_rag.core.interfaces import IEmbeddingService, IVectorStore
from adaptive_rag.services.context_enricher import ContextEnricher
from adaptive_rag.utils.similarity import jaccard_similarity

logger = logging.getLogger(settings.LOGGER_NAME)

ChunkKey = Tuple[str, int]


@dataclass
class HybridSearchResult:
    contexts: List[EnhancedContext]
    total_found: int
    search_strategy: str


def build_sparse_tokens(query: str, analysis: QueryAnalysis) -> Tuple[Set[str], Set[str]]:
    """
    Token set for sparse matching and the subset that came from keywords.
    Tokens shorter than SPARSE_MIN_TOKEN_LENGTH are discarded.
    """
    min_len = settings.SPARSE_MIN_TOKEN_LENGTH
    keywords = {k.lower().strip() for k in analysis.keywords if k and k.strip()}
    entities = {e.lower().strip() for e in analysis.entities if e and e.strip()}
    query_words = set(query.lower().split())

    tokens = {t for t in keywords | entities | query_words if len(t) >= min_len}
    return tokens, keywords & tokens


def sparse_score(text: str, tokens: Set[str], keyword_tokens: Set[str]) -> Tuple[float, int]:
    """
    Weighted whole-word match score of one text.
    Returns (normalized score, matched token count); (0.0, 0) if nothing matched.
    """
    if not tokens:
        return 0.0, 0

    lowered = text.lower()
    weighted_matches = 0
    matched_tokens = 0
    for token in tokens:
        pattern = r'(?<!\w)' + re.escape(token) + r'(?!\w)'
        matches = len(re.findall(pattern, lowered))
        if matches > 0:
            matched_tokens += 1
            importance = settings.SPARSE_KEYWORD_WEIGHT if token in keyword_tokens else 1
            weighted_matches += matches * importance

    if matched_tokens == 0:
        return 0.0, 0

    normalized = (weighted_matches * matched_tokens) / (len(lowered) / 100 + len(tokens))
    return normalized, matched_tokens


def apply_diversity_filter(
    contexts: List[EnhancedContext], threshold: float
) -> List[EnhancedContext]:
    """
    Greedy redundancy removal over score-sorted contexts. The first context
    is always kept; later ones survive only if their word-Jaccard similarity
    to every kept context is <= threshold.
    """
    ordered = sorted(contexts, key=lambda c: c.score, reverse=True)
    if len(ordered) <= 1:
        return ordered

    diverse = [ordered[0]]
    for candidate in ordered[1:]:
        if all(jaccard_similarity(candidate.text, kept.text) <= threshold for kept in diverse):
            diverse.append(candidate)
    return diverse


MULTI_DOCUMENT_INDICATORS = [
    'compare', 'contrast', 'difference', 'similar', 'versus', 'vs',
    'both', 'all documents', 'across', 'between', 'summarize everything',
]


def detect_multi_document_query(query: str) -> bool:
    lowered = query.lower()
    return any(indicator in lowered for indicator in MULTI_DOCUMENT_INDICATORS)


def aggregate_multi_document(
    contexts: List[EnhancedContext], analysis: QueryAnalysis
) -> List[EnhancedContext]:
    """
    For comparison/complex intents, cap each document's share so several
    documents are represented. Other intents pass through unchanged.
    """
    if analysis.intent not in (QueryIntent.COMPARISON, QueryIntent.COMPLEX) or not contexts:
        return contexts

    groups: Dict[str, List[EnhancedContext]] = defaultdict(list)
    for ctx in contexts:
        groups[ctx.document_id].append(ctx)

    max_per_doc = math.ceil(len(contexts) / len(groups))
    aggregated = [ctx for doc_contexts in groups.values() for ctx in doc_contexts[:max_per_doc]]
    return sorted(aggregated, key=lambda c: c.score, reverse=True)


class HybridSearchEngine:
    """
    Merges dense (embedding) and sparse (keyword) retrieval into one ranked,
    deduplicated list.

    Pipeline:
    1. Dense pass over the expanded query (score > DENSE_MIN_SCORE)
    2. Sparse pass over keywords, entities and query words
    3. Intent-weighted fusion, RRF for chunks found by both passes
    4. Diversity filter (word Jaccard)
    5. Truncate to top_k
    """

    def __init__(
        self,
        vector_store: IVectorStore,
        embedding_service: IEmbeddingService,
        enricher: Optional[ContextEnricher] = None,
        diversity_threshold: float = settings.DIVERSITY_THRESHOLD,
    ):
        self.vector_store = vector_store
        self.embedding_service = embedding_service
        self.enricher = enricher or ContextEnricher()
        self.diversity_threshold = diversity_threshold

    # ============ Public API ============

    async def search(
        self,
        query: str,
        analysis: QueryAnalysis,
        document_ids: Optional[List[str]] = None,
        top_k: Optional[int] = None,
        diversity_threshold: Optional[float] = None,
    ) -> HybridSearchResult:
        """
        Run both passes for `query`. When `query` is the analysed query itself,
        the dense pass embeds its expanded form; any other string (a refined
        stage query, an entity name) is embedded as-is. Keywords and entities
        from `analysis` always feed the sparse pass.
        """
        top_k = settings.DEFAULT_TOP_K if top_k is None else top_k
        threshold = self.diversity_threshold if diversity_threshold is None else diversity_threshold

        dense_query = analysis.expanded_query if query == analysis.original_query else query
        dense = await self.dense_retrieval(dense_query, document_ids)
        sidecars = await self._load_sidecars(r.document_id for r in dense)

        try:
            sparse = await self.sparse_retrieval(query, analysis, document_ids)
            sidecars.update(await self._load_sidecars(r.document_id for r in sparse))

            fused = self.fuse(dense, sparse, analysis.intent, sidecars)
            diverse = apply_diversity_filter(fused, threshold)
            final = diverse[:top_k]

            logger.info(
                f"[HYBRID] dense={len(dense)} sparse={len(sparse)} fused={len(fused)} "
                f"diverse={len(diverse)} final={len(final)}"
            )
            return HybridSearchResult(final, len(fused), "hybrid_dense_sparse")

        except AdaptiveRAGError:
            raise
        except Exception as e:
            logger.error(f"[HYBRID] Fusion failed: {e}. Falling back to dense results.", exc_info=True)
            contexts = [
                self.enricher.enrich(r, sidecar=sidecars.get(r.document_id), fusion_type="dense_only")
                for r in dense
            ]
            return HybridSearchResult(contexts[:top_k], len(dense), "fallback_dense")

    # ============ Dense ============

    async def dense_retrieval(
        self, query: str, document_ids: Optional[List[str]] = None
    ) -> List[ChunkSearchResult]:
        """Cosine over every chunk in scope, keeping scores > DENSE_MIN_SCORE."""
        query_embedding = await self.embedding_service.generate_query_embedding(query)
        return await self.vector_store.search_across_all(
            query_embedding,
            top_k=None,
            min_score=settings.DENSE_MIN_SCORE,
            document_ids=document_ids,
        )

    # ============ Sparse ============

    async def sparse_retrieval(
        self, query: str, analysis: QueryAnalysis, document_ids: Optional[List[str]] = None
    ) -> List[ChunkSearchResult]:
        tokens, keyword_tokens = build_sparse_tokens(query, analysis)
        if not tokens:
            return []

        snapshot = await self.vector_store.snapshot(document_ids)
        results = await asyncio.to_thread(self._score_sparse, snapshot, tokens, keyword_tokens)
        results.sort(key=lambda r: r.score, reverse=True)
        return results

    @staticmethod
    def _score_sparse(
        snapshot: List[Tuple[str, List[DocumentChunk]]],
        tokens: Set[str],
        keyword_tokens: Set[str],
    ) -> List[ChunkSearchResult]:
        results = []
        for document_id, chunks in snapshot:
            for idx, chunk in enumerate(chunks):
                score, matched = sparse_score(chunk.content, tokens, keyword_tokens)
                if matched > 0:
                    results.append(ChunkSearchResult(
                        chunk=chunk, score=score, chunk_index=idx, document_id=document_id
                    ))
        return results

    # ============ Fusion ============

    def fuse(
        self,
        dense: List[ChunkSearchResult],
        sparse: List[ChunkSearchResult],
        intent: QueryIntent,
        sidecars: Optional[Dict[str, DocumentSidecar]] = None,
    ) -> List[EnhancedContext]:
        """
        Intent-weighted fusion. Chunks present in both ranked lists get the
        RRF score 1/(k+rank_dense) + 1/(k+rank_sparse) with 1-based ranks;
        single-list chunks keep their weighted score (capped at 1).
        """
        sidecars = sidecars or {}
        dense_weight = (
            settings.DENSE_WEIGHT_DEFINITION if intent == QueryIntent.DEFINITION
            else settings.DENSE_WEIGHT_DEFAULT
        )
        sparse_weight = 1.0 - dense_weight
        k = settings.RRF_K

        dense_rank: Dict[ChunkKey, int] = {}
        for rank, r in enumerate(dense, start=1):
            dense_rank.setdefault((r.document_id, r.chunk_index), rank)
        sparse_rank: Dict[ChunkKey, int] = {}
        for rank, r in enumerate(sparse, start=1):
            sparse_rank.setdefault((r.document_id, r.chunk_index), rank)

        fused: Dict[ChunkKey, EnhancedContext] = {}
        for r in dense:
            key = (r.document_id, r.chunk_index)
            if key in fused:
                continue
            if key in sparse_rank:
                score = 1.0 / (k + dense_rank[key]) + 1.0 / (k + sparse_rank[key])
                fusion_type = "hybrid"
            else:
                score = min(1.0, r.score * dense_weight)
                fusion_type = "dense_only"
            fused[key] = self.enricher.enrich(
                r, score=score, sidecar=sidecars.get(r.document_id), fusion_type=fusion_type
            )

        for r in sparse:
            key = (r.document_id, r.chunk_index)
            if key in fused:
                continue
            fused[key] = self.enricher.enrich(
                r,
                score=min(1.0, r.score * sparse_weight),
                sidecar=sidecars.get(r.document_id),
                fusion_type="sparse_only",
            )

        return sorted(fused.values(), key=lambda c: c.score, reverse=True)

    async def _load_sidecars(self, document_ids: Iterable[str]) -> Dict[str, DocumentSidecar]:
        sidecars = {}
        for doc_id in set(document_ids):
            sidecar = await self.vector_store.get_document_metadata(doc_id)
            if sidecar is not None:
                sidecars[doc_id] = sidecar
        return sidecars

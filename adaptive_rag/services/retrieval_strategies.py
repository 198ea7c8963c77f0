# services/retrieval_strategies.py
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from adaptive_rag.config import settings
from adaptive_rag.core.domain import (
    EnhancedContext, KnowledgeGraphEntity, Modality, QueryAnalysis,
    RetrievalStrategy, StrategyKind
)
from adaptive_rag.core.exceptions import OracleError
from adaptive_rag.core.interfaces import IKnowledgeGraph, ILLMService
from adaptive_rag.infrastructure.knowledge_graph import normalize_entity_id
from adaptive_rag.services.hybrid_search import (
    HybridSearchEngine, aggregate_multi_document, detect_multi_document_query
)
from adaptive_rag.utils.deadline import Deadline
from adaptive_rag.utils.similarity import jaccard_similarity

logger = logging.getLogger(settings.LOGGER_NAME)

REFINE_SYSTEM_PROMPT = (
    "Generate a refined search query to find additional relevant information "
    "based on the original query and found contexts. Be specific and focused. "
    "Reply with the query only."
)

VISUAL_KEYWORDS = ['image', 'chart', 'graph', 'diagram', 'picture', 'visual', 'plot']
STRUCTURED_KEYWORDS = ['table', 'data', 'statistics', 'numbers', 'dataset']


@dataclass
class StrategyOutcome:
    contexts: List[EnhancedContext]
    total_found: int
    timed_out: bool = False


def relevance_score(ctx: EnhancedContext) -> float:
    """0.4 score + 0.3 trust + 0.2 authority + 0.1 freshness (linear over a year)."""
    meta = ctx.metadata
    freshness = max(0.0, 1.0 - meta.recency / 365.0)
    return ctx.score * 0.4 + meta.trustworthiness * 0.3 + meta.authority * 0.2 + freshness * 0.1


def rank_contexts(contexts: List[EnhancedContext]) -> List[EnhancedContext]:
    """Multi-factor ranking, descending; ties keep their incoming order."""
    return sorted(contexts, key=relevance_score, reverse=True)


def detect_modalities(query: str) -> List[Modality]:
    lowered = query.lower()
    modalities = [Modality.TEXT]
    if any(kw in lowered for kw in VISUAL_KEYWORDS):
        modalities.append(Modality.VISUAL)
    if any(kw in lowered for kw in STRUCTURED_KEYWORDS):
        modalities.append(Modality.STRUCTURED)
    return modalities


class RetrievalStrategyBase(ABC):
    """One retrieval algorithm selectable by StrategyKind."""

    kind: StrategyKind

    def __init__(self, search_engine: HybridSearchEngine):
        self.search_engine = search_engine

    @abstractmethod
    async def retrieve(
        self,
        analysis: QueryAnalysis,
        strategy: RetrievalStrategy,
        document_ids: Optional[List[str]],
        top_k: int,
        deadline: Deadline,
    ) -> StrategyOutcome:
        pass


class SimpleRetrieval(RetrievalStrategyBase):
    """Single hybrid search; comparison-style queries get per-document balancing."""

    kind = StrategyKind.SIMPLE

    async def retrieve(self, analysis, strategy, document_ids, top_k, deadline) -> StrategyOutcome:
        result = await self.search_engine.search(
            analysis.original_query, analysis, document_ids, top_k
        )
        contexts = result.contexts
        if detect_multi_document_query(analysis.original_query):
            contexts = aggregate_multi_document(contexts, analysis)
        return StrategyOutcome(contexts, result.total_found)


class MultiStageRetrieval(RetrievalStrategyBase):
    """
    Sequential rounds of hybrid search. Each round's query is refined by the
    oracle from the original query and the best contexts found so far, so
    rounds never run in parallel.
    """

    kind = StrategyKind.MULTI_STAGE

    def __init__(
        self,
        search_engine: HybridSearchEngine,
        llm: ILLMService,
        default_stages: int = settings.MULTI_STAGE_DEFAULT_STAGES,
    ):
        super().__init__(search_engine)
        self.llm = llm
        self.default_stages = default_stages

    def stage_count(self, strategy: RetrievalStrategy) -> int:
        return strategy.parameters.stages or self.default_stages

    async def retrieve(self, analysis, strategy, document_ids, top_k, deadline) -> StrategyOutcome:
        stages = self.stage_count(strategy)
        accumulated: List[EnhancedContext] = []
        total_found = 0
        timed_out = False
        current_query = analysis.original_query

        for stage in range(stages):
            if deadline.expired():
                logger.warning(f"[MULTISTAGE] Deadline reached before stage {stage + 1}/{stages}")
                timed_out = True
                break

            logger.info(f"[MULTISTAGE] Stage {stage + 1}/{stages}: '{current_query[:80]}'")
            result = await self.search_engine.search(current_query, analysis, document_ids, top_k)
            total_found += result.total_found

            survivors = self.deduplicate(result.contexts, accumulated)
            accumulated.extend(survivors)

            if self.should_stop_early(accumulated):
                logger.info(f"[MULTISTAGE] Early stop after stage {stage + 1}: {len(accumulated)} contexts")
                break

            if stage < stages - 1:
                if deadline.expired():
                    timed_out = True
                    break
                current_query = await self.refine_query(analysis.original_query, accumulated)

        return StrategyOutcome(rank_contexts(accumulated), total_found, timed_out)

    @staticmethod
    def deduplicate(
        candidates: List[EnhancedContext],
        accumulated: List[EnhancedContext],
        threshold: float = settings.STAGE_DEDUP_THRESHOLD,
    ) -> List[EnhancedContext]:
        """Drop candidates whose text is >= threshold Jaccard-similar to anything kept."""
        kept = list(accumulated)
        survivors = []
        for candidate in candidates:
            if any(jaccard_similarity(candidate.text, ctx.text) >= threshold for ctx in kept):
                continue
            survivors.append(candidate)
            kept.append(candidate)
        return survivors

    @staticmethod
    def should_stop_early(contexts: List[EnhancedContext]) -> bool:
        if len(contexts) < settings.EARLY_STOP_MIN_CONTEXTS:
            return False
        mean_score = sum(c.score for c in contexts) / len(contexts)
        return mean_score > settings.EARLY_STOP_MEAN_SCORE

    async def refine_query(self, original_query: str, contexts: List[EnhancedContext]) -> str:
        summary = " | ".join(
            ctx.text[:settings.REFINE_SNIPPET_CHARS]
            for ctx in contexts[:settings.REFINE_CONTEXT_COUNT]
        )
        user_prompt = f"Original: {original_query}\nFound contexts: {summary}\nRefined query:"
        try:
            refined = await self.llm.complete(REFINE_SYSTEM_PROMPT, user_prompt, temperature=0.3)
        except OracleError as e:
            logger.warning(f"[MULTISTAGE] Query refinement failed, reusing original query: {e}")
            return original_query

        refined = refined.strip().strip('"').strip()
        return refined or original_query


class ExpertDomainRetrieval(MultiStageRetrieval):
    """Multi-stage retrieval with a fixed, deeper stage count."""

    kind = StrategyKind.EXPERT_DOMAIN

    def __init__(self, search_engine: HybridSearchEngine, llm: ILLMService):
        super().__init__(search_engine, llm, default_stages=settings.EXPERT_DOMAIN_STAGES)

    def stage_count(self, strategy: RetrievalStrategy) -> int:
        return settings.EXPERT_DOMAIN_STAGES


class KnowledgeGraphRetrieval(RetrievalStrategyBase):
    """
    Expands query entities through the graph, searches each entity name
    concurrently and tags every hit with the discovered entity set.
    """

    kind = StrategyKind.KNOWLEDGE_GRAPH

    def __init__(self, search_engine: HybridSearchEngine, graph: IKnowledgeGraph):
        super().__init__(search_engine)
        self.graph = graph

    def discover_entities(self, names: List[str], depth: int) -> List[KnowledgeGraphEntity]:
        """Seed entities plus everything reachable within `depth` hops, unique by id."""
        discovered: Dict[str, KnowledgeGraphEntity] = {}
        for name in names:
            entity_id = normalize_entity_id(name)
            seed = self.graph.get_entity(entity_id) or KnowledgeGraphEntity(id=entity_id, name=name)
            discovered.setdefault(seed.id, seed)
            for related in self.graph.traverse(entity_id, depth):
                discovered.setdefault(related.id, related)
        return list(discovered.values())

    async def retrieve(self, analysis, strategy, document_ids, top_k, deadline) -> StrategyOutcome:
        depth = strategy.parameters.graph_depth or settings.GRAPH_DEFAULT_DEPTH
        if not analysis.entities:
            logger.info("[GRAPH] No query entities, using plain hybrid search")
            return await SimpleRetrieval(self.search_engine).retrieve(
                analysis, strategy, document_ids, top_k, deadline
            )

        entities = self.discover_entities(analysis.entities, depth)
        logger.info(f"[GRAPH] {len(entities)} entities discovered: {[e.name for e in entities[:5]]}")

        if deadline.expired():
            return StrategyOutcome([], 0, timed_out=True)

        results = await asyncio.gather(*(
            self.search_engine.search(
                entity.name,
                replace(analysis, original_query=entity.name, expanded_query=entity.name,
                        entities=[entity.name], keywords=[]),
                document_ids,
                top_k,
            )
            for entity in entities
        ))

        best: Dict[tuple, EnhancedContext] = {}
        for result in results:
            for ctx in result.contexts:
                if ctx.key not in best or ctx.score > best[ctx.key].score:
                    best[ctx.key] = ctx

        entity_ids = [e.id for e in entities]
        contexts = []
        for ctx in sorted(best.values(), key=lambda c: c.score, reverse=True):
            ctx.metadata = replace(
                ctx.metadata, relationships=list(entity_ids), extracted_entities=list(entities)
            )
            contexts.append(ctx)

        return StrategyOutcome(contexts, sum(r.total_found for r in results))


class MultimodalRetrieval(RetrievalStrategyBase):
    """
    Text retrieval plus modality-specific paths chosen from the query wording.
    Visual and structured paths return nothing until a subclass provides them.
    """

    kind = StrategyKind.MULTIMODAL

    async def retrieve(self, analysis, strategy, document_ids, top_k, deadline) -> StrategyOutcome:
        modalities = detect_modalities(analysis.original_query)
        logger.info(f"[MULTIMODAL] Modalities: {[m.value for m in modalities]}")

        contexts: List[EnhancedContext] = []
        total_found = 0

        result = await self.search_engine.search(
            analysis.original_query, analysis, document_ids, top_k
        )
        contexts.extend(result.contexts)
        total_found += result.total_found

        if Modality.VISUAL in modalities:
            visual = await self.retrieve_visual(analysis, document_ids, top_k)
            contexts.extend(visual)
            total_found += len(visual)
        if Modality.STRUCTURED in modalities:
            structured = await self.retrieve_structured(analysis, document_ids, top_k)
            contexts.extend(structured)
            total_found += len(structured)

        contexts.sort(key=lambda c: c.score, reverse=True)
        return StrategyOutcome(contexts, total_found)

    async def retrieve_visual(
        self, analysis: QueryAnalysis, document_ids: Optional[List[str]], top_k: int
    ) -> List[EnhancedContext]:
        return []

    async def retrieve_structured(
        self, analysis: QueryAnalysis, document_ids: Optional[List[str]], top_k: int
    ) -> List[EnhancedContext]:
        return []

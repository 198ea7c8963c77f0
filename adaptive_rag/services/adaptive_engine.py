# services/adaptive_engine.py
import logging
import time
from typing import Dict, List, Optional

from adaptive_rag.config import settings
from adaptive_rag.core.domain import (
    QueryAnalysis, RetrievalResult, RetrievalStrategy, StrategyKind
)
from adaptive_rag.core.exceptions import DimensionMismatchError, ValidationError
from adaptive_rag.core.interfaces import IKnowledgeGraph, ILLMService
from adaptive_rag.services.hybrid_search import HybridSearchEngine
from adaptive_rag.services.query_analyzer import QueryAnalyzer
from adaptive_rag.services.retrieval_strategies import (
    ExpertDomainRetrieval, KnowledgeGraphRetrieval, MultiStageRetrieval,
    MultimodalRetrieval, RetrievalStrategyBase, SimpleRetrieval, StrategyOutcome
)
from adaptive_rag.services.strategy_selector import StrategySelector
from adaptive_rag.utils.deadline import Deadline

logger = logging.getLogger(settings.LOGGER_NAME)


class AdaptiveRetrievalEngine:
    """
    Query -> analysis -> strategy selection -> strategy execution.

    Every request is an independent pipeline over the shared vector store.
    The deadline is checked between stages; when it expires the best result
    gathered so far is returned with timed_out=True.
    """

    def __init__(
        self,
        search_engine: HybridSearchEngine,
        llm: ILLMService,
        knowledge_graph: IKnowledgeGraph,
        analyzer: Optional[QueryAnalyzer] = None,
        selector: Optional[StrategySelector] = None,
    ):
        self.analyzer = analyzer or QueryAnalyzer(llm)
        self.selector = selector or StrategySelector(llm)
        self.simple = SimpleRetrieval(search_engine)
        self.strategies: Dict[StrategyKind, RetrievalStrategyBase] = {
            StrategyKind.SIMPLE: self.simple,
            StrategyKind.MULTI_STAGE: MultiStageRetrieval(search_engine, llm),
            StrategyKind.KNOWLEDGE_GRAPH: KnowledgeGraphRetrieval(search_engine, knowledge_graph),
            StrategyKind.MULTIMODAL: MultimodalRetrieval(search_engine),
            StrategyKind.EXPERT_DOMAIN: ExpertDomainRetrieval(search_engine, llm),
        }

    async def retrieve(
        self,
        query: str,
        document_ids: Optional[List[str]] = None,
        top_k: Optional[int] = None,
        deadline: Optional[Deadline] = None,
    ) -> RetrievalResult:
        if not query or not query.strip():
            raise ValidationError("Query cannot be empty")
        if len(query) > settings.MAX_QUERY_LENGTH:
            raise ValidationError(f"Query exceeds {settings.MAX_QUERY_LENGTH} characters")

        top_k = settings.DEFAULT_TOP_K if top_k is None else top_k
        deadline = deadline or Deadline.never()
        start = time.perf_counter()

        analysis = await self.analyzer.analyze(query)
        if deadline.expired():
            return self._result(StrategyOutcome([], 0, True), RetrievalStrategy.fallback(), analysis, start)

        strategy = await self.selector.select(analysis)
        if deadline.expired():
            return self._result(StrategyOutcome([], 0, True), strategy, analysis, start)

        outcome, strategy = await self._execute(analysis, strategy, document_ids, top_k, deadline)
        outcome.contexts = outcome.contexts[:top_k]

        result = self._result(outcome, strategy, analysis, start)
        logger.info(
            f"[ENGINE] strategy={strategy.kind.value} chunks={len(result.chunks)} "
            f"total_found={result.total_found} time={result.search_time_ms:.0f}ms"
            f"{' (timed out)' if result.timed_out else ''}"
        )
        return result

    async def _execute(
        self,
        analysis: QueryAnalysis,
        strategy: RetrievalStrategy,
        document_ids: Optional[List[str]],
        top_k: int,
        deadline: Deadline,
    ):
        executor = self.strategies.get(strategy.kind, self.simple)
        try:
            return await executor.retrieve(analysis, strategy, document_ids, top_k, deadline), strategy
        except DimensionMismatchError:
            raise
        except Exception as e:
            if executor is self.simple:
                logger.error(f"[ENGINE] Simple retrieval failed, returning no contexts: {e}", exc_info=True)
                return StrategyOutcome([], 0), strategy
            logger.error(
                f"[ENGINE] Strategy {strategy.kind.value} failed, falling back to simple: {e}",
                exc_info=True
            )

        fallback = RetrievalStrategy(
            kind=StrategyKind.SIMPLE,
            confidence=0.5,
            reasoning=f"fallback after {strategy.kind.value} failed",
        )
        try:
            return await self.simple.retrieve(analysis, fallback, document_ids, top_k, deadline), fallback
        except DimensionMismatchError:
            raise
        except Exception as e:
            logger.error(f"[ENGINE] Simple retrieval failed, returning no contexts: {e}", exc_info=True)
            return StrategyOutcome([], 0), fallback

    @staticmethod
    def _result(
        outcome: StrategyOutcome,
        strategy: RetrievalStrategy,
        analysis: QueryAnalysis,
        start: float,
    ) -> RetrievalResult:
        return RetrievalResult(
            chunks=outcome.contexts,
            strategy=strategy,
            query_analysis=analysis,
            total_found=outcome.total_found,
            search_time_ms=(time.perf_counter() - start) * 1000,
            timed_out=outcome.timed_out,
        )

# services/strategy_selector.py
import logging
from typing import Any, Optional

from adaptive_rag.config import settings
from adaptive_rag.core.domain import (
    QueryAnalysis, RetrievalStrategy, StrategyKind, StrategyParameters
)
from adaptive_rag.core.exceptions import OracleError
from adaptive_rag.core.interfaces import ILLMService

logger = logging.getLogger(settings.LOGGER_NAME)

STRATEGY_SYSTEM_PROMPT = """You are an adaptive retrieval strategist. Based on the query analysis, select the optimal retrieval strategy:

STRATEGIES:
- simple: Basic semantic search (fast, basic queries)
- multi_stage: Multi-hop retrieval (complex research queries)
- knowledge_graph: Entity-relationship based (factual, interconnected queries)
- multimodal: Cross-modal retrieval (visual/data questions)
- expert_domain: Domain-specialized retrieval (technical, specialized queries)

Consider:
- Query complexity and intent
- Required accuracy vs speed
- Data types needed
- Domain specificity

Return JSON with "strategy", "confidence" (0-1), "reasoning", and "parameters"
(optional "stages", "graphDepth", "domainFocus", "modalityTypes")."""


def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int) and value > 0:
        return value
    return None


class StrategySelector:
    """Chooses one of the five retrieval strategies for an analysed query."""

    def __init__(self, llm: ILLMService):
        self.llm = llm

    async def select(self, analysis: QueryAnalysis) -> RetrievalStrategy:
        user_prompt = (
            "Query Analysis:\n"
            f'- Original: "{analysis.original_query}"\n'
            f"- Intent: {analysis.intent.value}\n"
            f"- Entities: {', '.join(analysis.entities)}\n"
            f"- Confidence: {analysis.confidence}\n"
            f"- Keywords: {', '.join(analysis.keywords)}"
        )
        try:
            data = await self.llm.complete_json(STRATEGY_SYSTEM_PROMPT, user_prompt, temperature=0.2)
            strategy = self._decode(data)
        except OracleError as e:
            logger.warning(f"[STRATEGY] Selection failed, falling back to simple: {e}")
            return RetrievalStrategy.fallback()

        logger.info(
            f"[STRATEGY] Selected {strategy.kind.value} "
            f"(confidence={strategy.confidence:.2f}): {strategy.reasoning[:100]}"
        )
        return strategy

    @staticmethod
    def _decode(data: dict) -> RetrievalStrategy:
        kind = StrategyKind.from_string(data.get("strategy"))
        if kind is None:
            raise OracleError(f"Unknown strategy in oracle response: {data.get('strategy')!r}")

        confidence = data.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) \
                or not 0.0 <= float(confidence) <= 1.0:
            raise OracleError(f"Invalid strategy confidence: {confidence!r}")

        reasoning = data.get("reasoning")
        if not isinstance(reasoning, str) or not reasoning.strip():
            reasoning = "No reasoning provided"

        raw_params = data.get("parameters")
        if not isinstance(raw_params, dict):
            raw_params = {}

        domain_focus = raw_params.get("domainFocus")
        modality_types = raw_params.get("modalityTypes")
        parameters = StrategyParameters(
            stages=_positive_int(raw_params.get("stages")),
            graph_depth=_positive_int(raw_params.get("graphDepth")),
            domain_focus=domain_focus if isinstance(domain_focus, str) and domain_focus else None,
            modality_types=(
                [str(m) for m in modality_types if isinstance(m, str)]
                if isinstance(modality_types, list) else None
            ),
        )
        return RetrievalStrategy(
            kind=kind,
            confidence=float(confidence),
            reasoning=reasoning.strip(),
            parameters=parameters,
        )

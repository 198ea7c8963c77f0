# services/query_analyzer.py
import logging
from typing import Any, List

from adaptive_rag.config import settings
from adaptive_rag.core.domain import QueryAnalysis, QueryIntent
from adaptive_rag.core.exceptions import OracleError, ValidationError
from adaptive_rag.core.interfaces import ILLMService

logger = logging.getLogger(settings.LOGGER_NAME)

ANALYSIS_SYSTEM_PROMPT = """You are a query analysis expert. Analyze the user's query and provide:
1. Intent classification (question/summary/comparison/definition/instruction/complex)
2. Key entities and concepts
3. Important keywords for search
4. Query expansion with synonyms and related terms
5. Confidence score (0-1) for how well you understand the query

Respond in JSON format only, with the keys:
"expandedQuery" (string), "intent" (string), "entities" (list of strings),
"keywords" (list of strings), "confidence" (number)."""


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]


def _unit_interval(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    value = float(value)
    if not 0.0 <= value <= 1.0:
        return default
    return value


class QueryAnalyzer:
    """Classifies intent, extracts entities/keywords and expands the query."""

    def __init__(self, llm: ILLMService):
        self.llm = llm

    async def analyze(self, query: str) -> QueryAnalysis:
        if not query or not query.strip():
            raise ValidationError("Query cannot be empty")

        query = query.strip()
        try:
            data = await self.llm.complete_json(
                ANALYSIS_SYSTEM_PROMPT,
                f'Analyze this query: "{query}"',
                temperature=0.1
            )
        except OracleError as e:
            logger.warning(f"[ANALYZE] Query analysis failed, using fallback: {e}")
            return QueryAnalysis.fallback(query)

        return self._decode(query, data)

    @staticmethod
    def _decode(query: str, data: dict) -> QueryAnalysis:
        """Field-by-field parse; anything malformed takes its fallback value."""
        expanded = data.get("expandedQuery")
        if not isinstance(expanded, str) or not expanded.strip():
            expanded = query

        analysis = QueryAnalysis(
            original_query=query,
            expanded_query=expanded.strip(),
            intent=QueryIntent.from_string(data.get("intent", QueryIntent.QUESTION.value)),
            entities=_string_list(data.get("entities")),
            keywords=_string_list(data.get("keywords")),
            confidence=_unit_interval(data.get("confidence"), 0.5),
        )
        logger.info(
            f"[ANALYZE] intent={analysis.intent.value} entities={analysis.entities[:3]} "
            f"confidence={analysis.confidence:.2f}"
        )
        return analysis

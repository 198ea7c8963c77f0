# services/confidence.py
from typing import List, Optional

from adaptive_rag.core.domain import EnhancedContext, QueryAnalysis


def formulaic_confidence(
    analysis: QueryAnalysis, contexts: List[EnhancedContext], answer_length: int
) -> float:
    mean_score = sum(c.score for c in contexts) / len(contexts)
    return (
        0.3 * analysis.confidence
        + 0.3 * mean_score
        + 0.2 * min(answer_length / 500, 1.0)
        + 0.2 * min(len(contexts) / 5, 1.0)
    )


def metadata_confidence(contexts: List[EnhancedContext]) -> float:
    return sum(
        c.metadata.trustworthiness * c.metadata.authority * c.score for c in contexts
    ) / len(contexts)


class ConfidenceEstimator:
    """
    Answer confidence as the maximum of three independent estimates,
    capped at 1.0:
    - the oracle's own confidence from answer synthesis
    - a formula over query understanding, context scores, answer length and context count
    - the mean of trust x authority x score over contexts

    No contexts means nothing grounds the answer, so confidence is 0.
    """

    def estimate(
        self,
        oracle_confidence: Optional[float],
        analysis: QueryAnalysis,
        contexts: List[EnhancedContext],
        answer_length: int,
    ) -> float:
        if not contexts:
            return 0.0

        estimates = [
            formulaic_confidence(analysis, contexts, answer_length),
            metadata_confidence(contexts),
        ]
        if oracle_confidence is not None:
            estimates.append(oracle_confidence)
        return max(0.0, min(1.0, max(estimates)))

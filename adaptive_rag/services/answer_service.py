# services/answer_service.py
"""Prompt compression and grounded answer synthesis over retrieved contexts."""
import logging
import re
from typing import List, Optional

from adaptive_rag.config import settings
from adaptive_rag.core.domain import (
    ChatMessage, EnhancedAnswer, EnhancedContext, QueryAnalysis, QueryIntent
)
from adaptive_rag.core.exceptions import OracleError
from adaptive_rag.core.interfaces import ILLMService

logger = logging.getLogger(settings.LOGGER_NAME)

NOT_FOUND_ANSWER = "No relevant information found in the document(s)."
GENERATION_FAILED_ANSWER = "Unable to generate an answer at this time. Please try again later."
DEFAULT_ORACLE_CONFIDENCE = 0.75

INTENT_PROMPTS = {
    QueryIntent.QUESTION: "You are an expert researcher. Answer the question thoroughly using only the provided sources. Include reasoning steps.",
    QueryIntent.SUMMARY: "You are a skilled summarizer. Provide a comprehensive summary of the key information from the sources.",
    QueryIntent.COMPARISON: "You are a comparison analyst. Compare and contrast the different aspects mentioned in the sources.",
    QueryIntent.DEFINITION: "You are a technical explainer. Provide clear definitions and explanations using the source material.",
    QueryIntent.INSTRUCTION: "You are a helpful instructor. Provide step-by-step guidance based on the information in the sources.",
    QueryIntent.COMPLEX: "You are a research analyst. Break down this complex query and provide a structured, multi-part answer.",
}

RESPONSE_FORMAT = """
Guidelines:
- Use only information from the provided sources
- Cite sources using [Source X] format
- If information is insufficient, state this clearly
- Provide confidence level and reasoning
- Suggest 3 related follow-up questions

Structure your response as:
ANSWER: [Your detailed answer]
CONFIDENCE: [0-100]
REASONING: [Your reasoning process]
SOURCES: [List of sources used, one per line]
RELATED_QUESTIONS: [3 follow-up questions, one per line]"""

_SECTION_RE = {
    "answer": re.compile(r"ANSWER:\s*(.*?)(?=CONFIDENCE:|$)", re.S),
    "confidence": re.compile(r"CONFIDENCE:\s*(\d+(?:\.\d+)?)"),
    "reasoning": re.compile(r"REASONING:\s*(.*?)(?=SOURCES:|$)", re.S),
    "sources": re.compile(r"SOURCES:\s*(.*?)(?=RELATED_QUESTIONS:|$)", re.S),
    "questions": re.compile(r"RELATED_QUESTIONS:\s*(.*?)$", re.S),
}


def compress_contexts(
    contexts: List[EnhancedContext],
    min_score: float = settings.PROMPT_MIN_CONTEXT_SCORE,
    max_contexts: int = settings.PROMPT_MAX_CONTEXTS,
) -> List[EnhancedContext]:
    """
    Keep contexts scoring above min_score, at most max_contexts of them.
    If none clear the bar (rank-fused scores are small) the best ones are kept.
    """
    filtered = [c for c in contexts if c.score > min_score]
    if not filtered and contexts:
        filtered = sorted(contexts, key=lambda c: c.score, reverse=True)
    compressed = filtered[:max_contexts]
    logger.debug(f"[ANSWER] Prompt compressed from {len(contexts)} to {len(compressed)} contexts")
    return compressed


def format_history(
    history: Optional[List[ChatMessage]],
    max_turns: int = settings.CONVERSATION_HISTORY_TURNS,
) -> str:
    """Most recent `max_turns` messages as 'Role: content' lines, oldest first."""
    if not history or max_turns <= 0:
        return ""
    return "\n".join(
        f"{msg.role.value.capitalize()}: {msg.content.strip()}" for msg in history[-max_turns:]
    )


def build_user_prompt(
    analysis: QueryAnalysis,
    contexts: List[EnhancedContext],
    history: Optional[List[ChatMessage]] = None,
) -> str:
    sources = "\n\n".join(
        f"[Source {i}] (Trust: {ctx.metadata.trustworthiness * 100:.0f}%, "
        f"Authority: {ctx.metadata.authority * 100:.0f}%, Document: {ctx.document_id})\n{ctx.text}"
        for i, ctx in enumerate(contexts, start=1)
    )
    conversation = format_history(history)
    preamble = f"Conversation so far:\n{conversation}\n\n" if conversation else ""
    return (
        f"{preamble}"
        f"Query: {analysis.original_query}\n"
        f"Expanded Query: {analysis.expanded_query}\n\n"
        f"Sources:\n{sources}"
    )


def _lines(block: Optional[str]) -> List[str]:
    if not block:
        return []
    return [line.strip().lstrip("-*").strip() for line in block.splitlines() if line.strip()]


def parse_answer(text: str) -> EnhancedAnswer:
    """Split a structured oracle reply into its sections. Missing sections get defaults."""
    matches = {name: pattern.search(text) for name, pattern in _SECTION_RE.items()}

    answer = matches["answer"].group(1).strip() if matches["answer"] else ""
    confidence = DEFAULT_ORACLE_CONFIDENCE
    if matches["confidence"]:
        confidence = min(float(matches["confidence"].group(1)), 100.0) / 100.0
    reasoning = matches["reasoning"].group(1).strip() if matches["reasoning"] else ""

    return EnhancedAnswer(
        answer=answer or text.strip(),
        confidence=confidence,
        sources=_lines(matches["sources"].group(1) if matches["sources"] else None),
        related_questions=_lines(matches["questions"].group(1) if matches["questions"] else None),
        reasoning=reasoning or "Standard retrieval and generation process",
    )


class AnswerService:
    """Synthesizes a cited answer from retrieved contexts via the LLM."""

    def __init__(self, llm: ILLMService):
        self.llm = llm

    async def generate(
        self,
        analysis: QueryAnalysis,
        contexts: List[EnhancedContext],
        conversation_history: Optional[List[ChatMessage]] = None,
    ) -> EnhancedAnswer:
        """`conversation_history` holds earlier turns; only the most recent ones reach the prompt."""
        if not contexts:
            return EnhancedAnswer(
                answer=NOT_FOUND_ANSWER,
                confidence=0.0,
                reasoning="Retrieval found no matching content",
                synthesized=False,
            )

        compressed = compress_contexts(contexts)
        system_prompt = INTENT_PROMPTS[analysis.intent] + "\n" + RESPONSE_FORMAT
        user_prompt = build_user_prompt(analysis, compressed, conversation_history)

        try:
            reply = await self.llm.complete(system_prompt, user_prompt, temperature=0.2)
        except OracleError as e:
            logger.warning(f"[ANSWER] Answer generation failed: {e}")
            return EnhancedAnswer(
                answer=GENERATION_FAILED_ANSWER,
                confidence=0.0,
                reasoning=f"Answer generation failed: {e.message}",
                synthesized=False,
            )

        answer = parse_answer(reply)
        logger.info(
            f"[ANSWER] Generated {len(answer.answer)} chars from {len(compressed)} contexts "
            f"(oracle confidence={answer.confidence:.2f})"
        )
        return answer

# services/context_enricher.py
"""Turns raw search hits into EnhancedContext objects with trust metadata."""
import logging
import re
from datetime import datetime, timezone
from typing import Optional

from adaptive_rag.config import settings
from adaptive_rag.core.domain import (
    ChunkSearchResult, ContextMetadata, DocumentSidecar, DocumentType, EnhancedContext
)

logger = logging.getLogger(settings.LOGGER_NAME)


def detect_document_type(text: str) -> DocumentType:
    if '```' in text or 'function' in text or 'class' in text:
        return DocumentType.CODE
    if '|' in text and any(len(line.split('|')) > 2 for line in text.split('\n')):
        return DocumentType.TABLE
    return DocumentType.TEXT


def calculate_complexity(text: str) -> float:
    """Average words per sentence / 10, capped at 1."""
    sentences = len(re.split(r'[.!?]+', text))
    words = len(text.split())
    if sentences == 0 or words == 0:
        return 0.0
    return min(words / sentences / 10, 1.0)


def recency_days(sidecar: Optional[DocumentSidecar], now: Optional[datetime] = None) -> float:
    """Days since upload, or the configured default when unknown."""
    if sidecar is None or not sidecar.upload_date:
        return settings.DEFAULT_RECENCY_DAYS
    try:
        uploaded = datetime.fromisoformat(sidecar.upload_date.replace('Z', '+00:00'))
    except ValueError:
        logger.debug(f"[ENRICH] Unparsable upload date: {sidecar.upload_date!r}")
        return settings.DEFAULT_RECENCY_DAYS
    if uploaded.tzinfo is None:
        uploaded = uploaded.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (now - uploaded).total_seconds() / 86400.0)


class ContextEnricher:
    """
    Attaches document type, complexity, trustworthiness, authority and
    recency to search hits. Trust and authority are fixed defaults until a
    source-credibility collaborator exists.
    """

    def __init__(
        self,
        trustworthiness: float = settings.DEFAULT_TRUSTWORTHINESS,
        authority: float = settings.DEFAULT_AUTHORITY,
    ):
        self.trustworthiness = trustworthiness
        self.authority = authority

    def enrich(
        self,
        result: ChunkSearchResult,
        score: Optional[float] = None,
        sidecar: Optional[DocumentSidecar] = None,
        fusion_type: Optional[str] = None,
    ) -> EnhancedContext:
        text = result.chunk.content
        metadata = ContextMetadata(
            document_type=detect_document_type(text),
            trustworthiness=self.trustworthiness,
            recency=recency_days(sidecar),
            authority=self.authority,
            complexity=calculate_complexity(text),
            semantic_tags=[result.chunk.metadata.section] if result.chunk.metadata.section else [],
            fusion_type=fusion_type,
        )
        return EnhancedContext(
            text=text,
            score=result.score if score is None else score,
            document_id=result.document_id,
            chunk_index=result.chunk_index,
            chunk_id=result.chunk.id,
            metadata=metadata,
        )

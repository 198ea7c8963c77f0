"""
Shared pytest fixtures: deterministic embedding provider, scripted LLM,
temporary vector stores and chunk builders.
"""
import re
import zlib
from typing import Any, Callable, List, Optional

import numpy as np
import pytest

from adaptive_rag.core.domain import (
    ChunkMetadata, ContextMetadata, DocumentChunk, EnhancedContext, QueryAnalysis, QueryIntent
)
from adaptive_rag.core.exceptions import OracleError
from adaptive_rag.core.interfaces import IEmbeddingService, ILLMService
from adaptive_rag.infrastructure.vector_store import FileVectorStore


# =============================================================================
# Fakes
# =============================================================================

class HashingEmbeddingService(IEmbeddingService):
    """Bag-of-words vectors: each word adds 1 to bucket crc32(word) % dim."""

    def __init__(self, dim: int = 256):
        self.dim = dim
        self.queries: List[str] = []

    def embed(self, text: str) -> List[float]:
        vec = np.zeros(self.dim, dtype=np.float64)
        for word in re.findall(r"\w+", text.lower()):
            vec[zlib.crc32(word.encode("utf-8")) % self.dim] += 1.0
        return vec.tolist()

    async def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        return [self.embed(t) for t in texts]

    async def generate_query_embedding(self, query: str) -> List[float]:
        self.queries.append(query)
        return self.embed(query)


class ScriptedLLM(ILLMService):
    """
    Replays scripted replies in order. An Exception in the script is raised;
    an exhausted script raises OracleError, like an unreachable LLM.
    """

    def __init__(self, json_replies: Optional[List[Any]] = None,
                 text_replies: Optional[List[Any]] = None):
        self.json_replies = list(json_replies or [])
        self.text_replies = list(text_replies or [])
        self.calls: List[tuple] = []

    @staticmethod
    def _next(replies: List[Any]) -> Any:
        if not replies:
            raise OracleError("no scripted reply")
        reply = replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def complete(self, system_prompt: str, user_prompt: str, temperature: float = 0.2) -> str:
        self.calls.append(("text", system_prompt, user_prompt))
        return self._next(self.text_replies)

    async def complete_json(self, system_prompt: str, user_prompt: str, temperature: float = 0.2) -> dict:
        self.calls.append(("json", system_prompt, user_prompt))
        return self._next(self.json_replies)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def embedding_service() -> HashingEmbeddingService:
    return HashingEmbeddingService()


@pytest.fixture
def scripted_llm() -> Callable[..., ScriptedLLM]:
    """Factory: scripted_llm(json_replies=[...], text_replies=[...])."""
    return ScriptedLLM


@pytest.fixture
def store_dir(tmp_path):
    return str(tmp_path / "vector-store")


@pytest.fixture
def store(store_dir) -> FileVectorStore:
    return FileVectorStore(store_dir)


@pytest.fixture
def make_chunk() -> Callable[..., DocumentChunk]:
    def _make(document_id: str, index: int, content: str,
              embedding: Optional[List[float]] = None, section: Optional[str] = None) -> DocumentChunk:
        return DocumentChunk(
            id=f"{document_id}_{index}",
            content=content,
            embedding=list(embedding) if embedding is not None else [],
            metadata=ChunkMetadata(document_id=document_id, section=section),
        )
    return _make


@pytest.fixture
def make_context() -> Callable[..., EnhancedContext]:
    def _make(text: str, score: float, document_id: str = "doc", chunk_index: int = 0,
              trustworthiness: float = 0.8, authority: float = 0.7, recency: float = 30.0) -> EnhancedContext:
        return EnhancedContext(
            text=text,
            score=score,
            document_id=document_id,
            chunk_index=chunk_index,
            chunk_id=f"{document_id}_{chunk_index}",
            metadata=ContextMetadata(
                trustworthiness=trustworthiness, authority=authority, recency=recency
            ),
        )
    return _make


@pytest.fixture
def make_analysis() -> Callable[..., QueryAnalysis]:
    def _make(query: str, intent: QueryIntent = QueryIntent.QUESTION,
              keywords: Optional[List[str]] = None, entities: Optional[List[str]] = None,
              expanded: Optional[str] = None, confidence: float = 0.5) -> QueryAnalysis:
        return QueryAnalysis(
            original_query=query,
            expanded_query=expanded or query,
            intent=intent,
            entities=list(entities or []),
            keywords=list(keywords or []),
            confidence=confidence,
        )
    return _make

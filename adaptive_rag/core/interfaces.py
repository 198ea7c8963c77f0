"""Core interfaces for the retrieval engine"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Tuple

from adaptive_rag.core.domain import (
    ChatMessage, ChunkSearchResult, DocumentChunk, DocumentSidecar, EnhancedAnswer,
    KnowledgeGraphEntity, RetrievalResult
)

# ============= Vector Store Interface =============
class IVectorStore(ABC):
    """Interface for per-document chunk storage and exact similarity search"""

    @abstractmethod
    async def store_document(
        self,
        document_id: str,
        chunks: List[DocumentChunk],
        metadata: Optional[DocumentSidecar] = None
    ) -> None:
        """Persist and index chunks, replacing any prior entry for document_id"""
        pass

    @abstractmethod
    async def search_similar(
        self, query_embedding: List[float], document_id: str, top_k: int = 5
    ) -> List[ChunkSearchResult]:
        """Top-k chunks of one document by cosine similarity. Unknown id -> []"""
        pass

    @abstractmethod
    async def search_across_all(
        self,
        query_embedding: List[float],
        top_k: Optional[int] = 5,
        min_score: float = 0.3,
        document_ids: Optional[Iterable[str]] = None
    ) -> List[ChunkSearchResult]:
        """Global top-k over stored documents (all, or only document_ids), keeping scores above min_score"""
        pass

    @abstractmethod
    async def delete_document(self, document_id: str) -> None:
        """Remove a document from memory and disk. Idempotent."""
        pass

    @abstractmethod
    async def list_documents(self) -> List[str]:
        """Get known document ids"""
        pass

    @abstractmethod
    async def get_document_chunks(self, document_id: str) -> List[DocumentChunk]:
        """Ordered chunks of one document ([] if unknown)"""
        pass

    @abstractmethod
    async def get_document_metadata(self, document_id: str) -> Optional[DocumentSidecar]:
        """Sidecar metadata for a document, if any was stored"""
        pass

    @abstractmethod
    async def snapshot(
        self, document_ids: Optional[Iterable[str]] = None
    ) -> List[Tuple[str, List[DocumentChunk]]]:
        """Consistent read of (document_id, chunks) pairs within scope"""
        pass

    @abstractmethod
    async def count(self) -> int:
        """Get total number of chunks"""
        pass

# ============= Embedding Service Interface =============
class IEmbeddingService(ABC):
    """Interface for embedding generation"""

    @abstractmethod
    async def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for text chunks"""
        pass

    @abstractmethod
    async def generate_query_embedding(self, query: str) -> List[float]:
        """Generate embedding for search query"""
        pass

# ============= LLM Oracle Interface =============
class ILLMService(ABC):
    """
    Interface for the external language model used for query analysis,
    strategy selection, query refinement and answer synthesis.

    Implementations raise OracleError on transport failure or empty output.
    """

    @abstractmethod
    async def complete(
        self, system_prompt: str, user_prompt: str, temperature: float = 0.2
    ) -> str:
        """Return raw completion text"""
        pass

    @abstractmethod
    async def complete_json(
        self, system_prompt: str, user_prompt: str, temperature: float = 0.2
    ) -> dict:
        """Return a decoded JSON object. Raises OracleError if not decodable."""
        pass

# ============= Knowledge Graph Interface =============
class IKnowledgeGraph(ABC):
    """
    Read-only view of an externally populated entity graph.
    Population and maintenance belong to another collaborator.
    """

    @abstractmethod
    def get_entity(self, entity_id: str) -> Optional[KnowledgeGraphEntity]:
        pass

    @abstractmethod
    def traverse(self, entity_id: str, depth: int) -> List[KnowledgeGraphEntity]:
        """Entities reachable within `depth` hops over outgoing and incoming edges"""
        pass

# ============= RAG Service Interface =============
class IRAGService(ABC):
    """High-level ingestion, retrieval and answering operations"""

    vector_store: IVectorStore

    @abstractmethod
    async def get_status(self) -> Dict[str, Any]:
        """Get system status"""
        pass

    @abstractmethod
    async def store_document(
        self,
        document_id: str,
        chunks: List[DocumentChunk],
        filename: Optional[str] = None,
        file_size_bytes: Optional[int] = None
    ) -> DocumentSidecar:
        """Embed chunks lacking vectors, then persist them with a fresh sidecar"""
        pass

    @abstractmethod
    async def delete_document(self, document_id: str) -> None:
        """Delete a document and its chunks. Idempotent."""
        pass

    @abstractmethod
    async def list_documents(self) -> List[Tuple[str, Optional[DocumentSidecar]]]:
        """Known document ids with their sidecars"""
        pass

    @abstractmethod
    async def get_document(self, document_id: str) -> Tuple[int, Optional[DocumentSidecar]]:
        """Stored chunk count and sidecar. Raises DocumentNotFoundError for unknown ids."""
        pass

    @abstractmethod
    async def retrieve(
        self,
        query: str,
        document_ids: Optional[List[str]] = None,
        top_k: Optional[int] = None,
        deadline_seconds: Optional[float] = None
    ) -> RetrievalResult:
        """Adaptive retrieval over stored documents"""
        pass

    @abstractmethod
    async def answer(
        self,
        query: str,
        document_ids: Optional[List[str]] = None,
        top_k: Optional[int] = None,
        conversation_history: Optional[List[ChatMessage]] = None
    ) -> Tuple[RetrievalResult, EnhancedAnswer]:
        """Retrieve, synthesize an answer and score its confidence"""
        pass

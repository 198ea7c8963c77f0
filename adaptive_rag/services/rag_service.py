# services/rag_service.py
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from adaptive_rag.config import settings
from adaptive_rag.core.domain import (
    ChatMessage, DocumentChunk, DocumentSidecar, EnhancedAnswer, RetrievalResult
)
from adaptive_rag.core.exceptions import DocumentNotFoundError, ValidationError
from adaptive_rag.core.interfaces import IEmbeddingService, IRAGService, IVectorStore
from adaptive_rag.services.adaptive_engine import AdaptiveRetrievalEngine
from adaptive_rag.services.answer_service import AnswerService
from adaptive_rag.services.confidence import ConfidenceEstimator
from adaptive_rag.utils.common import sanitize_text, validate_document_id
from adaptive_rag.utils.deadline import Deadline

logger = logging.getLogger(settings.LOGGER_NAME)


class RAGService(IRAGService):
    def __init__(
        self,
        vector_store: IVectorStore,
        embedding_service: IEmbeddingService,
        engine: AdaptiveRetrievalEngine,
        answer_service: AnswerService,
        confidence_estimator: Optional[ConfidenceEstimator] = None,
    ):
        self.vector_store = vector_store
        self.embedding_service = embedding_service
        self.engine = engine
        self.answer_service = answer_service
        self.confidence_estimator = confidence_estimator or ConfidenceEstimator()

    # ============ Ingestion ============

    async def store_document(
        self,
        document_id: str,
        chunks: List[DocumentChunk],
        filename: Optional[str] = None,
        file_size_bytes: Optional[int] = None
    ) -> DocumentSidecar:
        if not validate_document_id(document_id):
            raise ValidationError(f"Invalid document id: {document_id!r}")
        if not chunks:
            raise ValidationError("A document needs at least one chunk")

        start = time.perf_counter()
        await self._embed_missing(chunks)

        sidecar = DocumentSidecar(
            filename=filename or document_id,
            upload_date=datetime.now(timezone.utc).isoformat(),
            chunk_count=len(chunks),
            file_size_bytes=file_size_bytes,
            processing_time_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        await self.vector_store.store_document(document_id, chunks, sidecar)
        logger.info(f"[INGEST] Stored {document_id} ({len(chunks)} chunks)")
        return sidecar

    async def _embed_missing(self, chunks: List[DocumentChunk]) -> None:
        """Fill in embeddings for chunks that arrived without one."""
        missing = [c for c in chunks if not c.embedding]
        if not missing:
            return
        logger.info(f"[INGEST] Generating embeddings for {len(missing)} chunks")
        vectors = await self.embedding_service.generate_embeddings([c.content for c in missing])
        for chunk, vector in zip(missing, vectors):
            chunk.embedding = vector

    async def delete_document(self, document_id: str) -> None:
        await self.vector_store.delete_document(document_id)

    async def list_documents(self) -> List[Tuple[str, Optional[DocumentSidecar]]]:
        document_ids = await self.vector_store.list_documents()
        sidecars = await asyncio.gather(
            *(self.vector_store.get_document_metadata(doc_id) for doc_id in document_ids)
        )
        return list(zip(document_ids, sidecars))

    async def get_document(self, document_id: str) -> Tuple[int, Optional[DocumentSidecar]]:
        chunks = await self.vector_store.get_document_chunks(document_id)
        if not chunks:
            raise DocumentNotFoundError(f"Document not found: {document_id}")
        return len(chunks), await self.vector_store.get_document_metadata(document_id)

    # ============ Retrieval & Answering ============

    async def retrieve(
        self,
        query: str,
        document_ids: Optional[List[str]] = None,
        top_k: Optional[int] = None,
        deadline_seconds: Optional[float] = None
    ) -> RetrievalResult:
        query = sanitize_text(query, settings.MAX_SANITIZED_TEXT_LENGTH)
        if deadline_seconds is None:
            deadline_seconds = settings.RETRIEVAL_TIMEOUT_SEC
        return await self.engine.retrieve(query, document_ids, top_k, Deadline(deadline_seconds))

    async def answer(
        self,
        query: str,
        document_ids: Optional[List[str]] = None,
        top_k: Optional[int] = None,
        conversation_history: Optional[List[ChatMessage]] = None
    ) -> Tuple[RetrievalResult, EnhancedAnswer]:
        result = await self.retrieve(query, document_ids, top_k)
        answer = await self.answer_service.generate(
            result.query_analysis, result.chunks, conversation_history
        )

        if answer.synthesized:
            answer.confidence = self.confidence_estimator.estimate(
                answer.confidence, result.query_analysis, result.chunks, len(answer.answer)
            )
        return result, answer

    async def get_status(self) -> Dict[str, Any]:
        document_ids, chunk_count = await asyncio.gather(
            self.vector_store.list_documents(),
            self.vector_store.count()
        )
        return {
            "documents": len(document_ids),
            "chunks_available": chunk_count,
            "ready_for_queries": chunk_count > 0,
        }

# api/schemas.py
from pydantic import BaseModel, Field
from typing import Optional, List

from adaptive_rag.core.domain import (
    ChatMessage, ChatRole, ChunkMetadata, DocumentChunk, DocumentSidecar, DocumentType,
    EnhancedContext, RetrievalStrategy, StrategyKind
)

# ============= Ingestion =============

class ChunkIn(BaseModel):
    id: str
    content: str
    embedding: List[float] = Field(default_factory=list)  # empty -> embedded on ingest
    section: Optional[str] = None
    page: Optional[int] = None

    def to_domain(self, document_id: str) -> DocumentChunk:
        return DocumentChunk(
            id=self.id,
            content=self.content,
            embedding=list(self.embedding),
            metadata=ChunkMetadata(document_id=document_id, section=self.section, page=self.page),
        )

class StoreDocumentRequest(BaseModel):
    document_id: str
    chunks: List[ChunkIn]
    filename: Optional[str] = None
    file_size_bytes: Optional[int] = None

class DocumentInfo(BaseModel):
    id: str
    filename: Optional[str] = None
    upload_date: Optional[str] = None
    chunk_count: Optional[int] = None
    file_size_bytes: Optional[int] = None
    processing_time_ms: Optional[float] = None

    @classmethod
    def from_domain(cls, document_id: str, sidecar: Optional[DocumentSidecar]) -> 'DocumentInfo':
        if sidecar is None:
            return cls(id=document_id)
        return cls(
            id=document_id,
            filename=sidecar.filename,
            upload_date=sidecar.upload_date,
            chunk_count=sidecar.chunk_count,
            file_size_bytes=sidecar.file_size_bytes,
            processing_time_ms=sidecar.processing_time_ms,
        )

class StoreDocumentResponse(BaseModel):
    status: str
    document: DocumentInfo

class DocumentsListResponse(BaseModel):
    documents: List[DocumentInfo]

class DeleteResponse(BaseModel):
    status: str
    message: str

# ============= Retrieval =============

class RetrieveRequest(BaseModel):
    query: str
    document_ids: Optional[List[str]] = None
    top_k: Optional[int] = Field(default=None, ge=1, le=50)

class ChatMessageIn(BaseModel):
    role: ChatRole
    content: str

    def to_domain(self) -> ChatMessage:
        return ChatMessage(role=self.role, content=self.content)

class ChatRequest(RetrieveRequest):
    conversation_history: Optional[List[ChatMessageIn]] = None

    def history(self) -> Optional[List[ChatMessage]]:
        if not self.conversation_history:
            return None
        return [msg.to_domain() for msg in self.conversation_history]

class ContextMetadataOut(BaseModel):
    document_type: DocumentType
    trustworthiness: float
    recency: float
    authority: float
    complexity: float
    relationships: List[str]
    semantic_tags: List[str]
    fusion_type: Optional[str] = None

class ContextOut(BaseModel):
    text: str
    score: float
    document_id: str
    chunk_index: int
    chunk_id: str
    metadata: ContextMetadataOut

    @classmethod
    def from_domain(cls, ctx: EnhancedContext) -> 'ContextOut':
        meta = ctx.metadata
        return cls(
            text=ctx.text,
            score=ctx.score,
            document_id=ctx.document_id,
            chunk_index=ctx.chunk_index,
            chunk_id=ctx.chunk_id,
            metadata=ContextMetadataOut(
                document_type=meta.document_type,
                trustworthiness=meta.trustworthiness,
                recency=meta.recency,
                authority=meta.authority,
                complexity=meta.complexity,
                relationships=list(meta.relationships),
                semantic_tags=list(meta.semantic_tags),
                fusion_type=meta.fusion_type,
            ),
        )

class StrategyOut(BaseModel):
    kind: StrategyKind
    confidence: float
    reasoning: str

    @classmethod
    def from_domain(cls, strategy: RetrievalStrategy) -> 'StrategyOut':
        return cls(kind=strategy.kind, confidence=strategy.confidence, reasoning=strategy.reasoning)

class RetrieveResponse(BaseModel):
    chunks: List[ContextOut]
    strategy: StrategyOut
    total_found: int
    search_time_ms: float
    timed_out: bool = False

class ChatResponse(BaseModel):
    answer: str
    confidence: float
    sources: List[str]
    related_questions: List[str]
    reasoning: str
    strategy: StrategyOut
    chunks: List[ContextOut]

class StatusResponse(BaseModel):
    documents: int = 0
    chunks_available: int = 0
    ready_for_queries: bool = False

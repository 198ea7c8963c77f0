"""Domain enums and models shared across the retrieval engine."""
from enum import Enum

from dataclasses import dataclass, field, replace
from typing import List, Dict, Any, Optional

# ============= Enums =============

class ErrorCode(str, Enum):
    """Error codes carried by domain exceptions."""
    VALIDATION_FAILED = "VALIDATION_FAILED"
    DIMENSION_MISMATCH = "DIMENSION_MISMATCH"
    ORACLE_FAILED = "ORACLE_FAILED"
    STORAGE_FAILED = "STORAGE_FAILED"
    NOT_FOUND = "NOT_FOUND"


class QueryIntent(str, Enum):
    """What the user is asking for."""
    QUESTION = "question"
    SUMMARY = "summary"
    COMPARISON = "comparison"
    DEFINITION = "definition"
    INSTRUCTION = "instruction"
    COMPLEX = "complex"

    @staticmethod
    def from_string(value: Any) -> 'QueryIntent':
        """Convert string to QueryIntent, defaulting to QUESTION."""
        try:
            return QueryIntent(str(value).strip().lower())
        except ValueError:
            return QueryIntent.QUESTION


class StrategyKind(str, Enum):
    """Retrieval algorithm variants the selector can choose from."""
    SIMPLE = "simple"
    MULTI_STAGE = "multi_stage"
    KNOWLEDGE_GRAPH = "knowledge_graph"
    MULTIMODAL = "multimodal"
    EXPERT_DOMAIN = "expert_domain"

    @staticmethod
    def from_string(value: Any) -> Optional['StrategyKind']:
        """Convert string to StrategyKind. Returns None for unknown values."""
        try:
            return StrategyKind(str(value).strip().lower())
        except ValueError:
            return None


class DocumentType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    TABLE = "table"
    CHART = "chart"
    CODE = "code"


class Modality(str, Enum):
    TEXT = "text"
    VISUAL = "visual"
    STRUCTURED = "structured"


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


# ============= Storage Models =============

@dataclass
class ChunkMetadata:
    """Location of a chunk inside its source document."""
    document_id: str
    section: Optional[str] = None
    page: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"documentId": self.document_id}
        if self.section is not None:
            data["section"] = self.section
        if self.page is not None:
            data["page"] = self.page
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], document_id: str) -> 'ChunkMetadata':
        return cls(
            document_id=data.get("documentId") or data.get("document_id") or document_id,
            section=data.get("section"),
            page=data.get("page"),
        )


@dataclass
class DocumentChunk:
    """Domain model for document chunks"""
    id: str
    content: str
    embedding: List[float]
    metadata: ChunkMetadata

    @property
    def document_id(self) -> str:
        return self.metadata.document_id

    def owned_by(self, document_id: str) -> 'DocumentChunk':
        """Copy of this chunk whose metadata names `document_id`."""
        if self.metadata.document_id == document_id:
            return self
        return replace(self, metadata=replace(self.metadata, document_id=document_id))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "embedding": list(self.embedding),
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], document_id: str) -> 'DocumentChunk':
        return cls(
            id=str(data["id"]),
            content=data.get("content", ""),
            embedding=[float(v) for v in data.get("embedding", [])],
            metadata=ChunkMetadata.from_dict(data.get("metadata") or {}, document_id),
        )


@dataclass
class DocumentSidecar:
    """Upload/processing bookkeeping persisted beside a document's chunks."""
    filename: Optional[str] = None
    upload_date: Optional[str] = None  # ISO-8601
    chunk_count: Optional[int] = None
    file_size_bytes: Optional[int] = None
    processing_time_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "uploadDate": self.upload_date,
            "chunkCount": self.chunk_count,
            "fileSizeBytes": self.file_size_bytes,
            "processingTimeMs": self.processing_time_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DocumentSidecar':
        return cls(
            filename=data.get("filename"),
            upload_date=data.get("uploadDate"),
            chunk_count=data.get("chunkCount"),
            file_size_bytes=data.get("fileSizeBytes"),
            processing_time_ms=data.get("processingTimeMs"),
        )


@dataclass
class ChunkSearchResult:
    """Domain model for search results. `document_id` is the key the chunk is stored under."""
    chunk: DocumentChunk
    score: float
    chunk_index: int
    document_id: str


# ============= Query Models =============

@dataclass
class QueryAnalysis:
    original_query: str
    expanded_query: str
    intent: QueryIntent = QueryIntent.QUESTION
    entities: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    confidence: float = 0.5

    @classmethod
    def fallback(cls, query: str) -> 'QueryAnalysis':
        """Deterministic analysis used when the oracle is unavailable."""
        return cls(original_query=query, expanded_query=query)


@dataclass
class StrategyParameters:
    stages: Optional[int] = None
    graph_depth: Optional[int] = None
    domain_focus: Optional[str] = None
    modality_types: Optional[List[str]] = None


@dataclass
class RetrievalStrategy:
    kind: StrategyKind
    confidence: float
    reasoning: str
    parameters: StrategyParameters = field(default_factory=StrategyParameters)

    @classmethod
    def fallback(cls) -> 'RetrievalStrategy':
        return cls(kind=StrategyKind.SIMPLE, confidence=0.5, reasoning="fallback")


# ============= Knowledge Graph =============

@dataclass
class EntityRelationship:
    target: str
    relation: str
    strength: float = 1.0


@dataclass
class KnowledgeGraphEntity:
    id: str
    name: str
    type: str = "concept"
    properties: Dict[str, Any] = field(default_factory=dict)
    relationships: List[EntityRelationship] = field(default_factory=list)


# ============= Retrieval Results =============

@dataclass
class ContextMetadata:
    """Trust and provenance annotations attached to a retrieved context."""
    document_type: DocumentType = DocumentType.TEXT
    trustworthiness: float = 0.8
    recency: float = 30.0  # days since creation/update
    authority: float = 0.7
    complexity: float = 0.5
    relationships: List[str] = field(default_factory=list)
    semantic_tags: List[str] = field(default_factory=list)
    extracted_entities: List[KnowledgeGraphEntity] = field(default_factory=list)
    fusion_type: Optional[str] = None


@dataclass
class EnhancedContext:
    """A retrieved chunk annotated with a relevance score and trust metadata."""
    text: str
    score: float
    document_id: str
    chunk_index: int
    chunk_id: str
    metadata: ContextMetadata = field(default_factory=ContextMetadata)

    @property
    def key(self) -> tuple:
        return (self.document_id, self.chunk_index)


@dataclass
class RetrievalResult:
    chunks: List[EnhancedContext]
    strategy: RetrievalStrategy
    query_analysis: QueryAnalysis
    total_found: int
    search_time_ms: float
    timed_out: bool = False


@dataclass
class EnhancedAnswer:
    answer: str
    confidence: float
    sources: List[str] = field(default_factory=list)
    related_questions: List[str] = field(default_factory=list)
    reasoning: str = ""
    synthesized: bool = True  # False when no oracle answer backs the text


@dataclass
class ChatMessage:
    """One earlier turn of the conversation a chat query belongs to."""
    role: ChatRole
    content: str

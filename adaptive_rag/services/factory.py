# services/factory.py
from functools import lru_cache

from adaptive_rag.config import settings
from adaptive_rag.core.interfaces import (
    IEmbeddingService, IKnowledgeGraph, ILLMService, IRAGService, IVectorStore
)
from adaptive_rag.infrastructure.embedding_services import SentenceTransformerEmbedding
from adaptive_rag.infrastructure.knowledge_graph import InMemoryKnowledgeGraph
from adaptive_rag.infrastructure.vector_store import FileVectorStore
from adaptive_rag.services.adaptive_engine import AdaptiveRetrievalEngine
from adaptive_rag.services.answer_service import AnswerService
from adaptive_rag.services.context_enricher import ContextEnricher
from adaptive_rag.services.hybrid_search import HybridSearchEngine
from adaptive_rag.services.llm_service import LLMService
from adaptive_rag.services.rag_service import RAGService

# Provider functions for each component. Each is cached so the whole app
# shares one store (and its locks), one model and one graph.

@lru_cache
def get_vector_store() -> IVectorStore:
    return FileVectorStore(settings.VECTOR_STORE_DIR)

@lru_cache
def get_embedding_service() -> IEmbeddingService:
    return SentenceTransformerEmbedding(settings.EMBEDDING_MODEL_NAME)

@lru_cache
def get_llm_service() -> ILLMService:
    return LLMService(settings.LLM_BASE_URL, settings.LLM_MODEL_NAME, settings.REQUEST_TIMEOUT)

@lru_cache
def get_knowledge_graph() -> IKnowledgeGraph:
    """Empty until the populating collaborator calls load_entities."""
    return InMemoryKnowledgeGraph()

@lru_cache
def get_rag_service() -> IRAGService:
    """
    Wire the full pipeline. FastAPI endpoints depend on this provider, so
    tests override it with app.dependency_overrides.
    """
    vector_store = get_vector_store()
    embedding_service = get_embedding_service()
    llm = get_llm_service()

    search_engine = HybridSearchEngine(vector_store, embedding_service, ContextEnricher())
    engine = AdaptiveRetrievalEngine(search_engine, llm, get_knowledge_graph())
    return RAGService(
        vector_store=vector_store,
        embedding_service=embedding_service,
        engine=engine,
        answer_service=AnswerService(llm),
    )

def clear_instances() -> None:
    for provider in (get_rag_service, get_knowledge_graph, get_llm_service,
                     get_embedding_service, get_vector_store):
        provider.cache_clear()

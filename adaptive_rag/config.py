# config.py
"""Retrieval engine configuration"""
from pydantic_settings import BaseSettings

from adaptive_rag.utils.common import get_log_file_path, get_project_root

class Settings(BaseSettings):
    """Application configuration"""

    # Logger configuration
    LOGGER_NAME: str = "adaptive_rag"
    LOG_FILE_PATH: str = get_log_file_path()
    LOG_LEVEL: str = "DEBUG"
    CONSOLE_LOG_LEVEL: str = "INFO"
    LOG_MAX_BYTES: int = 5 * 1024 * 1024  # 5MB
    LOG_BACKUP_COUNT: int = 5

    # Vector store
    VECTOR_STORE_DIR: str = f"{get_project_root()}/.vector-store"

    # Embedding model
    EMBEDDING_MODEL_NAME: str = "all-MiniLM-L6-v2"
    EMBEDDING_BATCH_SIZE: int = 32

    # LLM oracle (Ollama-compatible API)
    LLM_BASE_URL: str = "http://localhost:11434"
    LLM_MODEL_NAME: str = "llama3.1:8b"
    REQUEST_TIMEOUT: int = 60

    # App metadata
    APP_TITLE: str = "Adaptive Retrieval Engine"
    APP_VERSION: str = "1.0.0"

    # Request validation
    MAX_QUERY_LENGTH: int = 1000
    MAX_SANITIZED_TEXT_LENGTH: int = 10000

    # ============= Hybrid search =============
    DEFAULT_TOP_K: int = 8
    DENSE_MIN_SCORE: float = 0.3
    SEARCH_ALL_MIN_SCORE: float = 0.3
    SPARSE_MIN_TOKEN_LENGTH: int = 3
    SPARSE_KEYWORD_WEIGHT: int = 2
    DENSE_WEIGHT_DEFINITION: float = 0.7
    DENSE_WEIGHT_DEFAULT: float = 0.6
    RRF_K: int = 60
    DIVERSITY_THRESHOLD: float = 0.7

    # ============= Multi-stage retrieval =============
    MULTI_STAGE_DEFAULT_STAGES: int = 3
    EXPERT_DOMAIN_STAGES: int = 4
    STAGE_DEDUP_THRESHOLD: float = 0.8
    EARLY_STOP_MIN_CONTEXTS: int = 10
    EARLY_STOP_MEAN_SCORE: float = 0.8
    REFINE_CONTEXT_COUNT: int = 3
    REFINE_SNIPPET_CHARS: int = 100

    # ============= Knowledge graph =============
    GRAPH_DEFAULT_DEPTH: int = 2

    # ============= Context metadata defaults =============
    DEFAULT_TRUSTWORTHINESS: float = 0.8
    DEFAULT_AUTHORITY: float = 0.7
    DEFAULT_RECENCY_DAYS: float = 30.0

    # ============= Answer synthesis =============
    PROMPT_MIN_CONTEXT_SCORE: float = 0.4
    PROMPT_MAX_CONTEXTS: int = 6
    CONVERSATION_HISTORY_TURNS: int = 6

    # Perf guards
    RETRIEVAL_TIMEOUT_SEC: float = 30.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

settings = Settings()

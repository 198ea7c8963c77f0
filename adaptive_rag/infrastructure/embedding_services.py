# infrastructure/embedding_services.py
"""Default embedding provider backed by sentence-transformers"""
import asyncio
import logging
from typing import Dict, List

import numpy as np
from sentence_transformers import SentenceTransformer

from adaptive_rag.config import settings
from adaptive_rag.core.interfaces import IEmbeddingService

logger = logging.getLogger(settings.LOGGER_NAME)


def l2_normalize(arr: np.ndarray) -> np.ndarray:
    """Scale each row of an (N, D) array to unit length. Zero rows stay zero."""
    norms = np.linalg.norm(arr, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return arr / norms


class SentenceTransformerEmbedding(IEmbeddingService):
    """
    Unit-length sentence embeddings. Stored and query vectors go through
    the same normalization so their cosine scores are comparable.

    Models are cached per name for the life of the process; the first
    construction prefers the local cache and downloads only on a miss.
    """

    _models: Dict[str, SentenceTransformer] = {}

    def __init__(
        self,
        model_name: str = settings.EMBEDDING_MODEL_NAME,
        batch_size: int = settings.EMBEDDING_BATCH_SIZE,
    ):
        self.model_name = model_name
        self.batch_size = batch_size
        self.model = self._load_model(model_name)

    @classmethod
    def _load_model(cls, model_name: str) -> SentenceTransformer:
        model = cls._models.get(model_name)
        if model is not None:
            return model

        try:
            model = SentenceTransformer(model_name, local_files_only=True)
            logger.info(f"[EMBED] Loaded {model_name} from local cache")
        except (OSError, ValueError) as e:
            logger.warning(f"[EMBED] {model_name} not cached, downloading ({e})")
            model = SentenceTransformer(model_name)
            logger.info(f"[EMBED] Downloaded {model_name}")

        cls._models[model_name] = model
        return model

    @property
    def dimension(self) -> int:
        return self.model.get_sentence_embedding_dimension()

    def _encode(self, texts: List[str]) -> List[List[float]]:
        raw = self.model.encode(texts, batch_size=self.batch_size, convert_to_tensor=False)
        vectors = np.asarray(raw, dtype=np.float32).reshape(len(texts), -1)
        return l2_normalize(vectors).tolist()

    async def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        logger.debug(f"[EMBED] Encoding {len(texts)} texts with {self.model_name}")
        return await asyncio.to_thread(self._encode, texts)

    async def generate_query_embedding(self, query: str) -> List[float]:
        vectors = await asyncio.to_thread(self._encode, [query])
        return vectors[0]

# infrastructure/vector_store.py
import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from adaptive_rag.config import settings
from adaptive_rag.core.domain import ChunkSearchResult, DocumentChunk, DocumentSidecar
from adaptive_rag.core.exceptions import StorageError, ValidationError
from adaptive_rag.core.interfaces import IVectorStore
from adaptive_rag.infrastructure.locks import KeyedRWLock
from adaptive_rag.utils.common import SIDECAR_SUFFIX, validate_document_id
from adaptive_rag.utils.similarity import cosine_similarity_matrix

logger = logging.getLogger(settings.LOGGER_NAME)


class FileVectorStore(IVectorStore):
    """
    Per-document JSON chunk files with exact cosine search.

    Layout:
    - <dir>/<document_id>.json            ordered array of chunks
    - <dir>/<document_id>-metadata.json   optional upload/processing sidecar

    Every document is loaded eagerly at construction. Searches scan all
    chunks in scope (no ANN index). Each document id has its own
    read-write lock: searches share it, store/delete hold it exclusively.
    Files are written to a temporary file and renamed into place.
    """

    def __init__(self, store_dir: str = settings.VECTOR_STORE_DIR):
        self._dir = Path(store_dir)
        self._documents: Dict[str, List[DocumentChunk]] = {}
        self._matrices: Dict[str, np.ndarray] = {}
        self._sidecars: Dict[str, DocumentSidecar] = {}
        self._locks = KeyedRWLock()

        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Could not create vector store directory {self._dir}: {e}")
        self._load_from_disk()

    # ============ Paths & Persistence ============

    def _chunk_path(self, document_id: str) -> Path:
        return self._dir / f"{document_id}.json"

    def _sidecar_path(self, document_id: str) -> Path:
        return self._dir / f"{document_id}{SIDECAR_SUFFIX}.json"

    def _load_from_disk(self) -> None:
        """
        Loads every chunk file and sidecar. The filename stem is the document
        id; files whose stem is not a valid id, or whose content is unreadable,
        are skipped.
        """
        for path in sorted(self._dir.glob("*.json")):
            stem = path.stem
            if stem.endswith(SIDECAR_SUFFIX):
                continue
            if not validate_document_id(stem):
                logger.warning(f"[STORE] Skipping chunk file with invalid document id: {path.name}")
                continue
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    raw_chunks = json.load(f)
                chunks = [DocumentChunk.from_dict(c, stem).owned_by(stem) for c in raw_chunks]
                self._index(stem, chunks)
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(f"[STORE] Skipping unreadable chunk file {path.name}: {e}")
                continue

            sidecar_path = self._sidecar_path(stem)
            if sidecar_path.exists():
                try:
                    with open(sidecar_path, 'r', encoding='utf-8') as f:
                        self._sidecars[stem] = DocumentSidecar.from_dict(json.load(f))
                except (OSError, ValueError) as e:
                    logger.warning(f"[STORE] Ignoring unreadable sidecar {sidecar_path.name}: {e}")

        logger.info(f"[STORE] Loaded {len(self._documents)} documents from {self._dir}")

    def _index(self, document_id: str, chunks: List[DocumentChunk]) -> None:
        if chunks:
            matrix = np.asarray([c.embedding for c in chunks], dtype=np.float64)
        else:
            matrix = np.zeros((0, 0), dtype=np.float64)
        self._documents[document_id] = chunks
        self._matrices[document_id] = matrix

    def _write_json_atomic(self, path: Path, payload) -> None:
        """Write to a temp file in the same directory, then rename over the target."""
        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(payload, f, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _persist(
        self, document_id: str, chunks: List[DocumentChunk], metadata: Optional[DocumentSidecar]
    ) -> None:
        self._write_json_atomic(self._chunk_path(document_id), [c.to_dict() for c in chunks])
        sidecar_path = self._sidecar_path(document_id)
        if metadata is not None:
            self._write_json_atomic(sidecar_path, metadata.to_dict())
        elif sidecar_path.exists():
            sidecar_path.unlink()

    def _remove_files(self, document_id: str) -> None:
        for path in (self._chunk_path(document_id), self._sidecar_path(document_id)):
            if path.exists():
                path.unlink()

    # ============ Validation ============

    @staticmethod
    def _validate(document_id: str, chunks: List[DocumentChunk]) -> None:
        if not validate_document_id(document_id):
            raise ValidationError(f"Invalid document id: {document_id!r}")

        dims = {len(c.embedding) for c in chunks}
        if len(dims) > 1:
            raise ValidationError(
                f"Chunks of document {document_id} have mixed embedding dimensions: {sorted(dims)}"
            )
        if 0 in dims:
            raise ValidationError(f"Chunks of document {document_id} are missing embeddings")

    # ============ IVectorStore ============

    async def store_document(
        self,
        document_id: str,
        chunks: List[DocumentChunk],
        metadata: Optional[DocumentSidecar] = None
    ) -> None:
        self._validate(document_id, chunks)
        chunks = [c.owned_by(document_id) for c in chunks]

        async with self._locks.write(document_id):
            try:
                await asyncio.to_thread(self._persist, document_id, chunks, metadata)
            except OSError as e:
                logger.error(f"[STORE] Failed to persist document {document_id}: {e}")
                raise StorageError(f"Failed to persist document {document_id}: {e}")

            self._index(document_id, chunks)
            if metadata is not None:
                self._sidecars[document_id] = metadata
            else:
                self._sidecars.pop(document_id, None)

        logger.info(f"[STORE] Saved document {document_id} with {len(chunks)} chunks")

    def _scan(
        self, document_id: str, query_embedding: List[float], min_score: Optional[float]
    ) -> List[ChunkSearchResult]:
        """Score every chunk of one document (caller holds the read lock)."""
        chunks = self._documents.get(document_id)
        if not chunks:
            return []

        scores = cosine_similarity_matrix(query_embedding, self._matrices[document_id])
        results = []
        for idx, (chunk, score) in enumerate(zip(chunks, scores)):
            score = float(score)
            if min_score is not None and score <= min_score:
                continue
            results.append(ChunkSearchResult(
                chunk=chunk, score=score, chunk_index=idx, document_id=document_id
            ))
        return results

    async def _scan_locked(
        self, document_id: str, query_embedding: List[float], min_score: Optional[float]
    ) -> List[ChunkSearchResult]:
        async with self._locks.read(document_id):
            return await asyncio.to_thread(self._scan, document_id, query_embedding, min_score)

    async def search_similar(
        self, query_embedding: List[float], document_id: str, top_k: int = 5
    ) -> List[ChunkSearchResult]:
        if document_id not in self._documents:
            return []

        results = await self._scan_locked(document_id, query_embedding, None)
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:max(top_k, 0)]

    async def search_across_all(
        self,
        query_embedding: List[float],
        top_k: Optional[int] = 5,
        min_score: float = settings.SEARCH_ALL_MIN_SCORE,
        document_ids: Optional[Iterable[str]] = None
    ) -> List[ChunkSearchResult]:
        """
        Scan every stored document (or only `document_ids`) concurrently.
        `top_k=None` returns every result above `min_score`.
        """
        targets = self._resolve_scope(document_ids)
        if not targets:
            return []

        per_document = await asyncio.gather(
            *(self._scan_locked(doc_id, query_embedding, min_score) for doc_id in targets)
        )
        results = [r for doc_results in per_document for r in doc_results]
        results.sort(key=lambda r: r.score, reverse=True)

        logger.debug(f"[STORE] Scanned {len(targets)} documents, {len(results)} above {min_score}")
        return results if top_k is None else results[:max(top_k, 0)]

    async def delete_document(self, document_id: str) -> None:
        # Ids that fail validation are never loaded or written
        if not validate_document_id(document_id):
            return

        async with self._locks.write(document_id):
            self._documents.pop(document_id, None)
            self._matrices.pop(document_id, None)
            self._sidecars.pop(document_id, None)
            try:
                await asyncio.to_thread(self._remove_files, document_id)
            except OSError as e:
                logger.error(f"[STORE] Failed to delete files for {document_id}: {e}")
                raise StorageError(f"Failed to delete document {document_id}: {e}")

        logger.info(f"[STORE] Deleted document {document_id}")

    async def list_documents(self) -> List[str]:
        return list(self._documents.keys())

    async def get_document_chunks(self, document_id: str) -> List[DocumentChunk]:
        if document_id not in self._documents:
            return []
        async with self._locks.read(document_id):
            return list(self._documents.get(document_id, []))

    async def get_document_metadata(self, document_id: str) -> Optional[DocumentSidecar]:
        return self._sidecars.get(document_id)

    async def snapshot(
        self, document_ids: Optional[Iterable[str]] = None
    ) -> List[Tuple[str, List[DocumentChunk]]]:
        pairs = []
        for doc_id in self._resolve_scope(document_ids):
            chunks = await self.get_document_chunks(doc_id)
            if chunks:
                pairs.append((doc_id, chunks))
        return pairs

    async def count(self) -> int:
        return sum(len(chunks) for chunks in self._documents.values())

    def _resolve_scope(self, document_ids: Optional[Iterable[str]]) -> List[str]:
        if document_ids is None:
            return list(self._documents.keys())
        return [doc_id for doc_id in document_ids if doc_id in self._documents]

# api/endpoints.py
import logging

from fastapi import APIRouter, HTTPException, Depends

from adaptive_rag.config import settings
from adaptive_rag.core.exceptions import (
    AdaptiveRAGError, DimensionMismatchError, DocumentNotFoundError, StorageError, ValidationError
)
from adaptive_rag.core.interfaces import IRAGService
from adaptive_rag.services.factory import get_rag_service
from adaptive_rag.api.schemas import (
    ChatRequest, ChatResponse, ContextOut, DeleteResponse, DocumentInfo,
    DocumentsListResponse, RetrieveRequest, RetrieveResponse, StatusResponse,
    StoreDocumentRequest, StoreDocumentResponse, StrategyOut
)

logger = logging.getLogger(settings.LOGGER_NAME)

router = APIRouter()


def to_http_error(e: AdaptiveRAGError) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=422, detail=e.message)
    if isinstance(e, DocumentNotFoundError):
        return HTTPException(status_code=404, detail=e.message)
    if isinstance(e, DimensionMismatchError):
        logger.error(f"[API] {e}")
        return HTTPException(status_code=500, detail=f"Embedding dimension mismatch: {e.message}")
    if isinstance(e, StorageError):
        logger.error(f"[API] {e}")
        return HTTPException(status_code=500, detail="Failed to persist document")
    logger.error(f"[API] Unexpected domain error: {e}")
    return HTTPException(status_code=500, detail=e.message)


def validate_query(query: str) -> None:
    if not query or not query.strip():
        raise HTTPException(status_code=422, detail="Query cannot be empty")
    if len(query) > settings.MAX_QUERY_LENGTH:
        raise HTTPException(
            status_code=422,
            detail=f"Query must be at most {settings.MAX_QUERY_LENGTH} characters"
        )


# API Endpoints
@router.post("/documents", response_model=StoreDocumentResponse)
async def store_document(
    request: StoreDocumentRequest,
    rag_service: IRAGService = Depends(get_rag_service)
) -> StoreDocumentResponse:
    chunks = [chunk.to_domain(request.document_id) for chunk in request.chunks]
    try:
        sidecar = await rag_service.store_document(
            request.document_id, chunks, request.filename, request.file_size_bytes
        )
    except AdaptiveRAGError as e:
        raise to_http_error(e)

    return StoreDocumentResponse(
        status="success",
        document=DocumentInfo.from_domain(request.document_id, sidecar)
    )


@router.get("/documents", response_model=DocumentsListResponse)
async def list_documents(
    rag_service: IRAGService = Depends(get_rag_service)
) -> DocumentsListResponse:
    documents = await rag_service.list_documents()
    return DocumentsListResponse(
        documents=[DocumentInfo.from_domain(doc_id, sidecar) for doc_id, sidecar in documents]
    )


@router.get("/documents/{document_id}", response_model=DocumentInfo)
async def get_document(
    document_id: str,
    rag_service: IRAGService = Depends(get_rag_service)
) -> DocumentInfo:
    try:
        chunk_count, sidecar = await rag_service.get_document(document_id)
    except AdaptiveRAGError as e:
        raise to_http_error(e)

    info = DocumentInfo.from_domain(document_id, sidecar)
    info.chunk_count = chunk_count
    return info


@router.delete("/documents/{document_id}", response_model=DeleteResponse)
async def delete_document(
    document_id: str,
    rag_service: IRAGService = Depends(get_rag_service)
) -> DeleteResponse:
    try:
        await rag_service.delete_document(document_id)
    except AdaptiveRAGError as e:
        raise to_http_error(e)

    return DeleteResponse(status="success", message="Document deleted successfully")


@router.post("/retrieve", response_model=RetrieveResponse)
async def retrieve(
    request: RetrieveRequest,
    rag_service: IRAGService = Depends(get_rag_service)
) -> RetrieveResponse:
    validate_query(request.query)
    try:
        result = await rag_service.retrieve(request.query, request.document_ids, request.top_k)
    except AdaptiveRAGError as e:
        raise to_http_error(e)

    return RetrieveResponse(
        chunks=[ContextOut.from_domain(ctx) for ctx in result.chunks],
        strategy=StrategyOut.from_domain(result.strategy),
        total_found=result.total_found,
        search_time_ms=result.search_time_ms,
        timed_out=result.timed_out,
    )


@router.post("/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    rag_service: IRAGService = Depends(get_rag_service)
) -> ChatResponse:
    validate_query(request.query)
    try:
        result, answer = await rag_service.answer(
            request.query, request.document_ids, request.top_k, request.history()
        )
    except AdaptiveRAGError as e:
        raise to_http_error(e)

    return ChatResponse(
        answer=answer.answer,
        confidence=answer.confidence,
        sources=answer.sources,
        related_questions=answer.related_questions,
        reasoning=answer.reasoning,
        strategy=StrategyOut.from_domain(result.strategy),
        chunks=[ContextOut.from_domain(ctx) for ctx in result.chunks],
    )


@router.get("/status", response_model=StatusResponse)
async def get_status(
    rag_service: IRAGService = Depends(get_rag_service)
) -> StatusResponse:
    status = await rag_service.get_status()
    return StatusResponse(**status)

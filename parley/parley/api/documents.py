import logging
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status

from parley.auth import AuthContext, get_auth_context
from parley.config import settings
from parley.errors import ConflictError, ValidationError
from parley.models import Document
from parley.schemas import (
    ChunkResponse,
    ChunkSearchResult,
    DeleteDocumentResponse,
    DocumentResponse,
    ReembedResponse,
    RegisterDocumentRequest,
    SearchChunksRequest,
    SearchChunksResponse,
    StoredBlobResponse,
    UploadUrlResponse,
)
from parley.services import ingestion
from parley.services.embeddings import EmbeddingService, get_embedding_service
from parley.services.retrieval import search
from parley.services.storage import LocalBlobStorage, get_storage

logger = logging.getLogger(__name__)
router = APIRouter()


def document_response(document: Document) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        channel_id=document.channel_id,
        name=document.name,
        mime_type=document.mime_type,
        size_bytes=document.size_bytes,
        storage_id=document.storage_id,
        status=document.status,
        error=document.error,
        chunk_count=document.chunk_count,
        uploaded_at=document.uploaded_at,
    )


# ============================================================================
# Two-phase upload
# ============================================================================


@router.post("/storage/upload-url", response_model=UploadUrlResponse)
async def create_upload_url(
    ctx: AuthContext = Depends(get_auth_context),
    storage: LocalBlobStorage = Depends(get_storage),
) -> UploadUrlResponse:
    """Phase one: hand out a signed URL the caller can PUT document bytes to."""
    upload_url = storage.generate_upload_url()
    logger.info(f"Issued upload URL to {ctx.identity}, expires {upload_url.expires_at}")
    return UploadUrlResponse(upload_url=upload_url.url, expires_at=upload_url.expires_at)


@router.put("/storage/upload/{token}", response_model=StoredBlobResponse)
async def put_blob(
    token: str,
    request: Request,
    storage: LocalBlobStorage = Depends(get_storage),
) -> StoredBlobResponse:
    """
    Receive bytes for a signed upload URL.
    The token is the authorization, so no identity header is required.
    Each URL accepts one upload; a second PUT is answered with 409.
    """
    storage_id = storage.verify_token(token)
    if not storage_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Upload URL is invalid or has expired",
        )
    if storage.exists(storage_id):
        raise ConflictError(f"Blob {storage_id} has already been uploaded")

    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"Upload of {declared} bytes exceeds the limit of {settings.max_upload_bytes}",
        )

    data = bytearray()
    async for chunk in request.stream():
        data.extend(chunk)
        if len(data) > settings.max_upload_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"Upload exceeds the limit of {settings.max_upload_bytes} bytes",
            )
    ingestion.validate_size(len(data))

    storage.put(token, bytes(data))
    return StoredBlobResponse(storage_id=storage_id, size_bytes=len(data))


@router.post("/documents", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
async def register_document(
    data: RegisterDocumentRequest,
    ctx: AuthContext = Depends(get_auth_context),
    storage: LocalBlobStorage = Depends(get_storage),
) -> DocumentResponse:
    """
    Phase two: register metadata for uploaded bytes and schedule embedding.
    Safe to retry with the same storage_id.
    """
    document = await ingestion.register_upload(
        ctx.session,
        storage,
        data.storage_id,
        data.name,
        data.mime_type,
        data.channel_id,
    )
    return document_response(document)


@router.post(
    "/documents/upload",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_document(
    channel_id: UUID = Form(...),
    file: UploadFile = File(...),
    ctx: AuthContext = Depends(get_auth_context),
    storage: LocalBlobStorage = Depends(get_storage),
) -> DocumentResponse:
    """Upload a document in one request (both phases run server-side)."""
    if file.size is not None and file.size > settings.max_upload_bytes:
        raise ValidationError(
            f"Uploaded file is {file.size} bytes, the limit is {settings.max_upload_bytes}"
        )
    content = await file.read()
    if len(content) > settings.max_upload_bytes:
        raise ValidationError(
            f"Uploaded file is {len(content)} bytes, the limit is {settings.max_upload_bytes}"
        )

    document = await ingestion.upload(
        ctx.session,
        storage,
        file.filename or "unnamed",
        file.content_type or "application/octet-stream",
        content,
        channel_id,
    )
    return document_response(document)


# ============================================================================
# Documents
# ============================================================================


@router.get("/channels/{channel_id}/documents", response_model=list[DocumentResponse])
async def list_channel_documents(
    channel_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
) -> list[DocumentResponse]:
    documents = await ingestion.list_documents(ctx.session, channel_id)
    return [document_response(d) for d in documents]


@router.get("/documents/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
) -> DocumentResponse:
    document = await ingestion.get_document(ctx.session, document_id)
    return document_response(document)


@router.delete("/documents/{document_id}", response_model=DeleteDocumentResponse)
async def delete_document(
    document_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
    storage: LocalBlobStorage = Depends(get_storage),
) -> DeleteDocumentResponse:
    """Delete a document, its chunk embeddings and its stored bytes."""
    removed = await ingestion.delete_document(ctx.session, storage, document_id)
    return DeleteDocumentResponse(id=document_id, chunks_deleted=removed)


@router.get("/documents/{document_id}/chunks", response_model=list[ChunkResponse])
async def list_document_chunks(
    document_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
) -> list[ChunkResponse]:
    chunks = await ingestion.list_chunks(ctx.session, document_id)
    return [
        ChunkResponse(
            id=c.id,
            chunk_index=c.chunk_index,
            content=c.content,
            metadata=c.chunk_metadata,
            created_at=c.created_at,
        )
        for c in chunks
    ]


@router.post(
    "/documents/{document_id}/reembed",
    response_model=ReembedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def reembed_document(
    document_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
) -> ReembedResponse:
    """Schedule a fresh embedding run; the old chunk set is replaced when it succeeds."""
    job = await ingestion.reembed_document(ctx.session, document_id)
    document = await ingestion.get_document(ctx.session, document_id)
    return ReembedResponse(document_id=document_id, job_id=job.id, status=document.status)


# ============================================================================
# Search
# ============================================================================


@router.post("/search/chunks", response_model=SearchChunksResponse)
async def search_chunks(
    request: SearchChunksRequest,
    ctx: AuthContext = Depends(get_auth_context),
    embedding_service: EmbeddingService | None = Depends(get_embedding_service),
) -> SearchChunksResponse:
    """
    Rank chunk embeddings by cosine similarity.
    Pass either a text query (embedded server-side) or a raw embedding.
    """
    if request.embedding is not None:
        query_embedding = request.embedding
    elif request.query and request.query.strip():
        if embedding_service is None:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Embeddings are not configured",
            )
        query_embedding = await embedding_service.embed(request.query)
    else:
        raise ValidationError("Either query or embedding is required")

    scope = request.scope
    results = await search(
        ctx.session,
        query_embedding,
        document_id=scope.document_id if scope else None,
        channel_id=scope.channel_id if scope else None,
        limit=request.k,
    )

    return SearchChunksResponse(
        results=[
            ChunkSearchResult(
                chunk_id=r.chunk_id,
                document_id=r.document_id,
                document_name=r.document_name,
                score=r.score,
                snippet=r.content[:200] + "..." if len(r.content) > 200 else r.content,
                metadata=r.metadata,
            )
            for r in results
        ]
    )

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from parley.auth import AuthContext, get_auth_context
from parley.models import Thread
from parley.schemas import (
    DeleteThreadResponse,
    GenerationResponse,
    MessageCreate,
    MessageResponse,
    ThreadCreate,
    ThreadResponse,
)
from parley.services import conversation
from parley.services.conversation import MessageView
from parley.services.observability import list_generations

logger = logging.getLogger(__name__)
router = APIRouter()


def thread_response(thread: Thread) -> ThreadResponse:
    return ThreadResponse(
        id=thread.id,
        channel_id=thread.channel_id,
        title=thread.title,
        created_at=thread.created_at,
        updated_at=thread.updated_at,
    )


def message_response(view: MessageView) -> MessageResponse:
    return MessageResponse(
        id=view.id,
        thread_id=view.thread_id,
        channel_id=view.channel_id,
        author_id=view.author_id,
        author_name=view.author_name,
        content=view.content,
        created_at=view.created_at,
        sequence=view.sequence,
    )


# ============================================================================
# Threads
# ============================================================================


@router.post("/threads", response_model=ThreadResponse, status_code=status.HTTP_201_CREATED)
async def create_thread(
    data: ThreadCreate,
    ctx: AuthContext = Depends(get_auth_context),
) -> ThreadResponse:
    """Create a thread; without a channel_id it goes to the default channel."""
    channel_id = data.channel_id
    if channel_id is None:
        channel = await conversation.ensure_default_channel(ctx.session)
        channel_id = channel.id

    thread = await conversation.create_thread(ctx.session, channel_id, data.title)
    return thread_response(thread)


@router.get("/channels/{channel_id}/threads", response_model=list[ThreadResponse])
async def list_threads(
    channel_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
) -> list[ThreadResponse]:
    threads = await conversation.list_threads(ctx.session, channel_id)
    return [thread_response(t) for t in threads]


@router.get("/threads/{thread_id}", response_model=ThreadResponse)
async def get_thread(
    thread_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
) -> ThreadResponse:
    thread = await conversation.get_thread(ctx.session, thread_id)
    return thread_response(thread)


@router.delete("/threads/{thread_id}", response_model=DeleteThreadResponse)
async def delete_thread(
    thread_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
) -> DeleteThreadResponse:
    removed = await conversation.delete_thread(ctx.session, thread_id)
    return DeleteThreadResponse(id=thread_id, messages_deleted=removed)


# ============================================================================
# Messages
# ============================================================================


@router.get("/threads/{thread_id}/messages", response_model=list[MessageResponse])
async def list_thread_messages(
    thread_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
) -> list[MessageResponse]:
    views = await conversation.list_messages(ctx.session, thread_id)
    return [message_response(v) for v in views]


@router.post(
    "/threads/{thread_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def send_message(
    thread_id: UUID,
    data: MessageCreate,
    ctx: AuthContext = Depends(get_auth_context),
) -> MessageResponse:
    """
    Post a message as the caller.
    Returns once the message is stored; the assistant reply arrives later.
    """
    message = await conversation.send_message(ctx.session, thread_id, ctx.user.id, data.content)
    return MessageResponse(
        id=message.id,
        thread_id=message.thread_id,
        channel_id=message.channel_id,
        author_id=message.author_id,
        author_name=ctx.user.name,
        content=message.content,
        created_at=message.created_at,
        sequence=message.sequence,
    )


@router.get("/channels/{channel_id}/messages", response_model=list[MessageResponse])
async def list_channel_messages(
    channel_id: UUID,
    limit: int = Query(default=100, ge=1, le=500),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[MessageResponse]:
    views = await conversation.list_channel_messages(ctx.session, channel_id, limit=limit)
    return [message_response(v) for v in views]


# ============================================================================
# Observability
# ============================================================================


@router.get("/threads/{thread_id}/generations", response_model=list[GenerationResponse])
async def list_thread_generations(
    thread_id: UUID,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[GenerationResponse]:
    """Generation records for a thread, newest first, including failed runs."""
    await conversation.get_thread(ctx.session, thread_id)
    generations = await list_generations(ctx.session, thread_id, limit=limit, offset=offset)
    return [
        GenerationResponse(
            id=g.id,
            job_id=g.job_id,
            status=g.status,
            stage=g.stage,
            model=g.model,
            context_messages=g.context_messages,
            retrieved_chunk_ids=g.retrieved_chunk_ids or [],
            prompt_tokens=g.prompt_tokens,
            completion_tokens=g.completion_tokens,
            latency_ms=g.latency_ms,
            error=g.error,
            created_at=g.created_at,
        )
        for g in generations
    ]

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from parley.auth import AuthContext, get_auth_context
from parley.db import get_session
from parley.models import Channel, User
from parley.schemas import (
    BackfillUsersRequest,
    BackfillUsersResponse,
    ChannelCreate,
    ChannelResponse,
    ImportMessagesRequest,
    ImportMessagesResponse,
    UserCreate,
    UserResponse,
)
from parley.services import backfill, conversation

router = APIRouter()


def channel_response(channel: Channel) -> ChannelResponse:
    return ChannelResponse(id=channel.id, name=channel.name, created_at=channel.created_at)


def user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        created_at=user.created_at,
        last_active_at=user.last_active_at,
    )


@router.post("/channels/default", response_model=ChannelResponse)
async def ensure_default_channel(
    session: AsyncSession = Depends(get_session),
) -> ChannelResponse:
    """
    Return the default channel, creating it if needed.
    Note: This endpoint is unauthenticated for bootstrapping. Secure in production.
    """
    channel = await conversation.ensure_default_channel(session)
    return channel_response(channel)


@router.post("/channels", response_model=ChannelResponse, status_code=status.HTTP_201_CREATED)
async def create_channel(
    data: ChannelCreate,
    ctx: AuthContext = Depends(get_auth_context),
) -> ChannelResponse:
    channel = await conversation.create_channel(ctx.session, data.name)
    return channel_response(channel)


@router.get("/channels", response_model=list[ChannelResponse])
async def list_channels(
    ctx: AuthContext = Depends(get_auth_context),
) -> list[ChannelResponse]:
    channels = await conversation.list_channels(ctx.session)
    return [channel_response(c) for c in channels]


@router.post("/users", response_model=UserResponse)
async def get_or_create_user(
    data: UserCreate,
    ctx: AuthContext = Depends(get_auth_context),
) -> UserResponse:
    """Look up a user by name, creating them if absent."""
    user = await conversation.get_or_create_user(ctx.session, data.name)
    return user_response(user)


@router.post("/import/messages", response_model=ImportMessagesResponse)
async def import_messages(
    data: ImportMessagesRequest,
    ctx: AuthContext = Depends(get_auth_context),
) -> ImportMessagesResponse:
    """One-time import of legacy messages (thread and timestamp may be missing)."""
    result = await backfill.import_legacy_messages(ctx.session, data.messages)
    return ImportMessagesResponse(imported=result.imported, threads_created=result.threads_created)


@router.post("/backfill/users", response_model=BackfillUsersResponse)
async def backfill_users(
    data: BackfillUsersRequest,
    ctx: AuthContext = Depends(get_auth_context),
) -> BackfillUsersResponse:
    result = await backfill.backfill_users(ctx.session, data.users)
    return BackfillUsersResponse(created=result.created, updated=result.updated)

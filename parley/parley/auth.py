"""Caller identity.

Credentials are verified by the auth proxy in front of the API, which passes
the caller's verified email in a request header. This module only turns
that header into a User row.
"""

import logging
from dataclasses import dataclass

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from parley.config import settings
from parley.db import get_session
from parley.errors import AuthenticationError
from parley.models import User
from parley.services.conversation import get_or_create_user, touch_user

logger = logging.getLogger(__name__)


@dataclass
class AuthContext:
    """Authenticated caller context."""

    session: AsyncSession
    user: User
    identity: str


async def get_auth_context(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> AuthContext:
    """Resolve the proxy-supplied identity to a user, creating the user on first sight."""
    identity = (request.headers.get(settings.identity_header) or "").strip()
    if not identity:
        raise AuthenticationError(f"Missing {settings.identity_header} header")

    user = await get_or_create_user(session, identity)
    await touch_user(session, user, settings.user_activity_interval_seconds)
    return AuthContext(session=session, user=user, identity=identity)

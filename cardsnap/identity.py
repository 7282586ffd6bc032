"""
CardSnap — Request Identity
============================

What:  FastAPI dependency resolving the authenticated user of a request.
How:   An upstream authentication proxy verifies the user and forwards the
       identity in trusted headers (names configurable):

           X-User-Id:     identity provider UUID   (required)
           X-User-Email:  verified email address   (required)
           X-User-Name:   display name             (optional)

       The backend must only be reachable through that proxy; it performs no
       authentication of its own.
"""

import logging
from uuid import UUID

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from cardsnap.config import settings
from cardsnap.database import get_db_session
from cardsnap.exceptions import AuthenticationError
from cardsnap.models.user import User
from cardsnap.services.user_service import user_service

logger = logging.getLogger(__name__)


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db_session),
) -> User:
    """
    Raises:
        AuthenticationError: Identity headers missing or malformed (→ 401).
    """
    raw_id = request.headers.get(settings.identity_user_id_header, "").strip()
    email = request.headers.get(settings.identity_email_header, "").strip()
    name = request.headers.get(settings.identity_name_header, "").strip() or None

    if not raw_id or not email:
        raise AuthenticationError()

    try:
        user_id = UUID(raw_id)
    except ValueError as e:
        logger.warning("Malformed identity header: %r", raw_id)
        raise AuthenticationError(
            message="Invalid user identity",
            context={"header": settings.identity_user_id_header},
        ) from e

    user = await user_service.ensure_user(db, user_id, email, name)
    request.state.user_id = str(user.id)
    return user

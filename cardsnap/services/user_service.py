"""
CardSnap — User Service
========================

Provisions user rows for identities forwarded by the authentication proxy.
There is no registration flow: a user exists from the first authenticated
request on.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cardsnap.exceptions import AuthenticationError, DatabaseError
from cardsnap.models.user import User

logger = logging.getLogger(__name__)


class UserService:
    async def ensure_user(
        self,
        db: AsyncSession,
        user_id: UUID,
        email: str,
        name: Optional[str] = None,
    ) -> User:
        """
        Return the user with this id, creating it on first sight.

        A changed email or display name from the identity provider is
        written back.

        Raises:
            AuthenticationError: The email already belongs to another user id.
            DatabaseError: Query execution failed.
        """
        email = email.strip().lower()
        try:
            user = await db.get(User, user_id)
            if user is None:
                await self._check_email_free(db, email, user_id)
                user = User(id=user_id, email=email, name=name)
                db.add(user)
                await db.flush()
                logger.info("Provisioned user %s", user_id)
                return user

            if user.email != email:
                await self._check_email_free(db, email, user_id)
                user.email = email
            if name and user.name != name:
                user.name = name
            await db.flush()
            return user
        except AuthenticationError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error provisioning user %s: %s", user_id, e)
            raise DatabaseError(context={"user_id": str(user_id)}) from e

    async def _check_email_free(self, db: AsyncSession, email: str, user_id: UUID) -> None:
        result = await db.execute(select(User.id).where(User.email == email))
        owner = result.scalar_one_or_none()
        if owner is not None and owner != user_id:
            logger.warning("Identity %s presented email already owned by %s", user_id, owner)
            raise AuthenticationError(
                message="This email address is linked to a different account",
                context={"user_id": str(user_id)},
            )

    async def get_by_email(self, db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.email == email.strip().lower()))
        return result.scalar_one_or_none()


user_service = UserService()

"""
CardSnap — Card Service
========================

What:  Card CRUD, search and sharing for one authenticated user at a time.
How:   Stateless; every method receives the request's session and user id.
       Writes are flushed here and committed by get_db_session.

Visibility Rules:
    owner      → read, update, replace image, delete, share
    recipient  → read only (403 on writes)
    anyone else→ 404, so the card's existence is not leaked

Error Handling Strategy:
    SQLAlchemy errors are wrapped in DatabaseError (internal details are
    only logged). Application errors propagate unchanged.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import Select, desc, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cardsnap.exceptions import (
    DatabaseError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from cardsnap.models.card import Card, card_shares
from cardsnap.schemas.card import CardCreate, CardResponse, CardUpdate
from cardsnap.services.file_service import FileService
from cardsnap.services.user_service import user_service

logger = logging.getLogger(__name__)

# Columns matched by the free-text search
SEARCH_COLUMNS = (
    Card.name,
    Card.title,
    Card.company,
    Card.email,
    Card.phone,
    Card.notes,
    Card.category,
)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def image_url_for(image_path: Optional[str]) -> Optional[str]:
    return f"/api/files/{image_path}" if image_path else None


class CardService:
    """Business logic for cards; see module docstring for visibility rules."""

    # ── Queries ───────────────────────────────────────────────────────────

    def _visible_to(self, query: Select, user_id: UUID) -> Select:
        shared_ids = select(card_shares.c.card_id).where(card_shares.c.user_id == user_id)
        return query.where(or_(Card.owner_id == user_id, Card.id.in_(shared_ids)))

    async def _load(self, db: AsyncSession, user_id: UUID, card_id: UUID) -> Card:
        try:
            result = await db.execute(self._visible_to(select(Card), user_id).where(Card.id == card_id))
            card = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error fetching card %s: %s", card_id, e)
            raise DatabaseError(
                message="Could not retrieve the card. Please try again.",
                context={"card_id": str(card_id)},
            ) from e
        if card is None:
            raise NotFoundError(resource="card", resource_id=str(card_id))
        return card

    async def _load_owned(self, db: AsyncSession, user_id: UUID, card_id: UUID) -> Card:
        card = await self._load(db, user_id, card_id)
        if not card.is_owned_by(user_id):
            raise PermissionDeniedError(context={"card_id": str(card_id)})
        return card

    def _check_image_path(self, file_service: FileService, image_path: str) -> str:
        if not file_service.exists(image_path):
            raise ValidationError(
                message="The card image was not found. Capture the card again.",
                field="image_path",
                context={"path": image_path},
            )
        return image_path

    async def _flush(self, db: AsyncSession, action: str, card_id: Optional[UUID] = None) -> None:
        try:
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Database error during %s of card %s: %s", action, card_id, e)
            raise DatabaseError(
                message=f"Could not {action} the card. Please try again.",
                context={"card_id": str(card_id) if card_id else None},
            ) from e

    # ── Operations ────────────────────────────────────────────────────────

    async def create_card(
        self,
        db: AsyncSession,
        owner_id: UUID,
        data: CardCreate,
        file_service: FileService,
    ) -> Card:
        """
        Save a confirmed draft as a new card.

        Raises:
            ValidationError: image_path does not point at a stored image.
        """
        if data.image_path:
            self._check_image_path(file_service, data.image_path)

        now = datetime.now(timezone.utc)
        card = Card(
            owner_id=owner_id,
            created_at=now,
            updated_at=now,
            shared_with=[],
            **data.model_dump(),
        )
        db.add(card)
        await self._flush(db, "create")
        logger.info("Card %s created by %s", card.id, owner_id)
        return card

    async def get_card(self, db: AsyncSession, user_id: UUID, card_id: UUID) -> Card:
        return await self._load(db, user_id, card_id)

    async def list_cards(
        self,
        db: AsyncSession,
        user_id: UUID,
        q: Optional[str] = None,
        category: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Card], int]:
        """
        Cards owned by or shared with the user, newest first.

        Args:
            q: Case-insensitive substring matched against name, title,
               company, email, phone, notes and category.
            category: Exact category filter (case-insensitive).

        Returns:
            (page of cards, total number of matching cards)
        """
        query = self._visible_to(select(Card), user_id)

        term = (q or "").strip()
        if term:
            pattern = f"%{_escape_like(term)}%"
            query = query.where(or_(*(col.ilike(pattern, escape="\\") for col in SEARCH_COLUMNS)))
        if category and category.strip():
            query = query.where(func.lower(Card.category) == category.strip().lower())

        count_query = select(func.count()).select_from(query.subquery())
        page_query = (
            query.order_by(desc(Card.created_at), desc(Card.id))
            .limit(limit)
            .offset(offset)
        )

        try:
            total = (await db.execute(count_query)).scalar() or 0
            cards = list((await db.execute(page_query)).scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error listing cards: %s", e, exc_info=True)
            raise DatabaseError(
                message="Could not retrieve cards. Please try again.",
                context={"error_type": type(e).__name__},
            ) from e
        return cards, total

    async def update_card(
        self,
        db: AsyncSession,
        user_id: UUID,
        card_id: UUID,
        data: CardUpdate,
    ) -> Card:
        card = await self._load_owned(db, user_id, card_id)
        changes = data.model_dump(exclude_unset=True)
        if changes.get("notes") is None:
            changes.pop("notes", None)
        if "name" in changes and changes["name"] is None:
            raise ValidationError(message="Name cannot be empty", field="name")

        for field, value in changes.items():
            setattr(card, field, value)
        card.updated_at = datetime.now(timezone.utc)
        await self._flush(db, "update", card_id)
        logger.info("Card %s updated (%s)", card_id, ", ".join(sorted(changes)) or "no changes")
        return card

    async def update_image(
        self,
        db: AsyncSession,
        user_id: UUID,
        card_id: UUID,
        image_path: str,
        file_service: FileService,
    ) -> Tuple[Card, Optional[str]]:
        """
        Point the card at a newly captured image.

        Returns:
            (card, previous image path to clean up or None)
        """
        card = await self._load_owned(db, user_id, card_id)
        self._check_image_path(file_service, image_path)

        previous = card.image_path if card.image_path != image_path else None
        card.image_path = image_path
        card.updated_at = datetime.now(timezone.utc)
        await self._flush(db, "update", card_id)
        return card, previous

    async def delete_card(self, db: AsyncSession, user_id: UUID, card_id: UUID) -> Optional[str]:
        """
        Delete a card and its share rows.

        Returns:
            The image path to clean up, if the card had one.
        """
        card = await self._load_owned(db, user_id, card_id)
        image_path = card.image_path
        await db.delete(card)
        await self._flush(db, "delete", card_id)
        logger.info("Card %s deleted by %s", card_id, user_id)
        return image_path

    async def share_card(
        self,
        db: AsyncSession,
        user_id: UUID,
        card_id: UUID,
        email: str,
    ) -> Card:
        """
        Grant another user read access. Sharing twice is a no-op.

        Raises:
            NotFoundError: No user with that email.
            ValidationError: Sharing with yourself.
        """
        card = await self._load_owned(db, user_id, card_id)
        recipient = await user_service.get_by_email(db, email)
        if recipient is None:
            raise NotFoundError(resource="user", resource_id=email)
        if recipient.id == user_id:
            raise ValidationError(message="You cannot share a card with yourself", field="email")

        if all(u.id != recipient.id for u in card.shared_with):
            card.shared_with.append(recipient)
            await self._flush(db, "share", card_id)
            logger.info("Card %s shared with %s", card_id, recipient.id)
        return card

    # ── Presentation ──────────────────────────────────────────────────────

    def to_response(self, card: Card, user_id: UUID) -> CardResponse:
        is_owner = card.is_owned_by(user_id)
        return CardResponse(
            id=card.id,
            name=card.name,
            title=card.title,
            company=card.company,
            email=card.email,
            phone=card.phone,
            website=card.website,
            address=card.address,
            notes=card.notes or "",
            category=card.category,
            image_path=card.image_path,
            image_url=image_url_for(card.image_path),
            is_owner=is_owner,
            shared_with=sorted(u.email for u in card.shared_with) if is_owner else [],
            created_at=card.created_at,
            updated_at=card.updated_at,
        )


card_service = CardService()

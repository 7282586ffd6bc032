"""
CardSnap — Card SQLAlchemy Model
=================================

What:  ORM model for the `cards` table and the `card_shares` association.
How:   A card belongs to exactly one owner; card_shares grants read access to
       other users. Deleting a card deletes its share rows (ON DELETE CASCADE).

Query Patterns:
    - List visible cards: owner_id = :user OR id IN (shared with :user),
      ORDER BY created_at DESC → idx_cards_owner_created
    - Get single card: primary key lookup, then the same visibility check
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Table, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cardsnap.database import Base
from cardsnap.models.user import User


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


card_shares = Table(
    "card_shares",
    Base.metadata,
    Column(
        "card_id",
        Uuid,
        ForeignKey("cards.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "user_id",
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("created_at", DateTime(timezone=True), nullable=False, default=_utcnow),
)


class Card(Base):
    """
    A confirmed business card.

    Cards are created from a user-confirmed draft, never directly from OCR
    output. image_path is relative to STORAGE_ROOT (YYYY/MM/DD/<uuid>.jpg).
    """

    __tablename__ = "cards"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    company: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    website: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    image_path: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Relative path from storage root to the normalized card image",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    # Set explicitly by CardService on every change
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    # selectin: relationships cannot lazy-load under an AsyncSession
    shared_with: Mapped[List[User]] = relationship(
        User,
        secondary=card_shares,
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_cards_owner_created", "owner_id", "created_at"),
    )

    def is_owned_by(self, user_id: uuid.UUID) -> bool:
        return self.owner_id == user_id

    def __repr__(self) -> str:
        return f"<Card(id={self.id}, name='{self.name}', owner_id={self.owner_id})>"

"""ORM models; importing this package registers every table on Base.metadata."""

from cardsnap.models.card import Card, card_shares
from cardsnap.models.user import User

__all__ = ["Card", "User", "card_shares"]

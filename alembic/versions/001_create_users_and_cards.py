"""Create users, cards and card_shares tables

Revision ID: 001
Revises: None
Create Date: 2024-01-15 00:00:00.000000+00:00

users:        one row per identity forwarded by the auth proxy
cards:        confirmed business cards, owned by one user
card_shares:  read access granted to other users; rows go with their card

Rollback: downgrade() drops all three tables (destructive).
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False, comment="Identity provider user id"),
        sa.Column(
            "email",
            sa.String(320),
            nullable=False,
            comment="Lowercased email; the lookup key for sharing",
        ),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "cards",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("company", sa.String(255), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("phone", sa.String(64), nullable=True),
        sa.Column("website", sa.String(512), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), server_default=sa.text("''"), nullable=False),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column(
            "image_path",
            sa.String(255),
            nullable=True,
            comment="Relative path from storage root to the normalized card image",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    # Visible-cards listing: WHERE owner_id = :user ORDER BY created_at DESC
    op.create_index(
        "idx_cards_owner_created",
        "cards",
        ["owner_id", sa.text("created_at DESC")],
    )

    op.create_table(
        "card_shares",
        sa.Column("card_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["card_id"], ["cards.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("card_id", "user_id"),
    )
    op.create_index("idx_card_shares_user", "card_shares", ["user_id"])


def downgrade() -> None:
    op.drop_index("idx_card_shares_user", table_name="card_shares")
    op.drop_table("card_shares")
    op.drop_index("idx_cards_owner_created", table_name="cards")
    op.drop_table("cards")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

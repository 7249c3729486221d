"""Create users, books and loans tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Initial schema for the lending domain.
How:   Portable column types (UUID via sa.Uuid, enums as short strings) so
       the same migration runs on PostgreSQL and SQLite.

Notable constraints:
    - users.email unique
    - books.owner_id → users.id ON DELETE SET NULL (weak ownership)
    - loans.book_id / loans.borrower_id → RESTRICT (loans are removed explicitly)
    - uq_loans_active_book: partial unique index, one active loan per book

Rollback: downgrade() drops all three tables (destructive).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_ACTIVE = sa.text("returned_at IS NULL")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column(
            "role",
            sa.String(16),
            nullable=False,
            server_default=sa.text("'USER'"),
            comment="USER or ADMIN",
        ),
        sa.Column(
            "tier",
            sa.String(16),
            nullable=False,
            server_default=sa.text("'TIER_4'"),
            comment="TIER_1..TIER_4, decides the concurrent loan limit",
        ),
        sa.Column("phone", sa.String(64), nullable=True),
        sa.Column("address", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "books",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(512), nullable=False),
        sa.Column("author", sa.String(512), nullable=False),
        sa.Column("publisher", sa.String(255), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("isbn10", sa.String(10), nullable=True),
        sa.Column("isbn13", sa.String(13), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("thumbnail", sa.String(1024), nullable=True),
        sa.Column(
            "status",
            sa.String(16),
            nullable=False,
            server_default=sa.text("'AVAILABLE'"),
            comment="AVAILABLE, LENT or LOST; LENT iff an active loan exists",
        ),
        sa.Column("owner_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_books_title", "books", ["title"])
    op.create_index("idx_books_isbn13", "books", ["isbn13"])
    op.create_index("idx_books_owner_id", "books", ["owner_id"])

    op.create_table(
        "loans",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("book_id", sa.Uuid(), nullable=False),
        sa.Column("borrower_id", sa.Uuid(), nullable=False),
        sa.Column("lent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "returned_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="NULL while the loan is active",
        ),
        sa.ForeignKeyConstraint(["book_id"], ["books.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["borrower_id"], ["users.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_loans_active_book",
        "loans",
        ["book_id"],
        unique=True,
        postgresql_where=_ACTIVE,
        sqlite_where=_ACTIVE,
    )
    op.create_index("idx_loans_borrower_active", "loans", ["borrower_id", "returned_at"])
    op.create_index("idx_loans_due_active", "loans", ["due_at", "returned_at"])


def downgrade() -> None:
    op.drop_index("idx_loans_due_active", table_name="loans")
    op.drop_index("idx_loans_borrower_active", table_name="loans")
    op.drop_index("uq_loans_active_book", table_name="loans")
    op.drop_table("loans")

    op.drop_index("idx_books_owner_id", table_name="books")
    op.drop_index("idx_books_isbn13", table_name="books")
    op.drop_index("idx_books_title", table_name="books")
    op.drop_table("books")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

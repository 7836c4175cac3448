"""DB-level exclusion constraint against double-booking a book.

Prevents two active reservations (pending, confirmed, collected) of the same
book from having overlapping windows. This is the guard that catches two
concurrent requests which both passed the application-level conflict check;
the losing INSERT/UPDATE fails with exclusion_violation (23P01).

daterange(start, COALESCE(end, start), '[]') is inclusive on both ends,
matching the application check: a reservation without an end date occupies
its start day, and windows sharing a boundary day conflict.

Revision ID: 002_no_book_overlap_constraint
Revises: 001_initial_schema
Create Date: 2025-11-06
"""
from __future__ import annotations

from alembic import op

revision = "002_no_book_overlap_constraint"
down_revision = "001_initial_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
    op.execute(
        """
        ALTER TABLE reservations
        ADD CONSTRAINT no_book_reservation_overlap
        EXCLUDE USING gist (
            book_id WITH =,
            daterange(start_date, COALESCE(end_date, start_date), '[]') WITH &&
        )
        WHERE (status IN ('pending', 'confirmed', 'collected'))
        """
    )


def downgrade() -> None:
    op.execute(
        "ALTER TABLE reservations DROP CONSTRAINT IF EXISTS no_book_reservation_overlap"
    )
    # btree_gist is kept: other indexes may depend on it.

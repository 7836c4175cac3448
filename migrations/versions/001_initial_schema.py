"""Initial schema: books, readers, reservations.

Revision ID: 001_initial_schema
Revises:
Create Date: 2025-11-05
"""

from __future__ import annotations

from alembic import op

revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

_UPGRADE_SQL = """
CREATE EXTENSION IF NOT EXISTS pgcrypto;

CREATE TYPE reservation_status AS ENUM (
    'pending', 'confirmed', 'collected', 'completed', 'cancelled'
);

CREATE TABLE books (
    id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    title text NOT NULL DEFAULT '',
    author text NOT NULL DEFAULT '',
    publication_date date NULL,
    created_at timestamptz NOT NULL DEFAULT now()
);

CREATE TABLE readers (
    id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    full_name text NOT NULL,
    email text NULL,
    created_at timestamptz NOT NULL DEFAULT now()
);

CREATE TABLE reservations (
    id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    book_id uuid NOT NULL REFERENCES books(id),
    reader_id uuid NOT NULL REFERENCES readers(id),
    reserved_at timestamptz NOT NULL DEFAULT now(),
    start_date date NOT NULL,
    end_date date NULL,
    status reservation_status NOT NULL DEFAULT 'pending',
    notes varchar(500) NULL,
    updated_at timestamptz NOT NULL DEFAULT now(),
    CONSTRAINT reservations_end_after_start
        CHECK (end_date IS NULL OR end_date >= start_date)
);

CREATE INDEX reservations_book_start_idx ON reservations (book_id, start_date);
CREATE INDEX reservations_reader_reserved_idx ON reservations (reader_id, reserved_at DESC);
"""


def upgrade() -> None:
    op.execute(_UPGRADE_SQL)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS reservations")
    op.execute("DROP TABLE IF EXISTS readers")
    op.execute("DROP TABLE IF EXISTS books")
    op.execute("DROP TYPE IF EXISTS reservation_status")

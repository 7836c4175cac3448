"""Reservations repository - persistence for reservation records.

Uses raw SQL with psycopg2 (no ORM). The module-level functions take a cursor
so they compose inside one transaction; PostgresReservationStore wraps each
call in its own txn() and maps driver errors to StorageConflictError.

create/update re-check for an overlapping active reservation inside the same
SERIALIZABLE transaction as the write; the no_book_reservation_overlap
exclusion constraint (migration 002) backs that up for any other writer.

IDs are uuid columns. A non-UUID ID can never match a row, so reads answer
"not found" for it without a round trip.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import date
from typing import Iterator

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extensions import cursor as PgCursor

from biblioteca.domain.errors import StorageConflictError
from biblioteca.domain.models import ACTIVE_STATUSES, Book, Reservation, ReservationStatus
from biblioteca.infra.db import txn
from biblioteca.observability.logging import get_logger
from biblioteca.observability.redaction import safe_log_context

logger = get_logger(__name__)

ACTIVE_STATUS_VALUES = sorted(s.value for s in ACTIVE_STATUSES)

_RESERVATION_COLUMNS = """
    id, book_id, reader_id, reserved_at, start_date, end_date, status, notes
"""

# Driver errors that mean "another writer got there first" or "the row graph
# does not allow this write".
_STORAGE_CONFLICT_ERRORS = (
    pg_errors.ExclusionViolation,
    pg_errors.UniqueViolation,
    pg_errors.ForeignKeyViolation,
    pg_errors.SerializationFailure,
    pg_errors.DeadlockDetected,
    pg_errors.InvalidTextRepresentation,
)


def _is_uuid(value: str | None) -> bool:
    if not value:
        return False
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def _row_to_reservation(row: tuple) -> Reservation:
    return Reservation(
        id=str(row[0]),
        book_id=str(row[1]),
        reader_id=str(row[2]),
        reserved_at=row[3],
        start_date=row[4],
        end_date=row[5],
        status=ReservationStatus(row[6]),
        notes=row[7],
    )


def get_reservation(cur: PgCursor, reservation_id: str) -> Reservation | None:
    """Retrieve a reservation by ID (None if not found)."""
    cur.execute(
        f"""
        SELECT {_RESERVATION_COLUMNS}
        FROM reservations
        WHERE id = %s
        """,
        (reservation_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return _row_to_reservation(row)


def list_active_reservations(
    cur: PgCursor,
    *,
    book_id: str,
    exclude_reservation_id: str | None = None,
) -> list[Reservation]:
    """List a book's active reservations ordered by start date.

    Args:
        cur: Database cursor.
        book_id: Book identifier.
        exclude_reservation_id: Reservation ID to leave out (for edits).
    """
    conditions = [
        "book_id = %s",
        "status = ANY(%s::reservation_status[])",
    ]
    params: list = [book_id, ACTIVE_STATUS_VALUES]

    if exclude_reservation_id is not None:
        conditions.append("id != %s")
        params.append(exclude_reservation_id)

    where = " AND ".join(conditions)

    cur.execute(
        f"""
        SELECT {_RESERVATION_COLUMNS}
        FROM reservations
        WHERE {where}
        ORDER BY start_date
        """,
        params,
    )
    return [_row_to_reservation(row) for row in cur.fetchall()]


def find_overlapping_reservation(
    cur: PgCursor,
    *,
    book_id: str,
    start_date: date,
    end_date: date | None,
    exclude_reservation_id: str | None = None,
) -> str | None:
    """Conflict query evaluated in SQL.

    Same predicate as the domain checker:
    existing.start <= new_end AND COALESCE(existing.end, existing.start) >= new_start

    Returns:
        The ID of the earliest conflicting reservation, or None.
    """
    new_end = end_date if end_date is not None else start_date
    conditions = [
        "book_id = %s",
        "status = ANY(%s::reservation_status[])",
        "start_date <= %s",
        "COALESCE(end_date, start_date) >= %s",
    ]
    params: list = [book_id, ACTIVE_STATUS_VALUES, new_end, start_date]

    if exclude_reservation_id is not None:
        conditions.append("id != %s")
        params.append(exclude_reservation_id)

    cur.execute(
        f"""
        SELECT id
        FROM reservations
        WHERE {" AND ".join(conditions)}
        ORDER BY start_date
        LIMIT 1
        """,
        params,
    )
    row = cur.fetchone()
    return str(row[0]) if row is not None else None


def list_reader_reservations(cur: PgCursor, reader_id: str) -> list[Reservation]:
    """All reservations of a reader, newest reserved_at first."""
    cur.execute(
        f"""
        SELECT {_RESERVATION_COLUMNS}
        FROM reservations
        WHERE reader_id = %s
        ORDER BY reserved_at DESC
        """,
        (reader_id,),
    )
    return [_row_to_reservation(row) for row in cur.fetchall()]


def list_all_reservations(cur: PgCursor) -> list[Reservation]:
    """Every reservation, newest reserved_at first."""
    cur.execute(
        f"""
        SELECT {_RESERVATION_COLUMNS}
        FROM reservations
        ORDER BY reserved_at DESC
        """
    )
    return [_row_to_reservation(row) for row in cur.fetchall()]


def insert_reservation(cur: PgCursor, reservation: Reservation) -> Reservation:
    """Insert a reservation; the database assigns the ID.

    Returns:
        The stored reservation with its new ID.
    """
    cur.execute(
        f"""
        INSERT INTO reservations (
            book_id, reader_id, reserved_at, start_date, end_date, status, notes
        )
        VALUES (%s, %s, COALESCE(%s, now()), %s, %s, %s, %s)
        RETURNING {_RESERVATION_COLUMNS}
        """,
        (
            reservation.book_id,
            reservation.reader_id,
            reservation.reserved_at,
            reservation.start_date,
            reservation.end_date,
            reservation.status.value,
            reservation.notes,
        ),
    )
    return _row_to_reservation(cur.fetchone())


def update_reservation(cur: PgCursor, reservation: Reservation) -> bool:
    """Persist mutable fields. book_id and reserved_at are never rewritten.

    Returns:
        True if a row was updated, False if the reservation is gone.
    """
    cur.execute(
        """
        UPDATE reservations
        SET reader_id = %s,
            start_date = %s,
            end_date = %s,
            status = %s,
            notes = %s,
            updated_at = now()
        WHERE id = %s
        """,
        (
            reservation.reader_id,
            reservation.start_date,
            reservation.end_date,
            reservation.status.value,
            reservation.notes,
            reservation.id,
        ),
    )
    return cur.rowcount > 0


def delete_reservation(cur: PgCursor, reservation_id: str) -> bool:
    """Hard-delete a reservation. Returns True if a row was removed."""
    cur.execute("DELETE FROM reservations WHERE id = %s", (reservation_id,))
    return cur.rowcount > 0


def get_book(cur: PgCursor, book_id: str) -> Book | None:
    """Retrieve a book by ID (None if not found)."""
    cur.execute(
        """
        SELECT id, title, author, publication_date
        FROM books
        WHERE id = %s
        """,
        (book_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return Book(id=str(row[0]), title=row[1], author=row[2], publication_date=row[3])


class PostgresReservationStore:
    """ReservationStore backed by Postgres, one short transaction per call."""

    @contextmanager
    def _txn(self, operation: str, *, serializable: bool = False) -> Iterator[PgCursor]:
        try:
            with txn(serializable=serializable) as cur:
                yield cur
        except _STORAGE_CONFLICT_ERRORS as exc:
            logger.warning(
                "reservation write rejected by database",
                extra={
                    "extra_fields": safe_log_context(
                        operation=operation,
                        pgcode=getattr(exc, "pgcode", None),
                        error_type=type(exc).__name__,
                    )
                },
            )
            raise StorageConflictError(f"{operation} rejected by database") from exc
        except psycopg2.OperationalError as exc:
            raise StorageConflictError(f"{operation} failed: database unavailable") from exc

    def get_by_id(self, reservation_id: str) -> Reservation | None:
        if not _is_uuid(reservation_id):
            return None
        with self._txn("get") as cur:
            return get_reservation(cur, reservation_id)

    def list_active_by_book(
        self, book_id: str, exclude_id: str | None = None
    ) -> list[Reservation]:
        if not _is_uuid(book_id):
            return []
        with self._txn("list_active") as cur:
            return list_active_reservations(
                cur,
                book_id=book_id,
                exclude_reservation_id=exclude_id if _is_uuid(exclude_id) else None,
            )

    def list_by_reader(self, reader_id: str) -> list[Reservation]:
        if not _is_uuid(reader_id):
            return []
        with self._txn("list_by_reader") as cur:
            return list_reader_reservations(cur, reader_id)

    def list_all(self) -> list[Reservation]:
        with self._txn("list_all") as cur:
            return list_all_reservations(cur)

    def create(self, reservation: Reservation) -> Reservation:
        with self._txn("create", serializable=True) as cur:
            self._guard_overlap(cur, reservation)
            return insert_reservation(cur, reservation)

    def update(self, reservation: Reservation) -> None:
        with self._txn("update", serializable=True) as cur:
            self._guard_overlap(cur, reservation)
            if not update_reservation(cur, reservation):
                raise StorageConflictError(
                    f"Reservation {reservation.id} no longer exists"
                )

    def delete(self, reservation_id: str) -> None:
        if not _is_uuid(reservation_id):
            return
        with self._txn("delete") as cur:
            delete_reservation(cur, reservation_id)

    def get_book(self, book_id: str) -> Book | None:
        if not _is_uuid(book_id):
            return None
        with self._txn("get_book") as cur:
            return get_book(cur, book_id)

    @staticmethod
    def _guard_overlap(cur: PgCursor, reservation: Reservation) -> None:
        if not reservation.is_active:
            return
        conflict_id = find_overlapping_reservation(
            cur,
            book_id=reservation.book_id,
            start_date=reservation.start_date,
            end_date=reservation.end_date,
            exclude_reservation_id=reservation.id,
        )
        if conflict_id is not None:
            raise StorageConflictError(
                f"Reservation overlaps {conflict_id} on book {reservation.book_id}"
            )

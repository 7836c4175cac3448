"""In-memory reservation store.

Thread-safe stand-in for the Postgres store, used for local runs and tests.
Mirrors the database exclusion constraint: a write that would leave two
overlapping active reservations on one book raises StorageConflictError.
"""

from __future__ import annotations

import threading
import uuid
from datetime import datetime, timezone

from biblioteca.domain.book_conflict import find_conflict
from biblioteca.domain.errors import StorageConflictError
from biblioteca.domain.models import Book, Reservation

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class InMemoryReservationStore:
    """Dict-backed ReservationStore guarded by a single lock."""

    def __init__(self, books: list[Book] | None = None) -> None:
        self._lock = threading.Lock()
        self._books: dict[str, Book] = {b.id: b for b in books or []}
        self._reservations: dict[str, Reservation] = {}

    def add_book(self, book: Book) -> Book:
        with self._lock:
            self._books[book.id] = book
        return book

    def get_book(self, book_id: str) -> Book | None:
        with self._lock:
            return self._books.get(book_id)

    def get_by_id(self, reservation_id: str) -> Reservation | None:
        with self._lock:
            return self._reservations.get(reservation_id)

    def list_active_by_book(
        self, book_id: str, exclude_id: str | None = None
    ) -> list[Reservation]:
        with self._lock:
            found = [
                r
                for r in self._reservations.values()
                if r.book_id == book_id and r.is_active and r.id != exclude_id
            ]
        return sorted(found, key=lambda r: r.start_date)

    def list_by_reader(self, reader_id: str) -> list[Reservation]:
        with self._lock:
            found = [r for r in self._reservations.values() if r.reader_id == reader_id]
        return sorted(found, key=lambda r: r.reserved_at or _EPOCH, reverse=True)

    def list_all(self) -> list[Reservation]:
        with self._lock:
            found = list(self._reservations.values())
        return sorted(found, key=lambda r: r.reserved_at or _EPOCH, reverse=True)

    def create(self, reservation: Reservation) -> Reservation:
        with self._lock:
            if reservation.book_id not in self._books:
                raise StorageConflictError(
                    f"Book {reservation.book_id} does not exist"
                )
            stored = Reservation(
                id=str(uuid.uuid4()),
                book_id=reservation.book_id,
                reader_id=reservation.reader_id,
                start_date=reservation.start_date,
                end_date=reservation.end_date,
                status=reservation.status,
                notes=reservation.notes,
                reserved_at=reservation.reserved_at,
            )
            self._guard_overlap(stored)
            self._reservations[stored.id] = stored
            return stored

    def update(self, reservation: Reservation) -> None:
        with self._lock:
            if reservation.id not in self._reservations:
                raise StorageConflictError(
                    f"Reservation {reservation.id} no longer exists"
                )
            self._guard_overlap(reservation)
            self._reservations[reservation.id] = reservation

    def delete(self, reservation_id: str) -> None:
        with self._lock:
            self._reservations.pop(reservation_id, None)

    def _guard_overlap(self, reservation: Reservation) -> None:
        # Caller holds the lock.
        if not reservation.is_active:
            return
        conflict = find_conflict(
            self._reservations.values(),
            book_id=reservation.book_id,
            start_date=reservation.start_date,
            end_date=reservation.end_date,
            exclude_reservation_id=reservation.id,
        )
        if conflict is not None:
            raise StorageConflictError(
                f"Reservation overlaps {conflict.id} on book {reservation.book_id}"
            )

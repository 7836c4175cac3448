"""Book conflict detection.

Decides whether a candidate reservation window overlaps an active
reservation for the same book.

Windows are closed date intervals [start, effective_end], where
effective_end = end_date or start_date. Overlap formula:

    (new_start <= existing_end) AND (new_end >= existing_start)

so a single-day hold conflicts with any window containing that day, and
back-to-back windows sharing a day do conflict.

Only active statuses (pending, confirmed, collected) generate conflicts.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Iterable

from biblioteca.domain.errors import BookingConflictError
from biblioteca.domain.models import Reservation
from biblioteca.domain.ports import ReservationStore
from biblioteca.infra.time import as_date
from biblioteca.observability.logging import get_logger
from biblioteca.observability.redaction import safe_log_context

logger = get_logger(__name__)


def windows_overlap(
    start_a: date,
    end_a: date | None,
    start_b: date,
    end_b: date | None,
) -> bool:
    """Inclusive overlap test for two reservation windows.

    A missing end date is treated as the start date (single-day window).
    """
    effective_end_a = end_a if end_a is not None else start_a
    effective_end_b = end_b if end_b is not None else start_b
    return start_a <= effective_end_b and effective_end_a >= start_b


def find_conflict(
    reservations: Iterable[Reservation],
    *,
    book_id: str,
    start_date: date | datetime,
    end_date: date | datetime | None = None,
    exclude_reservation_id: str | None = None,
) -> Reservation | None:
    """Return the earliest-starting active reservation overlapping the window.

    Reservations for other books, inactive reservations and
    exclude_reservation_id are skipped, so callers may pass an unfiltered
    sequence.
    """
    start = as_date(start_date)
    end = as_date(end_date)

    candidates = sorted(
        (
            r
            for r in reservations
            if r.book_id == book_id
            and r.is_active
            and (exclude_reservation_id is None or r.id != exclude_reservation_id)
        ),
        key=lambda r: (r.start_date, r.effective_end),
    )
    for existing in candidates:
        if windows_overlap(start, end, existing.start_date, existing.end_date):
            return existing
    return None


def check_book_conflict(
    store: ReservationStore,
    *,
    book_id: str,
    start_date: date | datetime,
    end_date: date | datetime | None = None,
    exclude_reservation_id: str | None = None,
) -> Reservation | None:
    """Check the store for a reservation overlapping the given window.

    Read-only; safe to call concurrently.

    Args:
        store: Reservation store to query.
        book_id: Book being reserved.
        start_date: Desired first day (inclusive).
        end_date: Desired last day (inclusive), or None for a single day.
        exclude_reservation_id: Reservation to ignore (for edits).

    Returns:
        The first conflicting reservation, or None if the window is free.
    """
    existing = store.list_active_by_book(book_id, exclude_id=exclude_reservation_id)
    conflict = find_conflict(
        existing,
        book_id=book_id,
        start_date=start_date,
        end_date=end_date,
        exclude_reservation_id=exclude_reservation_id,
    )

    if conflict is not None:
        logger.warning(
            "book conflict detected",
            extra={
                "extra_fields": safe_log_context(
                    book_id=book_id,
                    requested_start=as_date(start_date),
                    requested_end=as_date(end_date),
                    conflicting_reservation_id=conflict.id,
                    existing_start=conflict.start_date,
                    existing_end=conflict.effective_end,
                ),
            },
        )
    return conflict


def has_conflict(
    store: ReservationStore,
    book_id: str,
    start_date: date | datetime,
    end_date: date | datetime | None = None,
    exclude_reservation_id: str | None = None,
) -> bool:
    """True if any active reservation for book_id overlaps the window."""
    return (
        check_book_conflict(
            store,
            book_id=book_id,
            start_date=start_date,
            end_date=end_date,
            exclude_reservation_id=exclude_reservation_id,
        )
        is not None
    )


def assert_no_book_conflict(
    store: ReservationStore,
    *,
    book_id: str,
    start_date: date | datetime,
    end_date: date | datetime | None = None,
    exclude_reservation_id: str | None = None,
) -> None:
    """Raise BookingConflictError if the book is already reserved in the window."""
    conflict = check_book_conflict(
        store,
        book_id=book_id,
        start_date=start_date,
        end_date=end_date,
        exclude_reservation_id=exclude_reservation_id,
    )
    if conflict is not None:
        raise BookingConflictError(
            book_id=book_id,
            conflicting_reservation_id=conflict.id,
            existing_start=conflict.start_date,
            existing_end=conflict.effective_end,
        )

"""Availability projection for a single book.

Given the book's reservations and a reference date, answers "is it free
today, and if not until when; if so, when is it next taken".

A reservation with no end date counts as covering its start day only, but a
book held by one is reported as plain "Reserved" since no return date was
ever recorded.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable

from biblioteca.domain.models import Book, Reservation
from biblioteca.infra.time import as_date


@dataclass(frozen=True)
class AvailabilitySnapshot:
    book_id: str
    title: str
    author: str
    publication_date: date | None
    reference_date: date
    is_available: bool
    current_reservation_end_date: date | None
    next_reservation_start_date: date | None
    has_open_ended_reservation: bool
    summary: str

    def to_dict(self) -> dict:
        def iso(value: date | None) -> str | None:
            return value.isoformat() if value is not None else None

        return {
            "book_id": self.book_id,
            "title": self.title,
            "author": self.author,
            "publication_date": iso(self.publication_date),
            "reference_date": self.reference_date.isoformat(),
            "is_available": self.is_available,
            "current_reservation_end_date": iso(self.current_reservation_end_date),
            "next_reservation_start_date": iso(self.next_reservation_start_date),
            "has_open_ended_reservation": self.has_open_ended_reservation,
            "summary": self.summary,
        }


def _summary(current: Reservation | None, upcoming: Reservation | None) -> str:
    if current is not None:
        if current.end_date is None:
            return "Reserved"
        return f"Reserved until {current.effective_end.isoformat()}"
    if upcoming is not None:
        return f"Available (reserved starting {upcoming.start_date.isoformat()})"
    return "Available"


def project(
    book: Book,
    active_reservations: Iterable[Reservation],
    reference_date: date | datetime,
) -> AvailabilitySnapshot:
    """Derive the availability snapshot of book on reference_date.

    Inactive reservations in the input are ignored. Ordering is by
    (start_date, effective_end, id) so the result does not depend on the
    order of the input.
    """
    today = as_date(reference_date)

    active = sorted(
        (r for r in active_reservations if r.is_active and r.book_id == book.id),
        key=lambda r: (r.start_date, r.effective_end, r.id or ""),
    )

    current = next((r for r in active if r.covers(today)), None)
    upcoming = next(
        (r for r in active if r is not current and r.start_date > today),
        None,
    )

    return AvailabilitySnapshot(
        book_id=book.id,
        title=book.title,
        author=book.author,
        publication_date=book.publication_date,
        reference_date=today,
        is_available=current is None,
        current_reservation_end_date=current.effective_end if current is not None else None,
        next_reservation_start_date=upcoming.start_date if upcoming is not None else None,
        has_open_ended_reservation=current is not None and current.end_date is None,
        summary=_summary(current, upcoming),
    )

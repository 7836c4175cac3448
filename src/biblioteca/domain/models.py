"""Reservation domain types.

Books and readers are referenced by id only; a book's reservations are always
queried from the store, never held on the book.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum


class ReservationStatus(str, Enum):
    """Reservation lifecycle. Values double as the Postgres enum labels."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COLLECTED = "collected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


# Only these block new bookings and count toward availability.
ACTIVE_STATUSES = frozenset(
    {ReservationStatus.PENDING, ReservationStatus.CONFIRMED, ReservationStatus.COLLECTED}
)

TERMINAL_STATUSES = frozenset({ReservationStatus.COMPLETED, ReservationStatus.CANCELLED})

MAX_NOTES_LENGTH = 500


@dataclass(frozen=True)
class Book:
    """A bookable unit (one physical copy)."""

    id: str
    title: str = ""
    author: str = ""
    publication_date: date | None = None


@dataclass(frozen=True)
class Reservation:
    """A time-bounded hold on a book.

    start_date/end_date are calendar dates; a missing end_date means the hold
    occupies start_date only.
    """

    book_id: str
    reader_id: str
    start_date: date
    end_date: date | None = None
    status: ReservationStatus = ReservationStatus.PENDING
    notes: str | None = None
    reserved_at: datetime | None = None
    id: str | None = None

    @property
    def effective_end(self) -> date:
        return self.end_date if self.end_date is not None else self.start_date

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    def covers(self, day: date) -> bool:
        """True if day falls inside [start_date, effective_end]."""
        return self.start_date <= day <= self.effective_end


@dataclass(frozen=True)
class ReservationInput:
    """Caller-supplied fields for create/update.

    reader_id and status are only honoured for privileged actors on create;
    on update a status of None means "leave the status alone".
    """

    book_id: str
    start_date: date | datetime
    end_date: date | datetime | None = None
    reader_id: str | None = None
    status: ReservationStatus | None = None
    notes: str | None = None


class ActorKind(str, Enum):
    PRIVILEGED = "privileged"
    READER = "reader"


@dataclass(frozen=True)
class Actor:
    """Pre-resolved caller: staff/admin, or a reader acting on their own holds."""

    kind: ActorKind
    reader_id: str | None = None

    @classmethod
    def privileged(cls) -> Actor:
        return cls(kind=ActorKind.PRIVILEGED)

    @classmethod
    def reader(cls, reader_id: str) -> Actor:
        if not reader_id:
            raise ValueError("reader actor requires a reader_id")
        return cls(kind=ActorKind.READER, reader_id=reader_id)

    @property
    def is_privileged(self) -> bool:
        return self.kind is ActorKind.PRIVILEGED

    def owns(self, reservation: Reservation) -> bool:
        return self.kind is ActorKind.READER and reservation.reader_id == self.reader_id

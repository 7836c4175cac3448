"""Reservation error taxonomy.

Route handlers translate these to HTTP responses; nothing below the service
retries except the single StorageConflictError retry in ReservationService.
"""

from __future__ import annotations

from datetime import date


class ReservationError(Exception):
    """Base class for all reservation domain errors."""


class ValidationError(ReservationError):
    """Malformed input, e.g. end date before start date."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class BookingConflictError(ReservationError):
    """Requested window overlaps an active reservation for the same book."""

    def __init__(
        self,
        book_id: str,
        conflicting_reservation_id: str | None = None,
        existing_start: date | None = None,
        existing_end: date | None = None,
    ) -> None:
        self.book_id = book_id
        self.conflicting_reservation_id = conflicting_reservation_id
        self.existing_start = existing_start
        self.existing_end = existing_end
        if existing_start is not None:
            message = (
                f"Book {book_id} is already reserved "
                f"({existing_start} to {existing_end})"
            )
        else:
            message = f"Book {book_id} is already reserved for the selected dates"
        super().__init__(message)


class AuthorizationError(ReservationError):
    """Actor may not perform the requested action."""


class NotFoundError(ReservationError):
    """Referenced reservation or book does not exist."""


class StorageConflictError(ReservationError):
    """The store rejected a write (constraint violation, serialization failure)."""


class IllegalTransitionError(ReservationError):
    """Status change not permitted by the lifecycle state machine."""

    def __init__(self, current: str, target: str, actor_kind: str) -> None:
        self.current = current
        self.target = target
        self.actor_kind = actor_kind
        super().__init__(
            f"Cannot move reservation from '{current}' to '{target}' as {actor_kind}"
        )

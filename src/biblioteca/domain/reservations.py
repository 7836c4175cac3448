"""Reservation service - create, edit, cancel and delete book reservations.

Orchestrates each operation as:
validate → authorize → conflict check (store) → write (store) → notify.

The check and the write are separate store calls, so two requests for the
same book can both pass the check. The store's own overlap guard rejects the
second write with StorageConflictError; create/update then re-run once and
report a persisting failure as BookingConflictError.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from typing import Callable, Sequence

from biblioteca.domain import lifecycle
from biblioteca.domain.availability import AvailabilitySnapshot, project
from biblioteca.domain.book_conflict import assert_no_book_conflict
from biblioteca.domain.errors import (
    AuthorizationError,
    BookingConflictError,
    NotFoundError,
    StorageConflictError,
    ValidationError,
)
from biblioteca.domain.models import (
    MAX_NOTES_LENGTH,
    Actor,
    Reservation,
    ReservationInput,
    ReservationStatus,
)
from biblioteca.domain.ports import NotificationEvent, Notifier, ReservationStore
from biblioteca.infra.time import as_date, utc_now, utc_today
from biblioteca.observability.correlation import get_correlation_id
from biblioteca.observability.logging import get_logger
from biblioteca.observability.redaction import safe_log_context

logger = get_logger(__name__)

# First attempt plus one retry after a store-level conflict.
MAX_WRITE_ATTEMPTS = 2


def validate_window(
    start_date: date | datetime | None,
    end_date: date | datetime | None,
) -> tuple[date, date | None]:
    """Normalize a reservation window to dates and check its ordering.

    Raises:
        ValidationError: If start_date is missing or end_date < start_date.
    """
    start = as_date(start_date)
    end = as_date(end_date)

    if start is None:
        raise ValidationError("Start date is required", field="start_date")
    if end is not None and end < start:
        raise ValidationError(
            "End date must be on or after the start date", field="end_date"
        )
    return start, end


def _validate_notes(notes: str | None) -> None:
    if notes is not None and len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError(
            f"Notes must be at most {MAX_NOTES_LENGTH} characters", field="notes"
        )


def _no_recipients() -> Sequence[str]:
    return ()


class ReservationService:
    """Entry point for every reservation mutation and availability query.

    Args:
        store: Reservation store (Postgres or in-memory).
        notifier: Delivers "created"/"cancelled" events; optional.
        staff_recipients: Returns the addresses to notify at call time.
        clock: Source of reserved_at timestamps.
    """

    def __init__(
        self,
        store: ReservationStore,
        notifier: Notifier | None = None,
        *,
        staff_recipients: Callable[[], Sequence[str]] = _no_recipients,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._staff_recipients = staff_recipients
        self._clock = clock

    # ── reads ─────────────────────────────────────────────────────────────

    def get(self, reservation_id: str, actor: Actor) -> Reservation:
        """Load a reservation; readers may only see their own."""
        reservation = self._load(reservation_id)
        self._authorize_access(reservation, actor)
        return reservation

    def list_for_reader(self, reader_id: str, actor: Actor) -> list[Reservation]:
        """All reservations of a reader, newest first."""
        if not actor.is_privileged and actor.reader_id != reader_id:
            raise AuthorizationError("Readers may only list their own reservations")
        return self._store.list_by_reader(reader_id)

    def list_all(self, actor: Actor) -> list[Reservation]:
        """Every reservation across all books and readers (privileged only)."""
        if not actor.is_privileged:
            raise AuthorizationError("Only staff may list all reservations")
        return self._store.list_all()

    def availability(
        self,
        book_id: str,
        reference_date: date | datetime | None = None,
    ) -> AvailabilitySnapshot:
        """Availability snapshot of a book (reference date defaults to today, UTC)."""
        book = self._store.get_book(book_id)
        if book is None:
            raise NotFoundError(f"Book {book_id} not found")

        active = self._store.list_active_by_book(book_id)
        return project(book, active, reference_date or utc_today())

    # ── mutations ─────────────────────────────────────────────────────────

    def create(self, data: ReservationInput, actor: Actor) -> Reservation:
        """Admit a new reservation if its window is free.

        Readers always book for themselves with status pending; privileged
        actors choose the reader and may set an initial status.

        Raises:
            ValidationError: Bad date range, notes too long, missing reader.
            AuthorizationError: Reader booking on behalf of someone else.
            NotFoundError: Unknown book.
            BookingConflictError: Window overlaps an active reservation.
        """
        start, end = validate_window(data.start_date, data.end_date)
        _validate_notes(data.notes)

        if actor.is_privileged:
            if not data.reader_id:
                raise ValidationError("Reader is required", field="reader_id")
            reader_id = data.reader_id
            status = data.status or lifecycle.INITIAL_STATUS
        else:
            if data.reader_id and data.reader_id != actor.reader_id:
                raise AuthorizationError("Readers may only reserve for themselves")
            reader_id = actor.reader_id
            status = lifecycle.INITIAL_STATUS

        if self._store.get_book(data.book_id) is None:
            raise NotFoundError(f"Book {data.book_id} not found")

        candidate = Reservation(
            book_id=data.book_id,
            reader_id=reader_id,
            start_date=start,
            end_date=end,
            status=status,
            notes=data.notes,
        )

        def attempt() -> Reservation:
            if candidate.is_active:
                assert_no_book_conflict(
                    self._store,
                    book_id=candidate.book_id,
                    start_date=candidate.start_date,
                    end_date=candidate.end_date,
                )
            return self._store.create(replace(candidate, reserved_at=self._clock()))

        created = self._with_write_retry(attempt, book_id=candidate.book_id, operation="create")

        logger.info(
            "reservation created",
            extra={"extra_fields": self._log_ctx(created, actor)},
        )
        self._notify("created", created)
        return created

    def update(
        self,
        reservation_id: str,
        data: ReservationInput,
        actor: Actor,
    ) -> Reservation:
        """Edit dates, notes, reader and (optionally) status (privileged only).

        Readers never edit a reservation; their only action is cancel(). The
        status only changes when data.status is set, and then only along the
        lifecycle table.

        Raises:
            NotFoundError: Unknown reservation.
            AuthorizationError: Caller is not privileged.
            ValidationError: Bad date range, notes too long, book changed.
            IllegalTransitionError: Status change not allowed.
            BookingConflictError: New window overlaps another reservation.
        """
        if not actor.is_privileged:
            raise AuthorizationError("Only staff may edit reservations")

        existing = self._load(reservation_id)
        if data.book_id != existing.book_id:
            raise ValidationError("The book of a reservation cannot be changed", field="book_id")

        start, end = validate_window(data.start_date, data.end_date)
        _validate_notes(data.notes)

        def attempt() -> Reservation:
            current = self._load(reservation_id)
            edited = replace(
                current,
                start_date=start,
                end_date=end,
                notes=data.notes,
                reader_id=data.reader_id or current.reader_id,
            )
            if data.status is not None:
                edited = lifecycle.transition(edited, data.status, actor)

            if edited.is_active:
                assert_no_book_conflict(
                    self._store,
                    book_id=edited.book_id,
                    start_date=edited.start_date,
                    end_date=edited.end_date,
                    exclude_reservation_id=edited.id,
                )
            self._store.update(edited)
            return edited

        updated = self._with_write_retry(attempt, book_id=existing.book_id, operation="update")

        logger.info(
            "reservation updated",
            extra={"extra_fields": self._log_ctx(updated, actor, previous_status=existing.status)},
        )
        return updated

    def cancel(self, reservation_id: str, actor: Actor) -> Reservation:
        """Cancel a reservation.

        Privileged actors may cancel any non-terminal reservation; readers
        only their own. Cancelling a cancelled reservation is a no-op.

        Raises:
            NotFoundError: Unknown reservation.
            AuthorizationError: Reader cancelling someone else's reservation.
            IllegalTransitionError: Reservation already completed.
            StorageConflictError: Store rejected the write.
        """
        existing = self._load(reservation_id)
        self._authorize_access(existing, actor)

        if existing.status == ReservationStatus.CANCELLED:
            logger.info(
                "reservation already cancelled",
                extra={"extra_fields": self._log_ctx(existing, actor)},
            )
            return existing

        cancelled = lifecycle.transition(existing, ReservationStatus.CANCELLED, actor)
        self._store.update(cancelled)

        logger.info(
            "reservation cancelled",
            extra={"extra_fields": self._log_ctx(cancelled, actor, previous_status=existing.status)},
        )
        self._notify("cancelled", cancelled)
        return cancelled

    def delete(self, reservation_id: str, actor: Actor) -> None:
        """Hard-delete a reservation regardless of status (privileged only)."""
        if not actor.is_privileged:
            raise AuthorizationError("Only staff may delete reservations")

        existing = self._load(reservation_id)
        self._store.delete(reservation_id)

        logger.info(
            "reservation deleted",
            extra={"extra_fields": self._log_ctx(existing, actor)},
        )

    # ── helpers ───────────────────────────────────────────────────────────

    def _load(self, reservation_id: str) -> Reservation:
        reservation = self._store.get_by_id(reservation_id)
        if reservation is None:
            raise NotFoundError(f"Reservation {reservation_id} not found")
        return reservation

    @staticmethod
    def _authorize_access(reservation: Reservation, actor: Actor) -> None:
        if actor.is_privileged or actor.owns(reservation):
            return
        raise AuthorizationError(
            f"Reader {actor.reader_id} may not act on reservation {reservation.id}"
        )

    def _with_write_retry(
        self,
        attempt: Callable[[], Reservation],
        *,
        book_id: str,
        operation: str,
    ) -> Reservation:
        last_error: StorageConflictError | None = None

        for attempt_no in range(MAX_WRITE_ATTEMPTS):
            try:
                return attempt()
            except StorageConflictError as exc:
                last_error = exc
                logger.warning(
                    "store rejected reservation write",
                    extra={
                        "extra_fields": safe_log_context(
                            correlationId=get_correlation_id(),
                            operation=operation,
                            book_id=book_id,
                            attempt=attempt_no,
                            error_type=type(exc).__name__,
                        )
                    },
                )

        raise BookingConflictError(book_id=book_id) from last_error

    def _notify(self, event: NotificationEvent, reservation: Reservation) -> None:
        """Deliver a notification; failures are logged, never raised."""
        if self._notifier is None:
            return

        try:
            recipients = list(self._staff_recipients())
            if not recipients:
                return
            self._notifier.notify(event, reservation, recipients)
        except Exception as exc:
            logger.error(
                "reservation notification failed",
                exc_info=True,
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=get_correlation_id(),
                        event=event,
                        reservation_id=reservation.id,
                        error_type=type(exc).__name__,
                    )
                },
            )

    @staticmethod
    def _log_ctx(
        reservation: Reservation,
        actor: Actor,
        previous_status: ReservationStatus | None = None,
    ) -> dict[str, str]:
        return safe_log_context(
            correlationId=get_correlation_id(),
            reservation_id=reservation.id,
            book_id=reservation.book_id,
            status=reservation.status,
            previous_status=previous_status,
            start_date=reservation.start_date,
            end_date=reservation.end_date,
            actor=actor.kind,
        )

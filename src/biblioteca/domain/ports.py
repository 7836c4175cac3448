"""Collaborator contracts consumed by the reservation service."""

from __future__ import annotations

from typing import Literal, Protocol, Sequence

from biblioteca.domain.models import Book, Reservation

NotificationEvent = Literal["created", "cancelled"]


class ReservationStore(Protocol):
    """Durable reservation collection.

    Every method may raise StorageConflictError. list_active_by_book must
    return only pending/confirmed/collected reservations.
    """

    def get_by_id(self, reservation_id: str) -> Reservation | None: ...

    def list_active_by_book(
        self, book_id: str, exclude_id: str | None = None
    ) -> list[Reservation]: ...

    def list_by_reader(self, reader_id: str) -> list[Reservation]: ...

    def list_all(self) -> list[Reservation]: ...

    def create(self, reservation: Reservation) -> Reservation: ...

    def update(self, reservation: Reservation) -> None: ...

    def delete(self, reservation_id: str) -> None: ...

    def get_book(self, book_id: str) -> Book | None: ...


class Notifier(Protocol):
    """Best-effort outbound notification. Failures are logged by the caller."""

    def notify(
        self,
        event: NotificationEvent,
        reservation: Reservation,
        recipients: Sequence[str],
    ) -> None: ...

"""Wiring of the reservation service for the HTTP layer.

The service is built once per process from the environment. Tests replace it
with app.dependency_overrides[get_reservation_service].
"""

from __future__ import annotations

import threading

from biblioteca.domain.reservations import ReservationService
from biblioteca.infra.repositories.reservations_repository import PostgresReservationStore
from biblioteca.notifications.staff_email import build_notifier, staff_recipients_from_env

_service: ReservationService | None = None
_service_lock = threading.Lock()


def build_reservation_service() -> ReservationService:
    """Postgres-backed service with staff e-mail notifications."""
    store = PostgresReservationStore()
    return ReservationService(
        store,
        build_notifier(book_lookup=store.get_book),
        staff_recipients=staff_recipients_from_env,
    )


def get_reservation_service() -> ReservationService:
    """FastAPI dependency returning the process-wide service."""
    global _service

    with _service_lock:
        if _service is None:
            _service = build_reservation_service()
        return _service

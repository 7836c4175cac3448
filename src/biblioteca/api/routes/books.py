"""Book availability endpoint."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Path, Query

from biblioteca.api.routes.reservations import domain_errors
from biblioteca.api.services import get_reservation_service
from biblioteca.domain.reservations import ReservationService

router = APIRouter(tags=["books"])


@router.get("/books/{book_id}/availability")
def get_book_availability(
    book_id: str = Path(..., description="Book ID"),
    reference_date: date | None = Query(None, description="Defaults to today (UTC)"),
    service: ReservationService = Depends(get_reservation_service),
) -> dict:
    """Is the book free on reference_date, until when is it taken, when is it next taken."""
    with domain_errors():
        snapshot = service.availability(book_id, reference_date)
    return snapshot.to_dict()

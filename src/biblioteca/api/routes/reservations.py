"""Reservation endpoints.

Readers book and cancel their own holds; staff manage any reservation.
Authorization decisions live in ReservationService; this layer only resolves
the actor and translates domain errors to HTTP status codes.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from typing import Iterator

from fastapi import APIRouter, Depends, HTTPException, Path, Response
from pydantic import BaseModel, Field

from biblioteca.api.actor import get_current_actor, require_privileged
from biblioteca.api.services import get_reservation_service
from biblioteca.domain.errors import (
    AuthorizationError,
    BookingConflictError,
    IllegalTransitionError,
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
from biblioteca.domain.reservations import ReservationService


class CreateReservationRequest(BaseModel):
    """Request body for POST /reservations.

    reader_id and status are ignored for readers (they always book for
    themselves, as pending).
    """

    book_id: str
    start_date: date
    end_date: date | None = None
    reader_id: str | None = None
    status: ReservationStatus | None = None
    notes: str | None = Field(None, max_length=MAX_NOTES_LENGTH)


class UpdateReservationRequest(BaseModel):
    """Request body for PATCH /reservations/{id}.

    Partial: fields left out of the body keep their stored values. An explicit
    null end_date makes the reservation open-ended.
    """

    start_date: date | None = None
    end_date: date | None = None
    reader_id: str | None = None
    status: ReservationStatus | None = None
    notes: str | None = Field(None, max_length=MAX_NOTES_LENGTH)


router = APIRouter(tags=["reservations"])


def _reservation_to_dict(reservation: Reservation) -> dict:
    return {
        "id": reservation.id,
        "book_id": reservation.book_id,
        "reader_id": reservation.reader_id,
        "reserved_at": reservation.reserved_at.isoformat() if reservation.reserved_at else None,
        "start_date": reservation.start_date.isoformat(),
        "end_date": reservation.end_date.isoformat() if reservation.end_date else None,
        "effective_end_date": reservation.effective_end.isoformat(),
        "status": reservation.status.value,
        "notes": reservation.notes,
    }


@contextmanager
def domain_errors() -> Iterator[None]:
    """Translate reservation domain errors to HTTPException."""
    try:
        yield
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except IllegalTransitionError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except AuthorizationError:
        raise HTTPException(status_code=403, detail="Forbidden")
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except BookingConflictError:
        raise HTTPException(
            status_code=409,
            detail="This book is already reserved for the selected dates.",
        )
    except StorageConflictError:
        raise HTTPException(
            status_code=409,
            detail="The reservation could not be saved because it conflicts with other records.",
        )


@router.post("/reservations", status_code=201)
def create_reservation(
    body: CreateReservationRequest,
    actor: Actor = Depends(get_current_actor),
    service: ReservationService = Depends(get_reservation_service),
) -> dict:
    """Reserve a book for a date window.

    Raises 409 if the window overlaps an active reservation of the book.
    """
    with domain_errors():
        created = service.create(
            ReservationInput(
                book_id=body.book_id,
                start_date=body.start_date,
                end_date=body.end_date,
                reader_id=body.reader_id,
                status=body.status,
                notes=body.notes,
            ),
            actor,
        )
    return _reservation_to_dict(created)


@router.get("/reservations")
def list_reservations(
    actor: Actor = Depends(require_privileged),
    service: ReservationService = Depends(get_reservation_service),
) -> dict:
    """Every reservation, newest first (staff only)."""
    with domain_errors():
        reservations = service.list_all(actor)
    return {"reservations": [_reservation_to_dict(r) for r in reservations]}


@router.get("/reservations/{reservation_id}")
def get_reservation(
    reservation_id: str = Path(..., description="Reservation ID"),
    actor: Actor = Depends(get_current_actor),
    service: ReservationService = Depends(get_reservation_service),
) -> dict:
    """Reservation details; readers only see their own."""
    with domain_errors():
        reservation = service.get(reservation_id, actor)
    return _reservation_to_dict(reservation)


@router.get("/readers/{reader_id}/reservations")
def list_reader_reservations(
    reader_id: str = Path(..., description="Reader ID"),
    actor: Actor = Depends(get_current_actor),
    service: ReservationService = Depends(get_reservation_service),
) -> dict:
    """A reader's reservations, newest first."""
    with domain_errors():
        reservations = service.list_for_reader(reader_id, actor)
    return {"reservations": [_reservation_to_dict(r) for r in reservations]}


@router.patch("/reservations/{reservation_id}")
def update_reservation(
    body: UpdateReservationRequest,
    reservation_id: str = Path(..., description="Reservation ID"),
    actor: Actor = Depends(get_current_actor),
    service: ReservationService = Depends(get_reservation_service),
) -> dict:
    """Edit dates, notes, reader or status of a reservation (staff only)."""
    sent = body.model_fields_set
    with domain_errors():
        existing = service.get(reservation_id, actor)
        updated = service.update(
            reservation_id,
            ReservationInput(
                book_id=existing.book_id,
                start_date=body.start_date if "start_date" in sent else existing.start_date,
                end_date=body.end_date if "end_date" in sent else existing.end_date,
                reader_id=body.reader_id,
                status=body.status,
                notes=body.notes if "notes" in sent else existing.notes,
            ),
            actor,
        )
    return _reservation_to_dict(updated)


@router.post("/reservations/{reservation_id}/actions/cancel")
def cancel_reservation(
    reservation_id: str = Path(..., description="Reservation ID"),
    actor: Actor = Depends(get_current_actor),
    service: ReservationService = Depends(get_reservation_service),
) -> dict:
    """Cancel a reservation. Repeating the call on a cancelled one is a no-op."""
    with domain_errors():
        cancelled = service.cancel(reservation_id, actor)
    return _reservation_to_dict(cancelled)


@router.delete("/reservations/{reservation_id}", status_code=204)
def delete_reservation(
    reservation_id: str = Path(..., description="Reservation ID"),
    actor: Actor = Depends(require_privileged),
    service: ReservationService = Depends(get_reservation_service),
) -> Response:
    """Hard-delete a reservation (staff only, bypasses the lifecycle)."""
    with domain_errors():
        service.delete(reservation_id, actor)
    return Response(status_code=204)

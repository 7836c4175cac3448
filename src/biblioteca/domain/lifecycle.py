"""Reservation lifecycle state machine.

pending -> confirmed -> collected -> completed, with cancelled reachable from
any active state. completed and cancelled are terminal.

Staff may jump forward (e.g. pending -> completed); readers may only cancel.
Ownership of the reservation is checked by the service, not here.
"""

from __future__ import annotations

from dataclasses import replace

from biblioteca.domain.errors import IllegalTransitionError
from biblioteca.domain.models import Actor, ActorKind, Reservation, ReservationStatus

_P = ReservationStatus.PENDING
_CF = ReservationStatus.CONFIRMED
_CL = ReservationStatus.COLLECTED
_DONE = ReservationStatus.COMPLETED
_X = ReservationStatus.CANCELLED

# (from, actor kind) -> allowed targets. Missing keys mean no outgoing edges.
TRANSITIONS: dict[tuple[ReservationStatus, ActorKind], frozenset[ReservationStatus]] = {
    (_P, ActorKind.PRIVILEGED): frozenset({_CF, _CL, _DONE, _X}),
    (_CF, ActorKind.PRIVILEGED): frozenset({_CL, _DONE, _X}),
    (_CL, ActorKind.PRIVILEGED): frozenset({_DONE, _X}),
    (_P, ActorKind.READER): frozenset({_X}),
    (_CF, ActorKind.READER): frozenset({_X}),
    (_CL, ActorKind.READER): frozenset({_X}),
}

INITIAL_STATUS = _P


def allowed_targets(
    current: ReservationStatus, actor_kind: ActorKind
) -> frozenset[ReservationStatus]:
    return TRANSITIONS.get((current, actor_kind), frozenset())


def can_transition(
    current: ReservationStatus,
    target: ReservationStatus,
    actor_kind: ActorKind,
) -> bool:
    """True if target is reachable from current for this kind of actor.

    Staying in the same status is always permitted (it is not a transition).
    """
    if current == target:
        return True
    return target in allowed_targets(current, actor_kind)


def transition(
    reservation: Reservation,
    target: ReservationStatus,
    actor: Actor,
) -> Reservation:
    """Return a copy of reservation moved to target.

    Re-applying the current status returns the reservation unchanged, which
    makes cancelling an already cancelled reservation a successful no-op.

    Raises:
        IllegalTransitionError: If the table has no such edge for the actor.
    """
    current = reservation.status
    if current == target:
        return reservation

    if not can_transition(current, target, actor.kind):
        raise IllegalTransitionError(
            current=current.value,
            target=target.value,
            actor_kind=actor.kind.value,
        )

    return replace(reservation, status=target)

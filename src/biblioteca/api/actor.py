"""Caller resolution for the HTTP layer.

Authentication happens upstream (gateway / identity service), which forwards
the resolved caller in two headers:

- X-Actor-Role: "privileged" (staff, administrators) or "reader"
- X-Reader-Id: the reader's id, required when the role is "reader"

Provides:
- get_current_actor(): FastAPI dependency returning the Actor
- require_privileged(): FastAPI dependency that rejects readers with 403
"""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException

from biblioteca.domain.models import Actor, ActorKind

ACTOR_ROLE_HEADER = "X-Actor-Role"
READER_ID_HEADER = "X-Reader-Id"


def get_current_actor(
    role: str | None = Header(None, alias=ACTOR_ROLE_HEADER),
    forwarded_reader_id: str | None = Header(None, alias=READER_ID_HEADER),
) -> Actor:
    """Build the Actor from the forwarded identity headers.

    Raises:
        HTTPException: 401 if the role is missing/unknown or a reader has no id.
    """
    if not role:
        raise HTTPException(status_code=401, detail="Missing actor")

    try:
        kind = ActorKind(role.strip().lower())
    except ValueError:
        raise HTTPException(status_code=401, detail="Unknown actor role")

    if kind is ActorKind.PRIVILEGED:
        return Actor.privileged()

    if not forwarded_reader_id or not forwarded_reader_id.strip():
        raise HTTPException(status_code=401, detail="Missing reader id")
    return Actor.reader(forwarded_reader_id.strip())


def require_privileged(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Dependency for staff-only endpoints."""
    if not actor.is_privileged:
        raise HTTPException(status_code=403, detail="Insufficient role")
    return actor

"""Reusable FastAPI dependencies for sessions and caller identity.

Identity is asserted by the upstream gateway through the ``X-Actor-Id``
header; this service records it on every write but does not authenticate it.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header, HTTPException, status

from app.db.session import get_session

ACTOR_HEADER = "X-Actor-Id"
SESSION_DEP = Depends(get_session)


def _parse_actor(raw: str | None) -> UUID | None:
    if raw is None or not raw.strip():
        return None
    try:
        return UUID(raw.strip())
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{ACTOR_HEADER} must be a UUID",
        ) from exc


def get_actor_id(x_actor_id: str | None = Header(default=None)) -> UUID:
    """Require a caller identity."""
    actor_id = _parse_actor(x_actor_id)
    if actor_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"{ACTOR_HEADER} header is required",
        )
    return actor_id


def get_actor_id_optional(x_actor_id: str | None = Header(default=None)) -> UUID | None:
    """Caller identity when supplied; system-initiated calls omit it."""
    return _parse_actor(x_actor_id)


ACTOR_DEP = Depends(get_actor_id)
ACTOR_OPTIONAL_DEP = Depends(get_actor_id_optional)

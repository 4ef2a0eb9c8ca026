"""
api/dependencies.py -- FastAPI Depends() helpers for caller identity.

ETracker does not authenticate anyone. It sits behind a front end (reverse
proxy, SSO gateway, admin portal) that has already authenticated and
authorized the user and forwards the identity in two trusted headers:

  X-Actor-Id    stable user identifier (required for mutations)
  X-Actor-Name  display name recorded as the approver and in the audit trail

The service must only be reachable through that front end; the headers are
taken at face value.

try_get_actor() is the soft variant (returns None when the headers are
missing). get_actor() wraps it and raises HTTP 401.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from api.models import ErrorDetail
from core.models import Actor

ACTOR_ID_HEADER = "X-Actor-Id"
ACTOR_NAME_HEADER = "X-Actor-Name"


def try_get_actor(request: Request) -> Actor | None:
    actor_id = request.headers.get(ACTOR_ID_HEADER, "").strip()
    if not actor_id:
        return None
    actor_name = request.headers.get(ACTOR_NAME_HEADER, "").strip()
    return Actor(id=actor_id, name=actor_name or actor_id)


def get_actor(request: Request) -> Actor:
    """Require a forwarded identity. Raises HTTP 401 if the request carries none.

    Use as a FastAPI dependency:
        @router.patch("/mutating")
        def route(actor: Actor = Depends(get_actor)): ...
    """
    actor = try_get_actor(request)
    if actor is None:
        raise HTTPException(
            status_code=401,
            detail=ErrorDetail(
                code="unauthorized",
                message=f"{ACTOR_ID_HEADER} header required.",
            ).model_dump(),
        )
    return actor

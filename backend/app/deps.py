from datetime import date

from fastapi import Header, HTTPException, Query, Request, status

from app.schemas.actor import Actor


def get_actor(
    request: Request,
    x_actor_id: str | None = Header(default=None),
    x_request_id: str | None = Header(default=None),
) -> Actor:
    actor_id = (x_actor_id or "").strip()
    if not actor_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing X-Actor-Id header")
    if len(actor_id) > 64:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-Actor-Id is too long")
    return Actor(
        id=actor_id,
        request_id=x_request_id,
        ip_address=request.client.host if request.client else None,
    )


def get_as_of(as_of: date | None = Query(default=None)) -> date | None:
    if as_of is not None and as_of > date.today():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="as_of cannot be in the future"
        )
    return as_of

from fastapi import Header, HTTPException, Request

from orderflow.handler import OrderService
from orderflow.models import ActorContext, Role


def get_service(request: Request) -> OrderService:
    return request.app.state.service


async def get_actor(
    x_actor_id: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
) -> ActorContext:
    """
    Actor context resolved upstream by the identity gateway and forwarded as headers.
    Trusted as-is; only presence and role spelling are checked.
    """
    if not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=401, detail="Missing actor context")
    try:
        role = Role(x_actor_role.lower())
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown actor role: {x_actor_role}")
    return ActorContext(id=x_actor_id, role=role)

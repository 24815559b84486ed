from fastapi import Depends, Request
from typing import Optional
from wholesale.application.errors import AuthenticationError
from wholesale.application.rbac import Actor, require
from wholesale.domain.models import Role
from wholesale.infrastructure.auth import decode_access_token
from shared.core import set_request_context

BEARER_PREFIX = "Bearer "


def _actor_from_request(request: Request) -> Optional[Actor]:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    if not auth_header.startswith(BEARER_PREFIX):
        raise AuthenticationError("Missing token")
    token_data = decode_access_token(auth_header[len(BEARER_PREFIX):])
    if not token_data:
        raise AuthenticationError("Invalid token")
    try:
        actor = Actor(user_id=int(token_data["sub"]), role=Role(token_data["role"]))
    except (KeyError, ValueError):
        raise AuthenticationError("Invalid token")
    set_request_context(user_id=str(actor.user_id))
    return actor


async def get_optional_actor(request: Request) -> Optional[Actor]:
    return _actor_from_request(request)


async def get_current_actor(request: Request) -> Actor:
    actor = _actor_from_request(request)
    if actor is None:
        raise AuthenticationError("Unauthorized")
    return actor


def require_permission(permission: str):
    """Dependency factory: resolve the actor and check one permission."""
    async def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        require(actor, permission)
        return actor
    return dependency

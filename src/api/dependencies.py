"""Request-scoped dependencies: the service container and the calling user."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, Request

from models import UserScope
from services import AuthenticationError, PermissionDeniedError, Services, load_user_scope


logger = logging.getLogger(__name__)


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_current_user(
    x_user_id: Optional[str] = Header(None),
    services: Services = Depends(get_services),
) -> UserScope:
    """Resolve the X-User-Id header into the user's scope."""
    if not x_user_id:
        raise AuthenticationError("X-User-Id header is required")
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise AuthenticationError("X-User-Id must be a UUID", details={"header": x_user_id})

    user = await load_user_scope(services.store, user_id, cache=services.cache)
    if not user.roles:
        logger.warning(f"Request from user {user_id} without roles")
        raise PermissionDeniedError("User has no roles")
    return user

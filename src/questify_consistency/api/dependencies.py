"""
Request Dependencies

Service access and caller identity for the routers.

- /internal/* endpoints require the shared service-to-service token
  in X-Internal-Token.
- /users/me/* endpoints trust the X-User-Id header set by the
  upstream gateway after authenticating the user.
"""

import hmac
from typing import Optional

from fastapi import Depends, Header, Request

from ..core.container import ServiceContainer
from ..core.exports.client import INTERNAL_TOKEN_HEADER
from .shared.errors import UnauthorizedError

USER_ID_HEADER = "X-User-Id"


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def require_internal_token(
    container: ServiceContainer = Depends(get_container),
    token: Optional[str] = Header(default=None, alias=INTERNAL_TOKEN_HEADER),
) -> None:
    """Reject calls without the configured internal token."""
    expected = container.settings.internal_token
    if not expected or not token or not hmac.compare_digest(token, expected):
        raise UnauthorizedError("Missing or invalid internal token")


def current_user_id(
    user_id: Optional[str] = Header(default=None, alias=USER_ID_HEADER),
) -> str:
    if not user_id or not user_id.strip():
        raise UnauthorizedError()
    return user_id.strip()

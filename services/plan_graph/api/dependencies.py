"""
Shared FastAPI dependencies: unit-of-work provider and acting user.
"""
from typing import Optional

from fastapi import Header

from exceptions import AuthorizationError
from infrastructure.uow import UoWProvider, create_uow_provider

_provider: Optional[UoWProvider] = None


def get_uow_provider() -> UoWProvider:
    """Process-wide provider so every request shares one plan lock registry."""
    global _provider
    if _provider is None:
        _provider = create_uow_provider()
    return _provider


async def get_acting_user(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """The upstream auth layer forwards the authenticated user id in X-User-Id."""
    if not x_user_id or not x_user_id.strip():
        raise AuthorizationError("Authentication required", {"header": "X-User-Id"})
    return x_user_id.strip()

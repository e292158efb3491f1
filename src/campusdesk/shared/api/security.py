"""
Actor & Cron Guards
===================

Identity is established by the upstream auth layer, which forwards the
acting user as `X-Actor-Id` / `X-Actor-Role` headers. These dependencies
turn the headers into an `Actor` and enforce role checks before any ticket
data is read.
"""

import hmac
from typing import Optional

from fastapi import Depends, Header

from campusdesk.config import VALID_ROLES, settings
from campusdesk.core import Actor, AuthorizationException, require_admin


async def get_actor(
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
) -> Actor:
    if not x_actor_id or not x_actor_role:
        raise AuthorizationException("Unauthorized", authenticated=False)
    role = x_actor_role.strip().lower()
    if role not in VALID_ROLES:
        raise AuthorizationException(f"Unknown role '{x_actor_role}'")
    return Actor(id=x_actor_id.strip(), role=role)


async def get_admin_actor(actor: Actor = Depends(get_actor)) -> Actor:
    return require_admin(actor)


async def verify_cron_auth(authorization: Optional[str] = Header(default=None)) -> None:
    """Cron endpoints require `Bearer <cron_secret>` when a secret is configured."""
    secret = settings.cron_secret
    if not secret:
        return
    if not authorization or not hmac.compare_digest(authorization, f"Bearer {secret}"):
        raise AuthorizationException("Invalid cron credentials", authenticated=False)

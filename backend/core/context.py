"""
Request context supplied by the identity collaborator.

The core never authenticates. It receives the acting user, tenant
(practice) and role explicitly on every call and filters every lookup by
``practice_id``.
"""

import uuid
from dataclasses import dataclass

from core.errors import ForbiddenError

ROLE_PRIORITY = {"VIEWER": 1, "STAFF": 2, "ADMIN": 3}


@dataclass(frozen=True)
class RequestContext:
    practice_id: uuid.UUID
    user_id: str
    role: str = "STAFF"


def has_required_role(ctx: RequestContext, minimum_role: str) -> bool:
    return ROLE_PRIORITY.get(ctx.role, 0) >= ROLE_PRIORITY[minimum_role]


def require_role(ctx: RequestContext, minimum_role: str) -> None:
    """Raise ForbiddenError if the context role is below ``minimum_role``."""
    if not has_required_role(ctx, minimum_role):
        raise ForbiddenError(
            f"Insufficient permissions. Required: {minimum_role}, Has: {ctx.role}",
            {"required_role": minimum_role, "role": ctx.role},
        )

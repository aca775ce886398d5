# ruff: noqa: B008, TC003
from __future__ import annotations

from datetime import date
from typing import Annotated, Literal

from fastapi import Depends, Header, Path

from tutorpay.exceptions import PermissionDeniedError
from tutorpay.schemas.auth import AuthContext
from tutorpay.services.week import parse_week_key


async def get_auth_context(
    x_user_id: str = Header(min_length=1),
    x_role: Literal["admin", "tutor"] = Header(default="tutor"),
) -> AuthContext:
    """Extract dev auth context from request headers."""
    return AuthContext(user_id=x_user_id, role=x_role)


AuthDep = Annotated[AuthContext, Depends(get_auth_context)]


async def require_admin(
    auth: AuthDep,
) -> AuthContext:
    """Require admin role for the request."""
    if not auth.is_admin:
        raise PermissionDeniedError("Admin access required")
    return auth


AdminDep = Annotated[AuthContext, Depends(require_admin)]


async def resolve_week_key(week_key: str = Path(description="Saturday that starts the week, YYYY-MM-DD")) -> date:
    """Parse the ``{week_key}`` path segment into the week's Saturday."""
    return parse_week_key(week_key)


WeekDep = Annotated[date, Depends(resolve_week_key)]

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class AuthContext(BaseModel):
    """Dev auth context extracted from request headers."""

    user_id: str
    role: Literal["admin", "tutor"] = "tutor"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

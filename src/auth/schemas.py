"""Pydantic schemas for authentication."""

from uuid import UUID

from pydantic import BaseModel

from src.entities.models import UserRole


class UserResponse(BaseModel):
    """Caller identity extracted from the access token."""

    id: UUID
    role: UserRole
    email: str | None = None

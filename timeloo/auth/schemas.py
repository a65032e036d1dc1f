"""Auth Pydantic v2 schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ProfileOut(BaseModel):
    """Public view of a profile."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    created_at: Optional[datetime] = None


class SessionCreateRequest(BaseModel):
    """Token issued by the identity provider after the user signed in."""

    identity_token: str = Field(min_length=1)


class SessionOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: ProfileOut

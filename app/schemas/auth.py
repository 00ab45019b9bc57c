from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


# Request schemas
class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)
    remember_me: bool = False
    totp_code: Optional[str] = Field(None, min_length=6, max_length=8)


# Response schemas
class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    kind: str
    expires_at: Optional[datetime] = None


class UserResponse(BaseModel):
    id: UUID
    email: str
    totp_enabled: bool
    created_at: datetime


class MeResponse(BaseModel):
    user: UserResponse
    token_kind: str
    token_issued_at: datetime
    token_expires_at: Optional[datetime] = None

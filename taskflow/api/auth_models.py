"""Request/response models for authentication endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    """Request model for account registration."""
    username: str = Field(..., min_length=1, description="Display name")
    email: str = Field(..., min_length=3, description="Login email")
    password: str = Field(..., min_length=1, description="Plain-text password, hashed with bcrypt")


class LoginRequest(BaseModel):
    """Request model for email/password login."""
    email: str
    password: str


class AuthUser(BaseModel):
    """User summary returned with a token."""
    id: int
    username: str
    xp: int = 0
    level: int = 1
    streak: int = 0
    last_reset_at: Optional[datetime] = None


class AuthResponse(BaseModel):
    """Response model for authentication."""
    success: bool = True
    token: str
    token_type: str = "bearer"
    user: AuthUser

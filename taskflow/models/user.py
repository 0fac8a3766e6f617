"""User data model for TaskFlow."""

from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, Field


class User(BaseModel):
    """User model for TaskFlow."""

    id: int = Field(..., description="Unique user identifier")
    username: str = Field(..., description="Display name")
    email: str = Field(..., description="User email address")
    xp: int = Field(0, ge=0, description="Experience points earned by completing tasks")
    level: int = Field(1, ge=1, description="Level derived from xp")
    streak: int = Field(0, ge=0, description="Consecutive active days")
    last_active_date: Optional[date] = Field(None, description="Last day the user logged in")
    last_reset_at: Optional[datetime] = Field(None, description="Last daily reset")
    created_at: datetime = Field(..., description="User creation timestamp")

    class Config:
        """Pydantic configuration."""
        use_enum_values = True

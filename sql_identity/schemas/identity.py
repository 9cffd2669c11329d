"""Identity schemas."""
from datetime import datetime

from pydantic import BaseModel, Field


class SessionFields(BaseModel):
    """Mutable fields written to a session record."""

    token: str
    subject: str
    ip: str | None = None
    user_agent: str | None = None


class SessionData(BaseModel):
    """Session record as read back from the store."""

    id: int
    token: str
    subject: str
    ip: str | None = None
    user_agent: str | None = None
    created_at: datetime
    modified_at: datetime

    class Config:
        from_attributes = True


class LoginRequest(BaseModel):
    """Login request for the demo application."""

    username: str = Field(..., min_length=1, max_length=255)


class SubjectResponse(BaseModel):
    """Authenticated subject response."""

    subject: str


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str

"""Authentication API endpoints."""
from fastapi import APIRouter, Depends

from sql_identity.api.deps import get_current_subject, get_identity
from sql_identity.identity import Identity
from sql_identity.schemas.identity import LoginRequest, MessageResponse, SubjectResponse

router = APIRouter(tags=["auth"])


@router.get("/", response_model=MessageResponse)
def index():
    """Public endpoint."""
    return MessageResponse(message="ok")


@router.post("/login", response_model=MessageResponse)
def login(user_data: LoginRequest, identity: Identity = Depends(get_identity)):
    """Start a session for the given user (credentials are assumed valid)."""
    identity.remember(user_data.username)
    return MessageResponse(message="Successfully logged in")


@router.get("/profile", response_model=SubjectResponse)
def profile(subject: str = Depends(get_current_subject)):
    """Protected endpoint returning the authenticated subject."""
    return SubjectResponse(subject=subject)


@router.post("/logout", response_model=MessageResponse)
def logout(identity: Identity = Depends(get_identity)):
    """End the current session."""
    identity.forget()
    return MessageResponse(message="Successfully logged out")

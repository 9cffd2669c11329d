"""API dependencies."""
from fastapi import Depends, HTTPException, Request, status

from sql_identity.identity import Identity


def get_identity(request: Request) -> Identity:
    """Dependency that provides the identity resolved by IdentityMiddleware."""
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise RuntimeError("IdentityMiddleware is not installed on this application")
    return identity


def get_current_subject(identity: Identity = Depends(get_identity)) -> str:
    """Dependency that requires an authenticated subject."""
    subject = identity.current_subject()
    if subject is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return subject

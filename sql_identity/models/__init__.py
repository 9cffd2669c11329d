"""SQLAlchemy models package."""
from sql_identity.models.identity import SessionRecord

__all__ = [
    "SessionRecord",
]

"""Session record model."""
from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, Integer, String, Text

from sql_identity.database import Base


class SessionRecord(Base):
    """Maps an issued token to the subject it authenticates."""

    __tablename__ = "identities"

    # SQLite only autoincrements INTEGER PRIMARY KEY columns
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    token = Column(String(64), unique=True, nullable=False, index=True)
    subject = Column("userid", String(255), nullable=False)
    ip = Column(String(45))
    user_agent = Column("useragent", Text)
    created_at = Column("created", DateTime, nullable=False, default=datetime.utcnow)
    modified_at = Column("modified", DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

"""A SQL-backed identity provider for FastAPI / Starlette applications."""
from sql_identity.exceptions import (
    HeaderEncodingError,
    IdentityConfigurationError,
    SqlIdentityError,
    StoreError,
    TokenNotFound,
    VariantNotSupported,
)
from sql_identity.identity import Identity, IdentityState, generate_token
from sql_identity.middleware import IdentityMiddleware
from sql_identity.policy import SqlIdentityBuilder, SqlIdentityPolicy
from sql_identity.store import (
    MySqlSessionStore,
    PostgresSessionStore,
    SessionStore,
    SqliteSessionStore,
    SqlSessionStore,
)

__all__ = [
    "HeaderEncodingError",
    "Identity",
    "IdentityConfigurationError",
    "IdentityMiddleware",
    "IdentityState",
    "MySqlSessionStore",
    "PostgresSessionStore",
    "SessionStore",
    "SqlIdentityBuilder",
    "SqlIdentityError",
    "SqlIdentityPolicy",
    "SqliteSessionStore",
    "SqlSessionStore",
    "StoreError",
    "TokenNotFound",
    "VariantNotSupported",
    "generate_token",
]

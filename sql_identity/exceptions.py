"""Errors raised by the identity store and policy."""


class SqlIdentityError(Exception):
    """Base class for identity errors."""


class TokenNotFound(SqlIdentityError):
    """No single session record matches the presented token."""

    def __init__(self, token: str):
        super().__init__("token not found")
        self.token = token


class StoreError(SqlIdentityError):
    """A database operation against the session store failed."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation


class HeaderEncodingError(SqlIdentityError):
    """A token cannot be sent as a response header value."""


class IdentityConfigurationError(SqlIdentityError):
    """The identity policy could not be constructed."""


class VariantNotSupported(IdentityConfigurationError):
    """The database URL does not match the requested SQL variant."""

    def __init__(self, variant: str, backend: str):
        super().__init__(f"sql variant not supported: {variant!r} cannot serve {backend!r} URLs")
        self.variant = variant
        self.backend = backend

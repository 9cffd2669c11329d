"""Identity policy: per-request extraction and finalization."""
import logging

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from sql_identity.config import DEFAULT_HEADER_NAME, DEFAULT_POOL_SIZE, Settings, is_valid_header_name
from sql_identity.database import build_engine
from sql_identity.exceptions import (
    IdentityConfigurationError,
    SqlIdentityError,
    StoreError,
    TokenNotFound,
    VariantNotSupported,
)
from sql_identity.identity import Identity
from sql_identity.store import STORE_VARIANTS, SessionStore, SqlSessionStore

logger = logging.getLogger(__name__)


def get_request_ip(request: Request) -> str | None:
    """Extract best-effort client IP for session metadata."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def parse_authorization(value: str | None) -> str | None:
    """Return the token of a ``<scheme> <token>`` header, or None."""
    if not value:
        return None
    parts = value.split(" ")
    if len(parts) < 2:
        return None
    scheme, token = parts[0], parts[1]
    if not scheme or not token:
        return None
    return token


class SqlIdentityPolicy:
    """Resolves bearer tokens against a session store."""

    def __init__(
        self,
        store: SessionStore,
        header_name: str = DEFAULT_HEADER_NAME,
        track_client_changes: bool = False,
    ):
        self.store = store
        self.header_name = header_name
        self.track_client_changes = track_client_changes

    @staticmethod
    def builder(database_url: str) -> "SqlIdentityBuilder":
        return SqlIdentityBuilder(database_url)

    @classmethod
    def sqlite(cls, database_url: str, pool_size: int = DEFAULT_POOL_SIZE) -> "SqlIdentityPolicy":
        return cls.builder(database_url).pool_size(pool_size).sqlite()

    @classmethod
    def mysql(cls, database_url: str, pool_size: int = DEFAULT_POOL_SIZE) -> "SqlIdentityPolicy":
        return cls.builder(database_url).pool_size(pool_size).mysql()

    @classmethod
    def postgres(cls, database_url: str, pool_size: int = DEFAULT_POOL_SIZE) -> "SqlIdentityPolicy":
        return cls.builder(database_url).pool_size(pool_size).postgres()

    @classmethod
    def from_settings(cls, settings: Settings) -> "SqlIdentityPolicy":
        """Build a policy for whichever SQL variant the configured URL names."""
        builder = (
            cls.builder(settings.database_url)
            .pool_size(settings.pool_size)
            .header_name(settings.auth_header_name)
            .track_client_changes(settings.track_client_changes)
            .echo(settings.debug)
        )
        return builder.build(builder.variant_for_url())

    async def extract(self, request: Request) -> Identity:
        """Resolve the request's bearer token; anonymous on any failure."""
        client_ip = get_request_ip(request)
        user_agent = request.headers.get("user-agent")
        identity = Identity(
            self.store,
            self.header_name,
            client_ip=client_ip,
            user_agent=user_agent,
        )

        token = parse_authorization(request.headers.get("authorization"))
        if token is None:
            return identity

        try:
            record = await self.store.find(token)
        except TokenNotFound:
            logger.debug("Presented token did not resolve to a session")
            return identity
        except StoreError:
            logger.warning("Session lookup failed; treating request as anonymous")
            return identity

        identity.token = record.token
        identity.subject = record.subject
        identity.created_at = record.created_at

        if self.track_client_changes and (record.ip != client_ip or record.user_agent != user_agent):
            logger.info(f"Client metadata changed for subject {record.subject}; refreshing session")
            identity.refresh()

        return identity

    async def finalize(self, identity: Identity, response: Response) -> Response:
        """Persist the identity and return the response to send."""
        try:
            return await identity.write(response)
        except SqlIdentityError as exc:
            logger.error(f"Failed to finalize identity: {exc}")
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"detail": "Unable to persist identity"},
            )

    def close(self) -> None:
        self.store.close()


class SqlIdentityBuilder:
    """Collects construction options; a variant call builds the policy."""

    def __init__(self, database_url: str):
        self._database_url = database_url
        self._pool_size = DEFAULT_POOL_SIZE
        self._header_name = DEFAULT_HEADER_NAME
        self._track_client_changes = False
        self._echo = False

    def pool_size(self, size: int) -> "SqlIdentityBuilder":
        self._pool_size = size
        return self

    def header_name(self, name: str) -> "SqlIdentityBuilder":
        self._header_name = name
        return self

    def track_client_changes(self, enabled: bool = True) -> "SqlIdentityBuilder":
        self._track_client_changes = enabled
        return self

    def echo(self, enabled: bool = True) -> "SqlIdentityBuilder":
        self._echo = enabled
        return self

    def sqlite(self) -> SqlIdentityPolicy:
        return self.build("sqlite")

    def mysql(self) -> SqlIdentityPolicy:
        return self.build("mysql")

    def postgres(self) -> SqlIdentityPolicy:
        return self.build("postgres")

    def variant_for_url(self) -> str:
        backend = self._backend_name()
        for variant, store_cls in STORE_VARIANTS.items():
            if store_cls.backend_name == backend:
                return variant
        raise VariantNotSupported("auto", backend)

    def _backend_name(self) -> str:
        try:
            return make_url(self._database_url).get_backend_name()
        except ArgumentError as exc:
            raise IdentityConfigurationError(f"Invalid database URL: {exc}") from exc

    def build(self, variant: str) -> SqlIdentityPolicy:
        store_cls = STORE_VARIANTS.get(variant)
        backend = self._backend_name()
        if store_cls is None or store_cls.backend_name != backend:
            raise VariantNotSupported(variant, backend)
        if self._pool_size < 1:
            raise IdentityConfigurationError("pool size must be at least 1")
        if not is_valid_header_name(self._header_name):
            raise IdentityConfigurationError(f"Invalid response header name: {self._header_name!r}")

        store = _connect(store_cls, self._database_url, self._pool_size, self._echo)
        logger.info(f"Identity store ready: {variant} with {self._pool_size} connection(s)")
        return SqlIdentityPolicy(
            store,
            header_name=self._header_name,
            track_client_changes=self._track_client_changes,
        )


def _connect(store_cls: type[SqlSessionStore], database_url: str, pool_size: int, echo: bool) -> SqlSessionStore:
    try:
        engine = build_engine(database_url, pool_size, echo=echo)
    except (ImportError, SQLAlchemyError) as exc:
        raise IdentityConfigurationError(f"Unable to create database engine: {exc}") from exc

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        engine.dispose()
        raise IdentityConfigurationError(f"Unable to connect to database: {exc}") from exc

    return store_cls(engine, pool_size)

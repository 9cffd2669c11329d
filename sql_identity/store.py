"""Session record store.

Every SQL statement runs on a bounded worker pool owned by the store, one
worker per pooled connection, so request handling on the event loop never
waits on the database driver. The store keeps no state besides its engine
and executor and is safe to share between concurrent requests.
"""
import abc
import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
import functools
import logging

from sqlalchemy import delete, select
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from sql_identity.database import build_session_factory, session_scope
from sql_identity.exceptions import StoreError, TokenNotFound
from sql_identity.models.identity import SessionRecord
from sql_identity.schemas.identity import SessionData, SessionFields

logger = logging.getLogger(__name__)


class SessionStore(abc.ABC):
    """Find, create, update and delete session records by token."""

    @abc.abstractmethod
    async def find(self, token: str) -> SessionData:
        """Return the single record for ``token`` or raise TokenNotFound."""

    @abc.abstractmethod
    async def create(self, fields: SessionFields) -> int:
        """Insert a new record."""

    @abc.abstractmethod
    async def update(self, fields: SessionFields) -> int:
        """Insert or update the record addressed by ``fields.token``."""

    @abc.abstractmethod
    async def delete(self, token: str) -> int:
        """Remove the record for ``token``; a missing record is not an error."""

    def close(self) -> None:
        pass


class SqlSessionStore(SessionStore):
    """Shared SQL implementation; subclasses supply the upsert statement."""

    backend_name: str = ""

    def __init__(self, engine: Engine, pool_size: int):
        self.engine = engine
        self.pool_size = pool_size
        self._session_factory = build_session_factory(engine)
        self._executor = ThreadPoolExecutor(
            max_workers=pool_size,
            thread_name_prefix=f"sql-identity-{self.backend_name}",
        )

    async def _run(self, operation: str, fn, *args):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, functools.partial(fn, *args))
        except SQLAlchemyError as exc:
            logger.error(f"Session store {operation} failed: {exc}")
            raise StoreError(operation, str(exc)) from exc

    async def find(self, token: str) -> SessionData:
        return await self._run("find", self._find, token)

    async def create(self, fields: SessionFields) -> int:
        return await self._run("create", self._create, fields)

    async def update(self, fields: SessionFields) -> int:
        return await self._run("update", self._update, fields)

    async def delete(self, token: str) -> int:
        return await self._run("delete", self._delete, token)

    def _find(self, token: str) -> SessionData:
        with session_scope(self._session_factory) as db:
            # Two rows are enough to tell a unique match from a duplicate
            rows = db.execute(
                select(SessionRecord).where(SessionRecord.token == token).limit(2)
            ).scalars().all()
            if len(rows) != 1:
                if rows:
                    logger.warning(f"Found {len(rows)} session records sharing one token")
                raise TokenNotFound(token)
            return SessionData.model_validate(rows[0])

    def _create(self, fields: SessionFields) -> int:
        now = datetime.utcnow()
        with session_scope(self._session_factory) as db:
            db.add(SessionRecord(
                token=fields.token,
                subject=fields.subject,
                ip=fields.ip,
                user_agent=fields.user_agent,
                created_at=now,
                modified_at=now,
            ))
            db.flush()
        logger.debug(f"Created session for subject {fields.subject}")
        return 1

    def _update(self, fields: SessionFields) -> int:
        now = datetime.utcnow()
        values = {
            "token": fields.token,
            "userid": fields.subject,
            "ip": fields.ip,
            "useragent": fields.user_agent,
            "created": now,
            "modified": now,
        }
        changes = {"userid": fields.subject, "ip": fields.ip, "useragent": fields.user_agent, "modified": now}
        with session_scope(self._session_factory) as db:
            result = db.execute(self._upsert_statement(values, changes))
        logger.debug(f"Updated session for subject {fields.subject}")
        return result.rowcount

    def _delete(self, token: str) -> int:
        with session_scope(self._session_factory) as db:
            result = db.execute(delete(SessionRecord).where(SessionRecord.token == token))
        logger.debug(f"Deleted {result.rowcount} session record(s)")
        return result.rowcount

    @abc.abstractmethod
    def _upsert_statement(self, values: dict, changes: dict):
        """Build an insert that updates ``changes`` when the token already exists."""

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self.engine.dispose()


class SqliteSessionStore(SqlSessionStore):
    backend_name = "sqlite"

    def _upsert_statement(self, values: dict, changes: dict):
        stmt = sqlite.insert(SessionRecord.__table__).values(**values)
        return stmt.on_conflict_do_update(index_elements=["token"], set_=changes)


class PostgresSessionStore(SqlSessionStore):
    backend_name = "postgresql"

    def _upsert_statement(self, values: dict, changes: dict):
        stmt = postgresql.insert(SessionRecord.__table__).values(**values)
        return stmt.on_conflict_do_update(index_elements=["token"], set_=changes)


class MySqlSessionStore(SqlSessionStore):
    backend_name = "mysql"

    def _upsert_statement(self, values: dict, changes: dict):
        stmt = mysql.insert(SessionRecord.__table__).values(**values)
        return stmt.on_duplicate_key_update(**changes)


STORE_VARIANTS: dict[str, type[SqlSessionStore]] = {
    "sqlite": SqliteSessionStore,
    "mysql": MySqlSessionStore,
    "postgres": PostgresSessionStore,
}

import asyncio
from datetime import datetime

import pytest
from starlette.requests import Request

from sql_identity.database import Base
from sql_identity.exceptions import StoreError, TokenNotFound
from sql_identity.policy import SqlIdentityPolicy
from sql_identity.schemas.identity import SessionData, SessionFields
from sql_identity.store import SessionStore


class FakeSessionStore(SessionStore):
    """In-memory store that records every call."""

    def __init__(self):
        self.records: dict[str, SessionData] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_on: set[str] = set()
        self._next_id = 1

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise StoreError(operation, "simulated failure")

    async def find(self, token: str) -> SessionData:
        self.calls.append(("find", token))
        await asyncio.sleep(0)
        self._check("find")
        if token not in self.records:
            raise TokenNotFound(token)
        return self.records[token]

    async def create(self, fields: SessionFields) -> int:
        self.calls.append(("create", fields.token))
        await asyncio.sleep(0)
        self._check("create")
        now = datetime.utcnow()
        self.records[fields.token] = SessionData(
            id=self._next_id,
            created_at=now,
            modified_at=now,
            **fields.model_dump(),
        )
        self._next_id += 1
        return 1

    async def update(self, fields: SessionFields) -> int:
        self.calls.append(("update", fields.token))
        await asyncio.sleep(0)
        self._check("update")
        existing = self.records.get(fields.token)
        if existing is None:
            return await self.create(fields)
        self.records[fields.token] = existing.model_copy(
            update={**fields.model_dump(), "modified_at": datetime.utcnow()}
        )
        return 1

    async def delete(self, token: str) -> int:
        self.calls.append(("delete", token))
        await asyncio.sleep(0)
        self._check("delete")
        return 1 if self.records.pop(token, None) else 0

    def seed(self, token: str, subject: str, ip: str | None = None, user_agent: str | None = None) -> SessionData:
        now = datetime.utcnow()
        record = SessionData(
            id=self._next_id,
            token=token,
            subject=subject,
            ip=ip,
            user_agent=user_agent,
            created_at=now,
            modified_at=now,
        )
        self._next_id += 1
        self.records[token] = record
        return record


def make_request(authorization: str | None = None, user_agent: str | None = "pytest", client_ip: str = "10.0.0.1") -> Request:
    headers = []
    if authorization is not None:
        headers.append((b"authorization", authorization.encode("latin-1")))
    if user_agent is not None:
        headers.append((b"user-agent", user_agent.encode("latin-1")))
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": headers,
        "client": (client_ip, 50000),
    }
    return Request(scope)


@pytest.fixture
def fake_store():
    return FakeSessionStore()


@pytest.fixture
def sqlite_url(tmp_path):
    return f"sqlite:///{tmp_path / 'identities.db'}"


@pytest.fixture
def sqlite_policy(sqlite_url):
    policy = SqlIdentityPolicy.sqlite(sqlite_url)
    Base.metadata.create_all(bind=policy.store.engine)
    yield policy
    policy.close()

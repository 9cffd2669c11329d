import asyncio
from datetime import datetime
import threading

import pytest
from sqlalchemy import insert, text

from sql_identity.database import Base, build_engine
from sql_identity.exceptions import StoreError, TokenNotFound
from sql_identity.models.identity import SessionRecord
from sql_identity.schemas.identity import SessionFields
from sql_identity.store import SqliteSessionStore


@pytest.fixture
def store(sqlite_url):
    engine = build_engine(sqlite_url, pool_size=2)
    Base.metadata.create_all(bind=engine)
    store = SqliteSessionStore(engine, pool_size=2)
    yield store
    store.close()


def test_create_then_find_returns_record(store):
    fields = SessionFields(token="abc", subject="mike", ip="10.0.0.1", user_agent="pytest")

    assert asyncio.run(store.create(fields)) == 1
    record = asyncio.run(store.find("abc"))

    assert record.token == "abc"
    assert record.subject == "mike"
    assert record.ip == "10.0.0.1"
    assert record.user_agent == "pytest"
    assert record.created_at == record.modified_at


def test_find_missing_token_raises_not_found(store):
    with pytest.raises(TokenNotFound):
        asyncio.run(store.find("missing"))


def test_create_duplicate_token_is_store_error(store):
    fields = SessionFields(token="dup", subject="mike")
    asyncio.run(store.create(fields))

    with pytest.raises(StoreError):
        asyncio.run(store.create(fields))


def test_update_is_idempotent_upsert(store):
    fields = SessionFields(token="tok", subject="mike", ip="10.0.0.1")

    asyncio.run(store.update(fields))
    asyncio.run(store.update(fields))
    first = asyncio.run(store.find("tok"))

    asyncio.run(store.update(SessionFields(token="tok", subject="mike", ip="10.0.0.2", user_agent="new")))
    second = asyncio.run(store.find("tok"))

    assert second.id == first.id
    assert second.ip == "10.0.0.2"
    assert second.user_agent == "new"
    assert second.created_at == first.created_at
    assert second.modified_at >= first.modified_at


def test_delete_removes_record_and_tolerates_missing(store):
    asyncio.run(store.create(SessionFields(token="gone", subject="mike")))

    assert asyncio.run(store.delete("gone")) == 1
    assert asyncio.run(store.delete("gone")) == 0
    with pytest.raises(TokenNotFound):
        asyncio.run(store.find("gone"))


def test_find_with_duplicate_rows_is_not_found(sqlite_url):
    # Without the unique index a second row can slip in; lookups must refuse it.
    engine = build_engine(sqlite_url, pool_size=1)
    now = datetime.utcnow()
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE identities (id INTEGER PRIMARY KEY, token VARCHAR(64) NOT NULL, "
            "userid VARCHAR(255) NOT NULL, ip VARCHAR(45), useragent TEXT, "
            "created DATETIME NOT NULL, modified DATETIME NOT NULL)"
        ))
        conn.execute(insert(SessionRecord.__table__), [
            {"token": "shared", "userid": subject, "created": now, "modified": now}
            for subject in ("a", "b")
        ])
    store = SqliteSessionStore(engine, pool_size=1)
    try:
        with pytest.raises(TokenNotFound):
            asyncio.run(store.find("shared"))
    finally:
        store.close()


def test_missing_table_is_store_error(sqlite_url):
    store = SqliteSessionStore(build_engine(sqlite_url, pool_size=1), pool_size=1)
    try:
        with pytest.raises(StoreError):
            asyncio.run(store.find("anything"))
    finally:
        store.close()


def test_operations_run_on_worker_threads(store):
    seen = []
    original = store._find

    def recording_find(token):
        seen.append(threading.current_thread().name)
        return original(token)

    store._find = recording_find
    asyncio.run(store.create(SessionFields(token="t", subject="mike")))
    asyncio.run(store.find("t"))

    assert seen and seen[0].startswith("sql-identity-sqlite")

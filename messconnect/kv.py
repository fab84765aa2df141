"""
Key-value store abstraction backing the entity layer.

Records are JSON documents addressed by string keys. Each store also keeps
named ordered id sets (insertion order, no duplicates) which the index layer
builds on, since plain key-value stores offer no range scans.

Implementations: in-memory for tests/dev, Redis for production, and a
SQLAlchemy-backed one for deployments that only have a SQL database.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Protocol

import redis
from redis import exceptions as redis_exceptions
from sqlalchemy import (
    JSON,
    Column,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from messconnect.errors import StorageUnavailableError


class KeyValueStore(Protocol):
    """Operations the entity and index layers need from the durable store."""

    def get(self, key: str) -> Optional[dict]:
        ...

    def get_many(self, keys: List[str]) -> List[Optional[dict]]:
        ...

    def put(self, key: str, value: dict) -> None:
        ...

    def put_if_absent(self, key: str, value: dict) -> bool:
        ...

    def delete(self, key: str) -> bool:
        ...

    def delete_many(self, keys: List[str]) -> int:
        ...

    def index_add(self, name: str, members: List[str]) -> int:
        ...

    def index_remove(self, name: str, members: List[str]) -> int:
        ...

    def index_range(self, name: str, offset: int, limit: int) -> List[str]:
        ...

    def index_size(self, name: str) -> int:
        ...

    def index_clear(self, name: str) -> None:
        ...


def _copy(value: dict) -> dict:
    # Mimic a serialization round trip so callers never share state with the store.
    return json.loads(json.dumps(value, default=str))


@dataclass
class InMemoryKeyValueStore:
    """Dictionary-backed store for development and tests."""

    data: Dict[str, dict] = field(default_factory=dict)
    indexes: Dict[str, Dict[str, None]] = field(default_factory=dict)

    def get(self, key: str) -> Optional[dict]:
        value = self.data.get(key)
        return _copy(value) if value is not None else None

    def get_many(self, keys: List[str]) -> List[Optional[dict]]:
        return [self.get(key) for key in keys]

    def put(self, key: str, value: dict) -> None:
        self.data[key] = _copy(value)

    def put_if_absent(self, key: str, value: dict) -> bool:
        if key in self.data:
            return False
        self.data[key] = _copy(value)
        return True

    def delete(self, key: str) -> bool:
        return self.data.pop(key, None) is not None

    def delete_many(self, keys: List[str]) -> int:
        return sum(1 for key in keys if self.delete(key))

    def index_add(self, name: str, members: List[str]) -> int:
        index = self.indexes.setdefault(name, {})
        added = 0
        for member in members:
            if member not in index:
                index[member] = None
                added += 1
        return added

    def index_remove(self, name: str, members: List[str]) -> int:
        index = self.indexes.get(name, {})
        removed = 0
        for member in members:
            if member in index:
                del index[member]
                removed += 1
        return removed

    def index_range(self, name: str, offset: int, limit: int) -> List[str]:
        members = list(self.indexes.get(name, {}))
        return members[offset : offset + limit]

    def index_size(self, name: str) -> int:
        return len(self.indexes.get(name, {}))

    def index_clear(self, name: str) -> None:
        self.indexes.pop(name, None)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.data.clear()
        self.indexes.clear()


@contextmanager
def _redis_errors() -> Iterator[None]:
    try:
        yield
    except (redis_exceptions.ConnectionError, redis_exceptions.TimeoutError) as exc:
        raise StorageUnavailableError(str(exc)) from exc


@dataclass
class RedisKeyValueStore:
    """
    Redis-backed store. Records are JSON strings; indexes are sorted sets
    scored by a per-index sequence so ranges come back in insertion order.
    """

    url: str
    namespace: str = "messconnect"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url, decode_responses=True)

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _index_key(self, name: str) -> str:
        return f"{self.namespace}:index:{name}"

    def _seq_key(self, name: str) -> str:
        return f"{self.namespace}:seq:{name}"

    def get(self, key: str) -> Optional[dict]:
        with _redis_errors():
            raw = self.client.get(self._key(key))
        return json.loads(raw) if raw is not None else None

    def get_many(self, keys: List[str]) -> List[Optional[dict]]:
        if not keys:
            return []
        with _redis_errors():
            raws = self.client.mget([self._key(key) for key in keys])
        return [json.loads(raw) if raw is not None else None for raw in raws]

    def put(self, key: str, value: dict) -> None:
        with _redis_errors():
            self.client.set(self._key(key), json.dumps(value, default=str))

    def put_if_absent(self, key: str, value: dict) -> bool:
        with _redis_errors():
            created = self.client.set(
                self._key(key), json.dumps(value, default=str), nx=True
            )
        return bool(created)

    def delete(self, key: str) -> bool:
        with _redis_errors():
            return bool(self.client.delete(self._key(key)))

    def delete_many(self, keys: List[str]) -> int:
        if not keys:
            return 0
        with _redis_errors():
            return int(self.client.delete(*[self._key(key) for key in keys]))

    def index_add(self, name: str, members: List[str]) -> int:
        if not members:
            return 0
        with _redis_errors():
            last = self.client.incrby(self._seq_key(name), len(members))
            first = last - len(members) + 1
            mapping = {member: first + i for i, member in enumerate(members)}
            # NX keeps the original position of members already present.
            return int(self.client.zadd(self._index_key(name), mapping, nx=True))

    def index_remove(self, name: str, members: List[str]) -> int:
        if not members:
            return 0
        with _redis_errors():
            return int(self.client.zrem(self._index_key(name), *members))

    def index_range(self, name: str, offset: int, limit: int) -> List[str]:
        if limit <= 0:
            return []
        with _redis_errors():
            return list(
                self.client.zrange(self._index_key(name), offset, offset + limit - 1)
            )

    def index_size(self, name: str) -> int:
        with _redis_errors():
            return int(self.client.zcard(self._index_key(name)))

    def index_clear(self, name: str) -> None:
        with _redis_errors():
            self.client.delete(self._index_key(name), self._seq_key(name))


@contextmanager
def _sql_errors() -> Iterator[None]:
    try:
        yield
    except OperationalError as exc:
        raise StorageUnavailableError(str(exc)) from exc


class SqlKeyValueStore:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlKeyValueStore")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def get(self, key: str) -> Optional[dict]:
        with _sql_errors(), self.Session() as session:
            row = session.get(EntryRow, key)
            return row.value if row else None

    def get_many(self, keys: List[str]) -> List[Optional[dict]]:
        if not keys:
            return []
        with _sql_errors(), self.Session() as session:
            rows = session.execute(
                select(EntryRow).where(EntryRow.key.in_(keys))
            ).scalars()
            by_key = {row.key: row.value for row in rows}
        return [by_key.get(key) for key in keys]

    def put(self, key: str, value: dict) -> None:
        with _sql_errors(), self.Session() as session:
            row = session.get(EntryRow, key)
            if row:
                row.value = value
            else:
                session.add(EntryRow(key=key, value=value))
            session.commit()

    def put_if_absent(self, key: str, value: dict) -> bool:
        with _sql_errors(), self.Session() as session:
            session.add(EntryRow(key=key, value=value))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
            return True

    def delete(self, key: str) -> bool:
        return self.delete_many([key]) > 0

    def delete_many(self, keys: List[str]) -> int:
        if not keys:
            return 0
        with _sql_errors(), self.Session() as session:
            result = session.execute(delete(EntryRow).where(EntryRow.key.in_(keys)))
            session.commit()
            return result.rowcount or 0

    def _existing_members(self, session: Session, name: str, members: Iterable[str]) -> set:
        stmt = select(IndexEntryRow.member).where(
            IndexEntryRow.index_name == name, IndexEntryRow.member.in_(list(members))
        )
        return set(session.execute(stmt).scalars())

    def index_add(self, name: str, members: List[str]) -> int:
        if not members:
            return 0
        with _sql_errors(), self.Session() as session:
            existing = self._existing_members(session, name, members)
            added = 0
            for member in members:
                if member in existing:
                    continue
                session.add(IndexEntryRow(index_name=name, member=member))
                existing.add(member)
                added += 1
            session.commit()
            return added

    def index_remove(self, name: str, members: List[str]) -> int:
        if not members:
            return 0
        with _sql_errors(), self.Session() as session:
            result = session.execute(
                delete(IndexEntryRow).where(
                    IndexEntryRow.index_name == name,
                    IndexEntryRow.member.in_(members),
                )
            )
            session.commit()
            return result.rowcount or 0

    def index_range(self, name: str, offset: int, limit: int) -> List[str]:
        if limit <= 0:
            return []
        with _sql_errors(), self.Session() as session:
            stmt = (
                select(IndexEntryRow.member)
                .where(IndexEntryRow.index_name == name)
                .order_by(IndexEntryRow.seq.asc())
                .offset(offset)
                .limit(limit)
            )
            return list(session.execute(stmt).scalars())

    def index_size(self, name: str) -> int:
        with _sql_errors(), self.Session() as session:
            stmt = select(func.count()).select_from(IndexEntryRow).where(
                IndexEntryRow.index_name == name
            )
            return int(session.execute(stmt).scalar_one())

    def index_clear(self, name: str) -> None:
        with _sql_errors(), self.Session() as session:
            session.execute(
                delete(IndexEntryRow).where(IndexEntryRow.index_name == name)
            )
            session.commit()


Base = declarative_base()


class EntryRow(Base):
    __tablename__ = "kv_entries"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=False)


class IndexEntryRow(Base):
    __tablename__ = "kv_index_entries"
    __table_args__ = (UniqueConstraint("index_name", "member"),)

    seq = Column(Integer, primary_key=True, autoincrement=True)
    index_name = Column(String, nullable=False, index=True)
    member = Column(String, nullable=False)

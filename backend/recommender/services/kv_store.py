"""Key-value backing stores for checkpoints and recommendations.

The pipeline only needs get / set / delete / list-keys-by-prefix, so the
storage medium is swappable: in-process dict, Redis, or any SQLAlchemy
database. Backends raise `KeyValueStoreError` for every failure of the
underlying medium so callers can degrade without knowing which one is wired.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Protocol

import redis
from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from recommender.core.db import create_db_engine, create_session_factory
from recommender.models.kv_entry import KeyValueEntry
from recommender.services.redis_client import get_redis

logger = logging.getLogger("openingrec.storage")


class KeyValueStoreError(RuntimeError):
    """Raised when the backing medium cannot complete an operation."""


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str) -> List[str]: ...


class MemoryKeyValueStore:
    """In-process store. State lives as long as the object."""

    def __init__(self, data: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = data if data is not None else {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str) -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class RedisKeyValueStore:
    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    def get(self, key: str) -> Optional[str]:
        try:
            raw = self._client.get(key)
        except redis.RedisError as e:
            raise KeyValueStoreError(f"redis get failed for {key!r}: {e}") from e
        if raw is None:
            return None
        return raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)

    def set(self, key: str, value: str) -> None:
        try:
            self._client.set(key, value)
        except redis.RedisError as e:
            raise KeyValueStoreError(f"redis set failed for {key!r}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as e:
            raise KeyValueStoreError(f"redis delete failed for {key!r}: {e}") from e

    def keys(self, prefix: str) -> List[str]:
        try:
            found = self._client.scan_iter(match=f"{prefix}*")
            return sorted(k.decode("utf-8") if isinstance(k, bytes) else str(k) for k in found)
        except redis.RedisError as e:
            raise KeyValueStoreError(f"redis scan failed for {prefix!r}: {e}") from e


class SqlKeyValueStore:
    """Key-value store on a single SQL table (`kv_entries`)."""

    def __init__(self, engine: Engine) -> None:
        self._session_factory = create_session_factory(engine)

    def get(self, key: str) -> Optional[str]:
        try:
            with self._session_factory() as session:
                record = session.get(KeyValueEntry, key)
                return record.value if record is not None else None
        except SQLAlchemyError as e:
            raise KeyValueStoreError(f"sql get failed for {key!r}: {e}") from e

    def set(self, key: str, value: str) -> None:
        try:
            with self._session_factory() as session:
                record = session.get(KeyValueEntry, key)
                if record is None:
                    session.add(KeyValueEntry(key=key, value=value))
                else:
                    record.value = value
                session.commit()
        except SQLAlchemyError as e:
            raise KeyValueStoreError(f"sql set failed for {key!r}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            with self._session_factory() as session:
                session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
                session.commit()
        except SQLAlchemyError as e:
            raise KeyValueStoreError(f"sql delete failed for {key!r}: {e}") from e

    def keys(self, prefix: str) -> List[str]:
        try:
            with self._session_factory() as session:
                rows = session.scalars(
                    select(KeyValueEntry.key)
                    .where(KeyValueEntry.key.startswith(prefix, autoescape=True))
                    .order_by(KeyValueEntry.key)
                )
                return list(rows)
        except SQLAlchemyError as e:
            raise KeyValueStoreError(f"sql scan failed for {prefix!r}: {e}") from e


def create_kv_store(url: str) -> KeyValueStore:
    """Pick a backend from a URL.

    - ``memory://`` -> MemoryKeyValueStore
    - ``redis://`` / ``rediss://`` / ``unix://`` -> RedisKeyValueStore
    - anything else is treated as a SQLAlchemy database URL
    """
    if url.startswith("memory://"):
        return MemoryKeyValueStore()
    if url.startswith(("redis://", "rediss://", "unix://")):
        logger.info("Using Redis key-value store")
        return RedisKeyValueStore(get_redis(url))
    logger.info("Using SQL key-value store")
    return SqlKeyValueStore(create_db_engine(url))

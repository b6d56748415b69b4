"""Key/value blob persistence backends for the ``games`` and ``shares`` tables."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Protocol

from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy import Column, DateTime, MetaData, String, Table, Text, delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from db import utils as db_utils
from library.errors import UpstreamError

logger = logging.getLogger(__name__)

GAMES_STORE = "games"
SHARES_STORE = "shares"
BLOB_STORES = (GAMES_STORE, SHARES_STORE)

BLOBS_TABLE = "blobs"

metadata = MetaData()

blobs_table = Table(
    BLOBS_TABLE,
    metadata,
    Column("store", String(32), primary_key=True),
    Column("blob_key", String(255), primary_key=True),
    Column("value", Text, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)


class BlobStore(Protocol):
    def get(self, store: str, key: str) -> str | None: ...

    def set(self, store: str, key: str, value: str) -> None: ...

    def delete(self, store: str, key: str) -> None: ...


def _check_store(store: str) -> None:
    if store not in BLOB_STORES:
        raise ValueError(f"unknown blob store: {store}")


class SQLBlobStore:
    """Blob store backed by a single SQL table keyed by ``(store, key)``."""

    def __init__(self, engine: db_utils.DatabaseEngine, *, create_schema: bool = True) -> None:
        self._engine = engine
        if create_schema:
            self.ensure_schema()

    def ensure_schema(self) -> None:
        try:
            metadata.create_all(self._engine.engine, tables=[blobs_table])
        except SQLAlchemyError as exc:
            logger.error("Failed to create %s table: %s", BLOBS_TABLE, exc)
            raise UpstreamError() from exc

    def get(self, store: str, key: str) -> str | None:
        _check_store(store)
        stmt = select(blobs_table.c.value).where(
            blobs_table.c.store == store, blobs_table.c.blob_key == key
        )
        try:
            with self._engine.sa_connection() as conn:
                return conn.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.error("Failed to read blob %s/%s: %s", store, key, exc)
            raise UpstreamError() from exc

    def set(self, store: str, key: str, value: str) -> None:
        _check_store(store)
        timestamp = datetime.now(timezone.utc)
        try:
            with self._engine.sa_connection() as conn:
                with conn.begin():
                    result = conn.execute(
                        update(blobs_table)
                        .where(blobs_table.c.store == store, blobs_table.c.blob_key == key)
                        .values(value=value, updated_at=timestamp)
                    )
                    if result.rowcount == 0:
                        conn.execute(
                            insert(blobs_table).values(
                                store=store, blob_key=key, value=value, updated_at=timestamp
                            )
                        )
        except SQLAlchemyError as exc:
            logger.error("Failed to write blob %s/%s: %s", store, key, exc)
            raise UpstreamError() from exc

    def delete(self, store: str, key: str) -> None:
        _check_store(store)
        try:
            with self._engine.sa_connection() as conn:
                with conn.begin():
                    conn.execute(
                        delete(blobs_table).where(
                            blobs_table.c.store == store, blobs_table.c.blob_key == key
                        )
                    )
        except SQLAlchemyError as exc:
            logger.error("Failed to delete blob %s/%s: %s", store, key, exc)
            raise UpstreamError() from exc


class RedisBlobStore:
    """Blob store keeping each blob under a ``<store>:<key>`` Redis string."""

    def __init__(self, client: Redis, *, prefix: str = "game_shelf") -> None:
        self._redis = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, **kwargs) -> 'RedisBlobStore':
        return cls(Redis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, store: str, key: str) -> str:
        _check_store(store)
        return f"{self._prefix}:{store}:{key}"

    def get(self, store: str, key: str) -> str | None:
        try:
            value = self._redis.get(self._key(store, key))
        except RedisError as exc:
            logger.error("Failed to read blob %s/%s: %s", store, key, exc)
            raise UpstreamError() from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, store: str, key: str, value: str) -> None:
        try:
            self._redis.set(self._key(store, key), value)
        except RedisError as exc:
            logger.error("Failed to write blob %s/%s: %s", store, key, exc)
            raise UpstreamError() from exc

    def delete(self, store: str, key: str) -> None:
        try:
            self._redis.delete(self._key(store, key))
        except RedisError as exc:
            logger.error("Failed to delete blob %s/%s: %s", store, key, exc)
            raise UpstreamError() from exc


def build_blob_store(backend: str, *, dsn: str, redis_url: str, timeout: float | None = None) -> BlobStore:
    """Return the configured blob store implementation."""

    if backend == "redis":
        logger.info("Using Redis blob store at %s", redis_url)
        return RedisBlobStore.from_url(redis_url)
    logger.info("Using SQL blob store")
    return SQLBlobStore(db_utils.build_engine_from_dsn(dsn, timeout=timeout))


__all__ = [
    "BLOB_STORES",
    "BlobStore",
    "GAMES_STORE",
    "RedisBlobStore",
    "SHARES_STORE",
    "SQLBlobStore",
    "blobs_table",
    "build_blob_store",
]

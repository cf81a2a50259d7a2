"""Key-value persistence for the settings record, activity logs and chunk records."""
import json
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from cogniflow.exceptions import ConfigurationError, StorageError
from cogniflow.models.job import Chunk, ProcessLog
from cogniflow.utils.logger import logger


class PersistenceBackend(ABC):
    """Interface for the three stores: settings, logs, chunks."""

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    async def get_settings(self) -> Optional[Dict[str, Any]]:
        """Return the stored settings record, or None if never saved."""

    @abstractmethod
    async def save_settings(self, settings: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def add_log(self, log: ProcessLog) -> None:
        pass

    @abstractmethod
    async def get_logs(self, limit: Optional[int] = None) -> List[ProcessLog]:
        """Return log records, newest first."""

    @abstractmethod
    async def save_chunk(self, chunk: Chunk) -> None:
        pass

    @abstractmethod
    async def get_chunks(self) -> List[Chunk]:
        """Return chunk records sorted by ascending id."""

    @abstractmethod
    async def clear_chunks(self) -> None:
        """Drop the chunk records of a previous job."""

    @abstractmethod
    async def clear_all(self) -> None:
        """Empty settings, logs and chunks in one step."""


class InMemoryPersistence(PersistenceBackend):
    """Process-local backend, used for tests and single-process runs."""

    def __init__(self):
        self._settings: Optional[Dict[str, Any]] = None
        self._logs: Dict[str, ProcessLog] = {}
        self._chunks: Dict[int, Chunk] = {}

    async def get_settings(self) -> Optional[Dict[str, Any]]:
        return dict(self._settings) if self._settings is not None else None

    async def save_settings(self, settings: Dict[str, Any]) -> None:
        self._settings = dict(settings)

    async def add_log(self, log: ProcessLog) -> None:
        self._logs[log.id] = log

    async def get_logs(self, limit: Optional[int] = None) -> List[ProcessLog]:
        logs = sorted(self._logs.values(), key=lambda log: log.timestamp, reverse=True)
        return logs[:limit] if limit is not None else logs

    async def save_chunk(self, chunk: Chunk) -> None:
        self._chunks[chunk.id] = chunk

    async def get_chunks(self) -> List[Chunk]:
        return [self._chunks[k] for k in sorted(self._chunks)]

    async def clear_chunks(self) -> None:
        self._chunks = {}

    async def clear_all(self) -> None:
        self._settings = None
        self._logs = {}
        self._chunks = {}


class RedisPersistence(PersistenceBackend):
    """
    Redis backend.

    Layout under ``<prefix>``:
        ``:settings``    string, JSON settings record
        ``:logs``        hash, log id -> JSON record
        ``:logs:index``  sorted set, log id scored by timestamp
        ``:chunks``      hash, chunk id -> JSON record
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0", key_prefix: str = "cogniflow"):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.redis_client: Optional[redis.Redis] = None

    @property
    def _settings_key(self) -> str:
        return f"{self.key_prefix}:settings"

    @property
    def _logs_key(self) -> str:
        return f"{self.key_prefix}:logs"

    @property
    def _logs_index_key(self) -> str:
        return f"{self.key_prefix}:logs:index"

    @property
    def _chunks_key(self) -> str:
        return f"{self.key_prefix}:chunks"

    @property
    def _client(self) -> redis.Redis:
        if self.redis_client is None:
            raise StorageError("Redis persistence is not open")
        return self.redis_client

    async def open(self) -> None:
        try:
            self.redis_client = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
            await self.redis_client.ping()
            logger.info(f"Redis persistence connected: {self.redis_url}")
        except RedisError as e:
            raise StorageError(f"Redis unavailable at {self.redis_url}: {str(e)}") from e

    async def close(self) -> None:
        if self.redis_client:
            try:
                await self.redis_client.aclose()
                logger.info("Redis persistence connection closed")
            except Exception as e:
                logger.warning(f"Error closing Redis connection: {str(e)}")
            self.redis_client = None

    async def get_settings(self) -> Optional[Dict[str, Any]]:
        try:
            raw = await self._client.get(self._settings_key)
        except RedisError as e:
            raise StorageError(f"Failed to read settings: {str(e)}") from e
        return json.loads(raw) if raw else None

    async def save_settings(self, settings: Dict[str, Any]) -> None:
        try:
            await self._client.set(self._settings_key, json.dumps(settings))
        except RedisError as e:
            raise StorageError(f"Failed to save settings: {str(e)}") from e

    async def add_log(self, log: ProcessLog) -> None:
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.hset(self._logs_key, log.id, log.model_dump_json())
                pipe.zadd(self._logs_index_key, {log.id: log.timestamp})
                await pipe.execute()
        except RedisError as e:
            raise StorageError(f"Failed to store log record: {str(e)}") from e

    async def get_logs(self, limit: Optional[int] = None) -> List[ProcessLog]:
        stop = limit - 1 if limit is not None else -1
        if stop < -1:
            return []
        try:
            ids = await self._client.zrevrange(self._logs_index_key, 0, stop)
            if not ids:
                return []
            records = await self._client.hmget(self._logs_key, ids)
        except RedisError as e:
            raise StorageError(f"Failed to read log records: {str(e)}") from e
        return [ProcessLog.model_validate_json(r) for r in records if r]

    async def save_chunk(self, chunk: Chunk) -> None:
        try:
            await self._client.hset(self._chunks_key, str(chunk.id), json.dumps(chunk.to_record()))
        except RedisError as e:
            raise StorageError(f"Failed to store chunk {chunk.id}: {str(e)}") from e

    async def get_chunks(self) -> List[Chunk]:
        try:
            records = await self._client.hvals(self._chunks_key)
        except RedisError as e:
            raise StorageError(f"Failed to read chunk records: {str(e)}") from e
        chunks = [Chunk.from_record(json.loads(r)) for r in records]
        return sorted(chunks, key=lambda c: c.id)

    async def clear_chunks(self) -> None:
        try:
            await self._client.delete(self._chunks_key)
        except RedisError as e:
            raise StorageError(f"Failed to clear chunk records: {str(e)}") from e

    async def clear_all(self) -> None:
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.delete(self._settings_key, self._logs_key, self._logs_index_key, self._chunks_key)
                await pipe.execute()
        except RedisError as e:
            raise StorageError(f"Failed to clear stored data: {str(e)}") from e


def create_persistence(backend: str, redis_url: str = "", key_prefix: str = "cogniflow") -> PersistenceBackend:
    backend = backend.lower()
    if backend == "memory":
        return InMemoryPersistence()
    if backend == "redis":
        return RedisPersistence(redis_url=redis_url, key_prefix=key_prefix)
    raise ConfigurationError(f"Unknown persistence backend: {backend}")


@asynccontextmanager
async def open_persistence(
    backend: str, redis_url: str = "", key_prefix: str = "cogniflow"
) -> AsyncIterator[PersistenceBackend]:
    """Open a backend for the duration of the block and close it afterwards."""
    store = create_persistence(backend, redis_url=redis_url, key_prefix=key_prefix)
    await store.open()
    try:
        yield store
    finally:
        await store.close()

"""Tests for persistence, settings and the activity log."""
import pytest
from unittest.mock import AsyncMock, Mock

from cogniflow.exceptions import ConfigurationError, StorageError
from cogniflow.models.job import Chunk, ChunkStatus, LogLevel, ProcessLog
from cogniflow.models.settings import AppSettings, merge_settings, resolve_credential
from cogniflow.services.activity_log import ActivityLog
from cogniflow.services.persistence import (
    InMemoryPersistence,
    RedisPersistence,
    create_persistence,
)
from cogniflow.services.settings_service import SettingsService


class TestInMemoryPersistence:
    """Tests for InMemoryPersistence."""

    @pytest.mark.asyncio
    async def test_logs_newest_first(self, persistence):
        for i, ts in enumerate([100, 300, 200]):
            await persistence.add_log(ProcessLog(id=f"log-{i}", timestamp=ts, level=LogLevel.INFO, message=str(ts)))

        logs = await persistence.get_logs()
        assert [log.timestamp for log in logs] == [300, 200, 100]
        assert [log.timestamp for log in await persistence.get_logs(limit=2)] == [300, 200]

    @pytest.mark.asyncio
    async def test_chunks_ascending(self, persistence):
        for chunk_id in [3, 1, 2]:
            await persistence.save_chunk(Chunk(id=chunk_id, source_text="s"))

        assert [c.id for c in await persistence.get_chunks()] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_save_chunk_replaces_by_id(self, persistence):
        await persistence.save_chunk(Chunk(id=1, source_text="s"))
        await persistence.save_chunk(Chunk(id=1, source_text="s", status=ChunkStatus.COMPLETED, result_text="r"))

        chunks = await persistence.get_chunks()
        assert len(chunks) == 1
        assert chunks[0].result_text == "r"

    @pytest.mark.asyncio
    async def test_clear_all(self, persistence):
        await persistence.save_settings({"temperature": 0.1})
        await persistence.add_log(ProcessLog(level=LogLevel.INFO, message="hello"))
        await persistence.save_chunk(Chunk(id=1, source_text="s"))

        await persistence.clear_all()

        assert await persistence.get_settings() is None
        assert await persistence.get_logs() == []
        assert await persistence.get_chunks() == []

    @pytest.mark.asyncio
    async def test_clear_chunks_keeps_settings(self, persistence):
        await persistence.save_settings({"temperature": 0.1})
        await persistence.save_chunk(Chunk(id=1, source_text="s"))

        await persistence.clear_chunks()

        assert await persistence.get_chunks() == []
        assert await persistence.get_settings() == {"temperature": 0.1}


class TestCreatePersistence:
    """Tests for create_persistence."""

    def test_memory(self):
        assert isinstance(create_persistence("memory"), InMemoryPersistence)

    def test_redis(self):
        backend = create_persistence("Redis", redis_url="redis://cache:6379/1", key_prefix="test")
        assert isinstance(backend, RedisPersistence)
        assert backend.redis_url == "redis://cache:6379/1"

    def test_unknown(self):
        with pytest.raises(ConfigurationError):
            create_persistence("sqlite")

    @pytest.mark.asyncio
    async def test_redis_not_open(self):
        with pytest.raises(StorageError):
            await RedisPersistence().get_settings()


class TestChunkRecord:
    """Tests for chunk record conversion."""

    def test_record_round_trip(self):
        chunk = Chunk(
            id=4,
            source_text="src",
            status=ChunkStatus.FAILED,
            error_message="boom",
            model_used="llama-3.3-70b",
        )
        assert Chunk.from_record(chunk.to_record()) == chunk


class TestSettings:
    """Tests for settings merge and validation."""

    def test_defaults(self):
        settings = AppSettings()
        assert settings.model_priority[0] == "zai-glm-4.6"
        assert settings.parallel_chunks == 5
        assert settings.batch_size == 12000
        assert settings.overlap_size == 500
        assert settings.max_output_tokens == 32768

    def test_merge_keeps_new_defaults(self):
        stored = {"temperature": 0.3, "unknown_old_field": True}
        merged = merge_settings(AppSettings(), stored)
        assert merged.temperature == 0.3
        assert merged.pdf_font_size == 12
        assert merged.max_retries == 3

    def test_merge_rejects_invalid(self):
        with pytest.raises(ConfigurationError):
            merge_settings(AppSettings(), {"overlap_size": 20000})

    def test_prompt_requires_placeholder(self):
        with pytest.raises(ConfigurationError):
            merge_settings(AppSettings(), {"text_transform_prompt": "no placeholder here"})

    def test_empty_model_priority(self):
        with pytest.raises(ConfigurationError):
            merge_settings(AppSettings(), {"model_priority": []})

    def test_resolve_credential_order(self):
        assert resolve_credential(["", None, " backup "]) == "backup"
        assert resolve_credential(["primary", "backup"]) == "primary"

    def test_resolve_credential_missing(self):
        with pytest.raises(ConfigurationError):
            resolve_credential(["", "  "])


class TestSettingsService:
    """Tests for SettingsService."""

    @pytest.mark.asyncio
    async def test_load_without_record_uses_defaults(self, persistence):
        service = SettingsService(persistence, defaults=AppSettings(api_key="env-key"))
        settings = await service.load()
        assert settings.api_key == "env-key"

    @pytest.mark.asyncio
    async def test_update_persists_merged_record(self, persistence):
        service = SettingsService(persistence)
        await service.load()

        updated = await service.update({"turbo_mode": False})

        assert updated.turbo_mode is False
        stored = await persistence.get_settings()
        assert stored["turbo_mode"] is False
        assert stored["batch_size"] == 12000

    @pytest.mark.asyncio
    async def test_invalid_update_leaves_current(self, persistence):
        service = SettingsService(persistence)
        await service.load()

        with pytest.raises(ConfigurationError):
            await service.update({"parallel_chunks": 0})

        assert service.current.parallel_chunks == 5
        assert await persistence.get_settings() is None

    @pytest.mark.asyncio
    async def test_unreadable_record_falls_back(self):
        backend = Mock(spec=InMemoryPersistence)
        backend.get_settings = AsyncMock(side_effect=StorageError("connection refused"))
        service = SettingsService(backend)

        settings = await service.load()
        assert settings == AppSettings()

    @pytest.mark.asyncio
    async def test_invalid_stored_record_falls_back(self, persistence):
        await persistence.save_settings({"batch_size": -1})
        service = SettingsService(persistence)

        settings = await service.load()
        assert settings.batch_size == 12000


class TestActivityLog:
    """Tests for ActivityLog."""

    @pytest.mark.asyncio
    async def test_records_are_persisted(self, activity, persistence):
        await activity.info("started")
        await activity.success("chunk done", model_used="qwen-3-32b", chunk_id=1)

        logs = await persistence.get_logs()
        assert {log.message for log in logs} == {"started", "chunk done"}
        success = next(log for log in logs if log.level == LogLevel.SUCCESS)
        assert success.model_used == "qwen-3-32b"

    @pytest.mark.asyncio
    async def test_storage_failure_does_not_raise(self):
        backend = Mock(spec=InMemoryPersistence)
        backend.add_log = AsyncMock(side_effect=StorageError("down"))
        activity = ActivityLog(backend)

        entry = await activity.error("something failed")
        assert entry.level == LogLevel.ERROR

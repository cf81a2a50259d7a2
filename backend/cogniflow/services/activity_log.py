"""User-facing activity log, persisted and mirrored to the process logger."""
import logging
from typing import List, Optional

from cogniflow.exceptions import StorageError
from cogniflow.models.job import LogLevel, ProcessLog
from cogniflow.services.persistence import PersistenceBackend
from cogniflow.utils.logger import logger

_LOGGING_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class ActivityLog:
    """Append-only activity records for the current installation."""

    def __init__(self, persistence: PersistenceBackend):
        self.persistence = persistence

    async def record(self, level: LogLevel, message: str, model_used: Optional[str] = None, **extra) -> ProcessLog:
        """
        Store one activity record.

        A storage failure is logged and does not interrupt the caller; the
        record is still returned.
        """
        entry = ProcessLog(level=level, message=message, model_used=model_used)
        if model_used:
            extra["model_used"] = model_used
        logger.log(_LOGGING_LEVELS[level], message, extra=extra)

        try:
            await self.persistence.add_log(entry)
        except StorageError as e:
            logger.warning(f"Could not persist activity record: {str(e)}")
        return entry

    async def info(self, message: str, **extra) -> ProcessLog:
        return await self.record(LogLevel.INFO, message, **extra)

    async def success(self, message: str, model_used: Optional[str] = None, **extra) -> ProcessLog:
        return await self.record(LogLevel.SUCCESS, message, model_used=model_used, **extra)

    async def warn(self, message: str, **extra) -> ProcessLog:
        return await self.record(LogLevel.WARN, message, **extra)

    async def error(self, message: str, **extra) -> ProcessLog:
        return await self.record(LogLevel.ERROR, message, **extra)

    async def recent(self, limit: Optional[int] = None) -> List[ProcessLog]:
        """Records sorted newest first."""
        return await self.persistence.get_logs(limit)

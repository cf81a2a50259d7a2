"""Load, merge and save the user settings record."""
from typing import Any, Dict, Optional

from cogniflow.exceptions import ConfigurationError, StorageError
from cogniflow.models.settings import AppSettings, merge_settings
from cogniflow.services.persistence import PersistenceBackend
from cogniflow.utils.logger import logger


class SettingsService:
    """Keeps the current settings in sync with persistence."""

    def __init__(self, persistence: PersistenceBackend, defaults: Optional[AppSettings] = None):
        """
        Args:
            persistence: Backend holding the settings record
            defaults: Built-in defaults; stored values are laid over them
        """
        self.persistence = persistence
        self.defaults = defaults or AppSettings()
        self._current: Optional[AppSettings] = None

    @property
    def current(self) -> AppSettings:
        return self._current or self.defaults

    async def load(self) -> AppSettings:
        """
        Read the stored record and merge it over the defaults.

        Falls back to the defaults if the record cannot be read or no longer
        validates.
        """
        try:
            stored = await self.persistence.get_settings()
            self._current = merge_settings(self.defaults, stored)
        except (StorageError, ConfigurationError, ValueError) as e:
            logger.error(f"Failed to load stored settings, falling back to defaults: {str(e)}")
            self._current = self.defaults
        return self._current

    async def update(self, changes: Dict[str, Any]) -> AppSettings:
        """
        Apply a partial update and persist the result.

        Raises:
            ConfigurationError: If the updated record is invalid
        """
        updated = merge_settings(self.current, changes)
        await self.persistence.save_settings(updated.model_dump())
        self._current = updated
        logger.info(f"Settings updated: {', '.join(sorted(changes)) or 'no fields'}")
        return updated

    def reset_to_defaults(self) -> AppSettings:
        self._current = self.defaults
        return self._current

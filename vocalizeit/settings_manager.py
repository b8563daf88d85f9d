"""
Settings Controller

Reads and updates the app settings record (snooze duration, theme).
Updates are merged onto the current values, validated and persisted
immediately.
"""

from vocalizeit.errors import ValidationError
from vocalizeit.logger import get_logger
from vocalizeit.models import SNOOZE_OPTIONS, THEMES, AppSettings
from vocalizeit.store import ReminderStore


_FIELDS = {
    "snoozeDuration": "snooze_duration",
    "snooze_duration": "snooze_duration",
    "theme": "theme",
}


def validate_settings(settings: AppSettings):
    snooze = settings.snooze_duration
    if isinstance(snooze, bool) or not isinstance(snooze, int) or snooze <= 0:
        raise ValidationError(f"snoozeDuration must be a positive integer, got {snooze!r}")
    if settings.theme not in THEMES:
        raise ValidationError(f"theme must be one of {', '.join(THEMES)}, got {settings.theme!r}")


class SettingsManager:
    def __init__(self, config, store: ReminderStore):
        self.config = config
        self.store = store
        self.logger = get_logger(__name__, config)

    def get(self) -> AppSettings:
        return self.store.get_settings()

    def set(self, **patch) -> AppSettings:
        """Merge ``patch`` onto the current settings and persist.

        Accepts both the persisted key names (``snoozeDuration``) and the
        attribute names (``snooze_duration``).
        """
        changes = {}
        for key, value in patch.items():
            if key not in _FIELDS:
                raise ValidationError(f"Unknown setting: {key}")
            changes[_FIELDS[key]] = value

        updated = AppSettings(**{**vars(self.get()), **changes})
        validate_settings(updated)
        self.store.save_settings(updated)
        self.logger.info(f"Settings updated: {updated.to_dict()}")
        return updated

    def snooze_minutes(self) -> int:
        return self.get().snooze_duration

    @staticmethod
    def snooze_options():
        """Snooze durations offered in the UI, in minutes."""
        return list(SNOOZE_OPTIONS)

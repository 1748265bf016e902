"""
Settings Manager for rc2docker
Manages application settings stored in JSON file
"""

import json
import os
import logging
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class BackupFrequency(Enum):
    HOURLY = 'hourly'
    DAILY = 'daily'
    WEEKLY = 'weekly'

    @property
    def interval(self) -> int:
        """Seconds between backups"""
        return {'hourly': 3600, 'daily': 86400, 'weekly': 604800}[self.value]


DEFAULT_SETTINGS: Dict[str, Any] = {
    'docker_socket_path': '',
    'api_version': '1.27',
    'request_timeout': 60,
    'image_info_base_url': 'https://www.rc2.io/',
    'image_update_interval': 86400,
    'cached_image_info': None,
    'last_image_info_check': 0,
    'remove_old_images': False,
    'backup_frequency': BackupFrequency.DAILY.value,
    'log_level': 'INFO',
    'container_start_timeout': 90,
    'db_connect_attempts': 10,
    'db_connect_delay': 3,
    'event_monitor_reconnect_attempts': 5,
}


class SettingsManager:
    """Manager for application settings"""

    # User settings file location
    @staticmethod
    def get_user_settings_path() -> str:
        """Get path to user settings file"""
        if os.name == 'nt':  # Windows
            base_dir = os.environ.get('APPDATA', os.path.expanduser('~'))
            data_dir = os.path.join(base_dir, 'rc2docker')
        else:  # macOS, Linux
            data_dir = os.path.join(
                os.environ.get('XDG_DATA_HOME', os.path.expanduser('~/.local/share')),
                'rc2docker'
            )

        os.makedirs(data_dir, exist_ok=True)
        return os.path.join(data_dir, 'settings.json')

    def __init__(self, settings_file: Optional[str] = None):
        """
        Initialize settings manager

        Args:
            settings_file: Settings file to use instead of the per-user one
        """
        self.settings_file = settings_file or self.get_user_settings_path()
        self.settings: Dict[str, Any] = {}

        # Load settings
        self.load()

    def load(self):
        """Load settings from user file"""
        self.settings = DEFAULT_SETTINGS.copy()
        if not os.path.exists(self.settings_file):
            logger.info('Using default settings')
            self.save()
            return

        try:
            with open(self.settings_file, 'r', encoding='utf-8') as f:
                loaded_settings = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error loading settings: {e}")
            return

        if isinstance(loaded_settings, dict):
            # user settings override defaults
            self.settings.update(loaded_settings)
            logger.info(f"Settings loaded from {self.settings_file}")
        else:
            logger.error(f"Ignoring malformed settings file {self.settings_file}")

    def save(self) -> bool:
        """Save settings to file"""
        try:
            with open(self.settings_file, 'w', encoding='utf-8') as f:
                json.dump(self.settings, f, indent=4, ensure_ascii=False)

            logger.debug(f"Settings saved to {self.settings_file}")
            return True

        except OSError as e:
            logger.error(f"Error saving settings: {e}")
            return False

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get setting value

        Args:
            key: Setting key
            default: Default value if key not found

        Returns:
            Setting value
        """
        return self.settings.get(key, default)

    def set(self, key: str, value: Any, save: bool = True):
        """
        Set setting value

        Args:
            key: Setting key
            value: Setting value
            save: Save to file immediately
        """
        self.settings[key] = value

        if save:
            self.save()

    def update(self, settings_dict: Dict[str, Any], save: bool = True):
        """
        Update multiple settings

        Args:
            settings_dict: Dictionary of settings to update
            save: Save to file immediately
        """
        self.settings.update(settings_dict)

        if save:
            self.save()

    def reset_to_defaults(self, save: bool = True):
        """Reset all settings to defaults"""
        self.settings = DEFAULT_SETTINGS.copy()

        if save:
            self.save()
            logger.info('Settings reset to defaults')

    def get_all(self) -> Dict[str, Any]:
        """Get all settings"""
        return self.settings.copy()

    @property
    def backup_frequency(self) -> BackupFrequency:
        try:
            return BackupFrequency(self.get('backup_frequency'))
        except ValueError:
            logger.warning(f"Unknown backup frequency {self.get('backup_frequency')!r}, using daily")
            return BackupFrequency.DAILY

"""
Tests for SettingsManager
"""

import json

from rc2docker.settings_manager import BackupFrequency, SettingsManager


class TestSettingsManager:
    """Tests for loading and saving settings"""

    def test_defaults_written(self, tmp_path):
        path = tmp_path / 'settings.json'
        settings = SettingsManager(settings_file=str(path))
        assert settings.get('api_version') == '1.27'
        assert settings.get('container_start_timeout') == 90
        assert json.loads(path.read_text())['db_connect_attempts'] == 10

    def test_user_values_override(self, tmp_path):
        path = tmp_path / 'settings.json'
        path.write_text(json.dumps({'log_level': 'DEBUG'}))
        settings = SettingsManager(settings_file=str(path))
        assert settings.get('log_level') == 'DEBUG'
        assert settings.get('image_update_interval') == 86400

    def test_corrupt_file_uses_defaults(self, tmp_path):
        path = tmp_path / 'settings.json'
        path.write_text('{not json')
        settings = SettingsManager(settings_file=str(path))
        assert settings.get('api_version') == '1.27'

    def test_set_persists(self, settings):
        settings.set('remove_old_images', True)
        assert SettingsManager(settings_file=settings.settings_file).get('remove_old_images') is True

    def test_update_and_reset(self, settings):
        settings.update({'db_connect_delay': 1, 'backup_frequency': 'weekly'})
        assert settings.backup_frequency == BackupFrequency.WEEKLY
        settings.reset_to_defaults()
        assert settings.get_all()['db_connect_delay'] == 3

    def test_unknown_backup_frequency(self, settings):
        settings.set('backup_frequency', 'yearly', save=False)
        assert settings.backup_frequency == BackupFrequency.DAILY
        assert BackupFrequency.HOURLY.interval == 3600

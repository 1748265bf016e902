"""
Background threads for async Docker operations
"""

import logging
import os
from datetime import datetime
from PyQt6.QtCore import QObject, QThread, QTimer, pyqtSignal

from ..docker_api.containers import ContainerOperation, ContainerState
from ..docker_api.exceptions import DockerException

logger = logging.getLogger(__name__)


class StartupThread(QThread):
    """Thread running the full startup sequence"""
    log_signal = pyqtSignal(str)
    progress_signal = pyqtSignal(int)
    pull_progress_signal = pyqtSignal(int, int)  # current_size, est_size
    finished_signal = pyqtSignal(bool, str)

    def __init__(self, docker_manager, refresh: bool = False, start_containers: bool = True):
        super().__init__()
        self.docker_manager = docker_manager
        self.refresh = refresh
        self.start_containers = start_containers

    def _pull_progress(self, progress):
        self.pull_progress_signal.emit(progress.current_size, progress.est_size)

    def run(self):
        """Run startup"""
        try:
            self.log_signal.emit('Connecting to Docker...')
            self.progress_signal.emit(5)
            pull_needed = self.docker_manager.initialize(refresh=self.refresh)

            if pull_needed:
                self.log_signal.emit('Downloading images...')
                self.progress_signal.emit(10)
                self.docker_manager.pull_images(self._pull_progress)

            self.log_signal.emit('Preparing containers...')
            self.progress_signal.emit(70)
            self.docker_manager.prepare_containers()

            if self.start_containers:
                self.log_signal.emit('Starting containers...')
                self.progress_signal.emit(80)
                self.docker_manager.perform(ContainerOperation.START)
                self.docker_manager.wait_until_running()

                self.log_signal.emit('Waiting for database...')
                self.progress_signal.emit(90)
                self.docker_manager.wait_until_db_running()

            self.progress_signal.emit(100)
            self.finished_signal.emit(True, 'Docker is ready')

        except DockerException as e:
            logger.error(f"Startup error: {e}")
            self.log_signal.emit(f"ERROR: {e}")
            self.finished_signal.emit(False, str(e))


class BackupThread(QThread):
    """Thread for database backups"""
    finished_signal = pyqtSignal(bool, str)  # Success, message

    def __init__(self, docker_manager, path: str):
        super().__init__()
        self.docker_manager = docker_manager
        self.path = path

    def run(self):
        """Run backup"""
        try:
            self.docker_manager.backup_database(self.path)
            self.finished_signal.emit(True, self.path)
        except DockerException as e:
            logger.error(f"Backup error: {e}")
            self.finished_signal.emit(False, str(e))


class ContainerOperationThread(QThread):
    """Thread for container operations (start, stop, restart, pause, unpause)"""
    status_signal = pyqtSignal(str)
    finished_signal = pyqtSignal(bool, str)  # Success, message

    def __init__(self, docker_manager, operation: ContainerOperation, containers=None):
        super().__init__()
        self.docker_manager = docker_manager
        self.operation = operation
        self.containers = containers

    def run(self):
        """Run container operation"""
        try:
            self.status_signal.emit(f"{self.operation.value}...")
            self.docker_manager.perform(self.operation, self.containers)
            self.finished_signal.emit(True, self.operation.value)
        except DockerException as e:
            logger.error(f"Container operation error: {e}")
            self.finished_signal.emit(False, str(e))


class ContainerStateBridge(QObject):
    """Re-emits container state changes as a Qt signal"""
    state_changed = pyqtSignal(str, str)  # container name, state

    def __init__(self, containers, parent=None):
        super().__init__(parent)
        self.containers = list(containers)
        for container in self.containers:
            container.add_listener(self._on_state)

    def _on_state(self, container, state: ContainerState):
        self.state_changed.emit(container.name, state.value)

    def disconnect_containers(self):
        for container in self.containers:
            container.remove_listener(self._on_state)
        self.containers = []


class BackupScheduler(QObject):
    """Runs database backups at the frequency chosen in settings"""
    backup_finished = pyqtSignal(bool, str)  # Success, path or error

    def __init__(self, docker_manager, settings, backup_dir: str, parent=None):
        """
        Initialize backup scheduler

        Args:
            docker_manager: DockerManager used for the dumps
            settings: SettingsManager holding backup_frequency
            backup_dir: Directory the dumps are written to
            parent: Parent QObject
        """
        super().__init__(parent)
        self.docker_manager = docker_manager
        self.settings = settings
        self.backup_dir = backup_dir
        self.backup_thread = None
        self.timer = QTimer(self)
        self.timer.timeout.connect(self.run_backup)

    def start(self):
        """Start or restart the timer with the current frequency"""
        frequency = self.settings.backup_frequency
        self.timer.start(frequency.interval * 1000)
        logger.info(f"Scheduled {frequency.value} database backups to {self.backup_dir}")

    def stop(self):
        self.timer.stop()

    def backup_path(self) -> str:
        stamp = datetime.now().strftime('%Y%m%d-%H%M%S')
        return os.path.join(self.backup_dir, f"rc2-{stamp}.sql")

    def run_backup(self):
        """Start a backup unless one is still running"""
        if self.backup_thread is not None and self.backup_thread.isRunning():
            logger.info('Previous backup still running, skipping')
            return
        try:
            os.makedirs(self.backup_dir, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create backup directory {self.backup_dir}: {e}")
            self.backup_finished.emit(False, str(e))
            return
        self.backup_thread = BackupThread(self.docker_manager, self.backup_path())
        self.backup_thread.finished_signal.connect(self.backup_finished)
        self.backup_thread.start()

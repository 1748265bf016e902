"""
Docker Manager - sets up and supervises the application's containers
"""

import json
import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from enum import IntEnum
from typing import Callable, Dict, List, Optional

from .docker_api.client import DockerClient
from .docker_api.containers import Container, ContainerOperation, ContainerState, ContainerType
from .docker_api.event_monitor import EventMonitor, EventMonitorDelegate
from .docker_api.events import ContainerAction, Event, EventType, ImageAction
from .docker_api.exceptions import (
    Conflict, ContainerTimeout, DatabaseNotReady, DockerException, DockerManagerError, InvalidJson,
    NetworkError, UnsupportedDockerVersion,
)
from .docker_api.images import DockerImage, RequiredImageInfo
from .docker_api.pull import PullOperation, PullProgress, ProgressCallback, pull_all
from .docker_api.version import DockerVersion
from .settings_manager import SettingsManager

logger = logging.getLogger(__name__)

RESOURCES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'resources')


class ManagerState(IntEnum):
    UNKNOWN = 0
    INITIALIZED = 1
    READY = 2


def load_resource(name: str):
    """Load a bundled JSON resource"""
    with open(os.path.join(RESOURCES_DIR, name), 'r', encoding='utf-8') as f:
        return json.load(f)


class DockerManager(EventMonitorDelegate):
    """
    Docker container management

    All methods block; call them from a worker thread. Container state is
    only written through update_container_state().
    """

    NETWORK_NAME = 'rc2server'
    VOLUME_NAMES = ('rc2_dbdata', 'rc2_userlib')
    REQUIRED_API_VERSION = 1.24
    # an event stream open this long resets the reconnect backoff
    MONITOR_STABLE_TIME = 60
    DB_CHECK_COMMAND = ['psql', '-Urc2', '-c', 'select * from metadata', 'rc2']
    BACKUP_COMMAND = ['/usr/bin/pg_dump', 'rc2']

    def __init__(self, settings: Optional[SettingsManager] = None,
                 client: Optional[DockerClient] = None,
                 event_monitor_class=EventMonitor,
                 pull_operation_class=PullOperation,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic,
                 now: Callable[[], float] = time.time):
        """
        Initialize Docker manager

        Args:
            settings: Settings to use (default: per-user settings file)
            client: Docker client (default: built from settings)
            event_monitor_class: Factory for the event monitor
            pull_operation_class: Factory for image pulls
            sleep: Delay function for retries
            clock: Monotonic time source for pull throttling
            now: Wall clock used for the image manifest update interval
        """
        self.settings = settings or SettingsManager()
        self.client = client or DockerClient(
            base_url=self.settings.get('docker_socket_path') or None,
            timeout=self.settings.get('request_timeout', 60),
            api_version=self.settings.get('api_version', '1.27'),
        )
        self.event_monitor_class = event_monitor_class
        self.pull_operation_class = pull_operation_class
        self.sleep = sleep
        self.clock = clock
        self.now = now
        self._lock = threading.RLock()
        self._initializing = False
        self._reconnect_timer: Optional[threading.Timer] = None
        self._reconnect_attempt = 0
        self._monitor_started: Optional[float] = None
        self._shutdown = False

        self.state = ManagerState.UNKNOWN
        self.version_info: Optional[DockerVersion] = None
        self.installed_images: List[DockerImage] = []
        self.event_monitor: Optional[EventMonitor] = None
        self.image_info = self._load_image_info()
        self.containers: Dict[ContainerType, Container] = {
            c.type: c for c in Container.from_create_info_json(load_resource('dockerInfo.json'))
        }
        self._inject_image_tags()

    # -- state ---------------------------------------------------------------

    def update_container_state(self, container: Container, state: ContainerState):
        """Single entry point for container state writes"""
        with self._lock:
            container.update(state)

    def _merge_containers(self, new_containers: List[Container]):
        """Copy daemon values into our containers; missing ones become unavailable"""
        loaded = {c.type: c for c in new_containers}
        with self._lock:
            for container_type, container in self.containers.items():
                fresh = loaded.get(container_type)
                if fresh is not None:
                    container.update_from(fresh)
                else:
                    container.id = ''
                    container.image_id = ''
                    container.update(ContainerState.NOT_AVAILABLE)

    def refresh_containers(self):
        """Resynchronize container state with the daemon"""
        self._merge_containers(self.client.refresh_containers())

    # -- initialization ------------------------------------------------------

    def initialize(self, refresh: bool = False) -> bool:
        """
        Connect to the daemon and make sure the basics are in place

        Args:
            refresh: Discard cached version and image info first

        Returns:
            True if images need to be pulled

        Raises:
            DockerManagerError: If any step fails
        """
        with self._lock:
            if refresh and not self._initializing:
                self.state = ManagerState.UNKNOWN
                self.version_info = None
            if self._initializing or (self.state >= ManagerState.INITIALIZED and self.version_info):
                logger.debug('Docker manager already initialized')
                return True
            self._initializing = True

        try:
            version = self.client.version()
            self._verify_version(version)
            with self._lock:
                self.version_info = version
                self.state = ManagerState.INITIALIZED
            self._start_event_monitor()
            self._validate_network()
            self._validate_volumes()
            self.refresh_containers()
            self.installed_images = self.client.load_images()
            self.check_for_image_update(force_refresh=refresh)
            return self.pull_is_necessary()
        except DockerException as e:
            logger.error(f"Docker initialization failed: {e}")
            with self._lock:
                self.state = ManagerState.UNKNOWN
                self.version_info = None
            self._stop_event_monitor()
            raise DockerManagerError('Failed to initialize Docker', e) from e
        finally:
            with self._lock:
                self._initializing = False

    def _verify_version(self, version: DockerVersion):
        logger.info(f"Docker {version}, API {version.api_version}")
        if version.api_version < self.REQUIRED_API_VERSION:
            raise UnsupportedDockerVersion(
                f"Docker API {version.api_version} is older than {self.REQUIRED_API_VERSION}")

    def _validate_network(self):
        if not self.client.network_exists(self.NETWORK_NAME):
            self.client.create_network(self.NETWORK_NAME)

    def _validate_volume(self, name: str):
        if not self.client.volume_exists(name):
            self.client.create_volume(name)

    def _validate_volumes(self):
        with ThreadPoolExecutor(max_workers=len(self.VOLUME_NAMES)) as executor:
            futures = [executor.submit(self._validate_volume, name) for name in self.VOLUME_NAMES]
            for future in futures:
                future.result()

    # -- images --------------------------------------------------------------

    def _load_image_info(self) -> RequiredImageInfo:
        bundled = RequiredImageInfo.from_json(load_resource('imageInfo.json'))
        cached = self.settings.get('cached_image_info')
        if cached:
            try:
                info = RequiredImageInfo.from_json(cached)
                if info.newer_than(bundled):
                    return info
            except InvalidJson as e:
                logger.warning(f"Ignoring cached image info: {e}")
        return bundled

    def _inject_image_tags(self):
        for container_type, container in self.containers.items():
            container.inject_image_tag(self.image_info[container_type].full_name)

    @property
    def should_check_for_update(self) -> bool:
        last_check = self.settings.get('last_image_info_check', 0) or 0
        return self.now() - last_check >= self.settings.get('image_update_interval', 86400)

    def check_for_image_update(self, force_refresh: bool = False) -> bool:
        """
        Fetch the published image manifest if it is time to

        Args:
            force_refresh: Ignore the update interval

        Returns:
            True if a newer manifest was found and containers need preparing
        """
        if not force_refresh and not self.should_check_for_update:
            logger.info('Skipping image info check')
            return False
        url = f"{self.settings.get('image_info_base_url')}imageInfo.json"
        try:
            data = self.client.fetch_json(url)
            self.settings.set('last_image_info_check', self.now())
            info = RequiredImageInfo.from_json(data)
        except (NetworkError, InvalidJson) as e:
            logger.warning(f"Image info check failed: {e}")
            return False
        if not info.newer_than(self.image_info):
            logger.debug('Published image info is not newer')
            return False
        logger.info(f"Updated image info to {info.timestamp_string}")
        self.image_info = info
        self.settings.set('cached_image_info', info.to_json())
        self._inject_image_tags()
        return True

    def pull_is_necessary(self) -> bool:
        """True if a required image is not installed"""
        for info in self.image_info:
            if not any(image.is_named(info.tag) for image in self.installed_images):
                logger.info(f"Pull needed for {info.tag}")
                return True
        logger.info('No pull necessary')
        return False

    def pull_images(self, progress_callback: Optional[ProgressCallback] = None) -> PullProgress:
        """
        Pull the required images not used by the current containers

        Args:
            progress_callback: Receives aggregated progress named 'all'

        Returns:
            Final aggregated progress

        Raises:
            DockerManagerError: If a pull fails
        """
        images = [info for info in self.image_info
                  if info.id != self.containers[ContainerType(info.name)].image_id]
        logger.info(f"Pulling {len(images)} images")
        try:
            return pull_all(self.client.http, images, progress_callback, clock=self.clock,
                            operation_factory=self.pull_operation_class)
        except DockerException as e:
            raise DockerManagerError('Failed to pull images', e) from e

    # -- containers ----------------------------------------------------------

    def prepare_containers(self):
        """
        Bring the daemon's containers in line with the required images

        Outdated containers are removed and missing ones created.

        Raises:
            DockerManagerError: If any step fails
        """
        try:
            self.refresh_containers()
            self._inject_image_tags()
            self._remove_outdated_containers()
            self._create_unavailable()
        except DockerException as e:
            raise DockerManagerError('Failed to prepare containers', e) from e
        with self._lock:
            self.state = ManagerState.READY
        if self.settings.get('remove_old_images', False):
            self.remove_old_images()

    def remove_old_images(self):
        """Remove installed application images the manifest no longer requires"""
        required = {info.id for info in self.image_info}
        for image in self.installed_images:
            if image.id in required:
                continue
            try:
                self.client.remove_image(image)
            except Conflict as e:
                # still used by a container outside our control
                logger.warning(f"Could not remove image {image.id}: {e}")
            except DockerException as e:
                logger.error(f"Failed to remove image {image.id}: {e}")
        self.installed_images = [image for image in self.installed_images if image.id in required]

    def _remove_outdated_containers(self):
        for container in self.containers.values():
            image = self.image_info[container.type]
            if container.state == ContainerState.NOT_AVAILABLE or image.id == container.image_id:
                continue
            logger.info(f"Outdated image for {container.name}")
            if container.state == ContainerState.RUNNING:
                self.client.perform(ContainerOperation.STOP, container)
                self.update_container_state(container, ContainerState.EXITED)
            self.client.remove_container(container)
            self.update_container_state(container, ContainerState.NOT_AVAILABLE)

    def _create_unavailable(self):
        for container in self.containers.values():
            if container.state != ContainerState.NOT_AVAILABLE:
                continue
            container.id = self.client.create_container(container)
            container.image_id = self.image_info[container.type].id
            self.update_container_state(container, ContainerState.CREATED)

    def perform(self, operation: ContainerOperation, containers: Optional[List[Container]] = None):
        """
        Perform an operation on containers

        Args:
            operation: Operation to perform
            containers: Containers to use (default: all)

        Raises:
            DockerManagerError: If an operation fails
        """
        selected = containers if containers is not None else list(self.containers.values())
        for container in selected:
            try:
                self.client.perform(operation, container)
            except DockerException as e:
                raise DockerManagerError(f"Failed to {operation.value} {container.name}", e) from e
            if operation == ContainerOperation.START:
                self.update_container_state(container, ContainerState.RUNNING)

    def wait_until_running(self, timeout: Optional[float] = None):
        """
        Block until all containers are running

        Args:
            timeout: Seconds to wait for all containers together

        Raises:
            DockerManagerError: Wrapping ContainerTimeout if the time runs out
        """
        if timeout is None:
            timeout = self.settings.get('container_start_timeout', 90)
        waiting = [c for c in self.containers.values() if c.state != ContainerState.RUNNING]
        if not waiting:
            return
        # first RUNNING per container, later changes do not undo it
        started = {c.type: threading.Event() for c in waiting}

        def on_state(container: Container, state: ContainerState):
            if state == ContainerState.RUNNING and container.type in started:
                started[container.type].set()

        for container in waiting:
            container.add_listener(on_state)
            if container.state == ContainerState.RUNNING:
                started[container.type].set()
        try:
            deadline = time.monotonic() + timeout
            for container in waiting:
                if not started[container.type].wait(max(0.0, deadline - time.monotonic())):
                    error = ContainerTimeout(f"Timed out waiting for {container.name} to start")
                    raise DockerManagerError('Containers did not start', error) from error
        finally:
            for container in waiting:
                container.remove_listener(on_state)

    # -- database ------------------------------------------------------------

    def check_database(self, attempts: Optional[int] = None):
        """
        Probe the database until it answers

        Args:
            attempts: Number of probes (default from settings)

        Raises:
            DockerManagerError: Wrapping DatabaseNotReady after the last attempt
        """
        if attempts is None:
            attempts = self.settings.get('db_connect_attempts', 10)
        delay = self.settings.get('db_connect_delay', 3)
        container = self.containers[ContainerType.DBSERVER]
        for attempt in range(1, attempts + 1):
            logger.debug(f"Database check attempt {attempt}")
            try:
                exit_code, _ = self.client.execute(self.DB_CHECK_COMMAND, container)
                if exit_code == 0:
                    logger.info('Database is running')
                    return
                logger.debug(f"Database check exited with {exit_code}")
            except DockerException as e:
                logger.debug(f"Database check failed: {e}")
            if attempt < attempts:
                self.sleep(delay)
        error = DatabaseNotReady("Database didn't start")
        raise DockerManagerError('Database is not available', error) from error

    wait_until_db_running = check_database

    def backup_database(self, path: str):
        """
        Dump the database to a file

        Raises:
            DockerManagerError: If the dump or the write fails
        """
        container = self.containers[ContainerType.DBSERVER]
        try:
            data = self.client.execute_sync(self.BACKUP_COMMAND, container)
        except DockerException as e:
            raise DockerManagerError('Database backup failed', e) from e
        try:
            with open(path, 'wb') as f:
                f.write(data)
        except OSError as e:
            raise DockerManagerError(f"Failed to write backup to {path}", e) from e
        logger.info(f"Database backed up to {path}")

    def fetch_log(self, container_type: ContainerType) -> str:
        """Get the log of one container"""
        try:
            return self.client.fetch_log(self.containers[container_type])
        except DockerException as e:
            raise DockerManagerError(f"Failed to fetch log for {container_type.value}", e) from e

    # -- events --------------------------------------------------------------

    def _start_event_monitor(self):
        self._stop_event_monitor()
        try:
            self.event_monitor = self.event_monitor_class(self.client.http, self)
            self._monitor_started = self.clock()
        except DockerException as e:
            logger.error(f"Failed to open event monitor: {e}")
            self.event_monitor = None

    def _stop_event_monitor(self):
        monitor, self.event_monitor = self.event_monitor, None
        if monitor is not None:
            monitor.close()

    def handle_event(self, event: Event):
        if event.type == EventType.CONTAINER:
            self._handle_container_event(event)
        elif event.type == EventType.IMAGE and event.action == ImageAction.DELETE:
            logger.error(f"Image deleted: {event.id}")
        else:
            logger.debug(f"Unhandled event {event}")

    def _handle_container_event(self, event: Event):
        container_type = ContainerType.from_container_name(event.attributes.get('name', ''))
        if container_type is None:
            container_type = ContainerType.from_image_name(event.attributes.get('image', ''))
        if container_type is None:
            return
        container = self.containers[container_type]

        if event.action == ContainerAction.DIE:
            exit_code = event.attributes.get('exitCode', '0')
            if exit_code != '0':
                logger.warning(f"{container.name} died with exit code {exit_code}")
            else:
                logger.warning(f"{container.name} died")
            self.update_container_state(container, ContainerState.EXITED)
        elif event.action in (ContainerAction.START, ContainerAction.UNPAUSE):
            self.update_container_state(container, ContainerState.RUNNING)
        elif event.action == ContainerAction.PAUSE:
            self.update_container_state(container, ContainerState.PAUSED)
        elif event.action == ContainerAction.DESTROY:
            logger.error(f"{container.name} was destroyed")

    def event_monitor_closed(self, error: Optional[Exception]):
        with self._lock:
            current = self.event_monitor
            if current is not None and not current.stopped:
                logger.debug('Ignoring close of a replaced event monitor')
                return
            self.event_monitor = None
        if self._shutdown or self.state < ManagerState.INITIALIZED:
            return
        if self._monitor_started is not None and \
                self.clock() - self._monitor_started >= self.MONITOR_STABLE_TIME:
            self._reconnect_attempt = 0
        self._schedule_reconnect(self._reconnect_attempt + 1)

    def _schedule_reconnect(self, attempt: int):
        max_attempts = self.settings.get('event_monitor_reconnect_attempts', 5)
        if attempt > max_attempts:
            logger.error('Giving up reconnecting to the event stream')
            return
        self._reconnect_attempt = attempt
        delay = min(30, 2 ** (attempt - 1))
        logger.info(f"Reconnecting event monitor in {delay}s (attempt {attempt})")
        self._reconnect_timer = threading.Timer(delay, self._reconnect_event_monitor, args=(attempt,))
        self._reconnect_timer.daemon = True
        self._reconnect_timer.start()

    def _reconnect_event_monitor(self, attempt: int):
        if self._shutdown:
            return
        try:
            self.event_monitor = self.event_monitor_class(self.client.http, self)
            self._monitor_started = self.clock()
            self.refresh_containers()
        except DockerException as e:
            logger.warning(f"Event monitor reconnect failed: {e}")
            self._stop_event_monitor()
            self._schedule_reconnect(attempt + 1)
            return
        logger.info('Event monitor reconnected')

    def shutdown(self):
        """Stop monitoring the daemon"""
        self._shutdown = True
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
        self._stop_event_monitor()

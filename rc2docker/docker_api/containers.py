"""
Docker Containers model
The three containers the application runs
"""

import copy
import logging
import re
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .exceptions import InvalidJson

logger = logging.getLogger(__name__)

_IMAGE_NAME = re.compile(r'rc2server/(appserver|dbserver|compute)')
_CONTAINER_NAME = re.compile(r'/?rc2_(appserver|dbserver|compute)$')


class ContainerType(Enum):
    DBSERVER = 'dbserver'
    APPSERVER = 'appserver'
    COMPUTE = 'compute'

    @property
    def container_name(self) -> str:
        return f"rc2_{self.value}"

    @classmethod
    def from_image_name(cls, name: str) -> Optional['ContainerType']:
        match = _IMAGE_NAME.search(name or '')
        return cls(match.group(1)) if match else None

    @classmethod
    def from_container_name(cls, name: str) -> Optional['ContainerType']:
        match = _CONTAINER_NAME.search(name or '')
        return cls(match.group(1)) if match else None


class ContainerState(Enum):
    NOT_AVAILABLE = 'notAvailable'
    CREATED = 'created'
    RESTARTING = 'restarting'
    RUNNING = 'running'
    PAUSED = 'paused'
    EXITED = 'exited'

    @classmethod
    def from_docker(cls, status: str) -> 'ContainerState':
        """Map a daemon State string to a ContainerState"""
        status = (status or '').lower()
        if status in ('dead', 'removing'):
            return cls.EXITED
        for state in cls:
            if state.value == status:
                return state
        return cls.NOT_AVAILABLE


class ContainerOperation(Enum):
    """Operations accepted by POST /containers/{name}/<operation>"""
    START = 'start'
    STOP = 'stop'
    RESTART = 'restart'
    PAUSE = 'pause'
    RESUME = 'unpause'


class DockerMount:
    """A mount point of a container"""

    def __init__(self, source: str, destination: str, mount_type: str = 'volume',
                 name: str = '', read_write: bool = True):
        self.source = source
        self.destination = destination
        self.type = mount_type
        self.name = name
        self.read_write = read_write

    def __repr__(self):
        return f"<DockerMount: {self.name or self.source} -> {self.destination}>"

    def __eq__(self, other):
        if not isinstance(other, DockerMount):
            return NotImplemented
        return (self.source, self.destination, self.type, self.name, self.read_write) == \
            (other.source, other.destination, other.type, other.name, other.read_write)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'DockerMount':
        return cls(
            source=data.get('Source', ''),
            destination=data.get('Destination', ''),
            mount_type=data.get('Type', 'volume'),
            name=data.get('Name', ''),
            read_write=bool(data.get('RW', True)),
        )


StateListener = Callable[['Container', ContainerState], None]


class Container:
    """
    One of the application's containers

    State is observable: listeners are called on every change. Setting
    the same state again does not notify.
    """

    def __init__(self, container_type: ContainerType, create_info: Optional[Dict[str, Any]] = None):
        self.type = container_type
        self.name = container_type.container_name
        self.id = ''
        self.image_id = ''
        self.image_name = ''
        self.mount_points: List[DockerMount] = []
        self.create_info: Dict[str, Any] = copy.deepcopy(create_info) if create_info else {}
        self._state = ContainerState.NOT_AVAILABLE
        self._lock = threading.Lock()
        self._listeners: List[StateListener] = []

    def __repr__(self):
        return f"<Container: {self.name} {self._state.value}>"

    @property
    def state(self) -> ContainerState:
        with self._lock:
            return self._state

    def update(self, state: ContainerState) -> bool:
        """
        Overwrite the state

        Returns:
            True if the state changed
        """
        with self._lock:
            if state == self._state:
                return False
            previous, self._state = self._state, state
            listeners = list(self._listeners)
        logger.debug(f"{self.name}: {previous.value} -> {state.value}")
        for listener in listeners:
            listener(self, state)
        return True

    def add_listener(self, listener: StateListener):
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: StateListener):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @property
    def image_tag(self) -> str:
        return self.create_info.get('Image', '')

    def inject_image_tag(self, tag: str):
        """Set the image used when the container is created"""
        self.create_info['Image'] = tag

    def update_from_json(self, data: Dict[str, Any]):
        """
        Update from an entry of GET /containers/json

        Raises:
            InvalidJson: If Id or State is missing
        """
        try:
            self.id = data['Id']
            state = data['State']
        except (KeyError, TypeError):
            raise InvalidJson(f"Invalid container JSON for {self.name}")
        self.image_id = data.get('ImageID', '')
        self.image_name = data.get('Image', '')
        self.mount_points = [DockerMount.from_json(m) for m in data.get('Mounts') or []]
        if isinstance(state, dict):
            state = state.get('Status', '')
        self.update(ContainerState.from_docker(state))

    def update_from(self, other: 'Container'):
        """Copy daemon-side values from a freshly loaded container"""
        self.id = other.id
        self.image_id = other.image_id
        self.image_name = other.image_name
        self.mount_points = list(other.mount_points)
        self.update(other.state)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> Optional['Container']:
        """Build a container from GET /containers/json, None if it is not ours"""
        names = data.get('Names') or []
        for name in names:
            container_type = ContainerType.from_container_name(name)
            if container_type is not None:
                container = cls(container_type)
                container.update_from_json(data)
                return container
        return None

    @classmethod
    def from_create_info_json(cls, data: Dict[str, Any]) -> List['Container']:
        """
        Build the containers from the bundled creation templates

        Args:
            data: Mapping of container type name to /containers/create payload
        """
        containers = []
        for container_type in ContainerType:
            info = data.get(container_type.value)
            if info is None:
                raise InvalidJson(f"Missing create info for {container_type.value}")
            containers.append(cls(container_type, info))
        return containers

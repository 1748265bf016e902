"""
Docker event model
"""

import json
from enum import Enum
from typing import Any, Dict, Optional

from .exceptions import InvalidJson, UnsupportedEvent


class EventType(Enum):
    CONTAINER = 'container'
    IMAGE = 'image'
    VOLUME = 'volume'
    NETWORK = 'network'
    PLUGIN = 'plugin'
    DAEMON = 'daemon'


class ContainerAction(Enum):
    ATTACH = 'attach'
    COMMIT = 'commit'
    COPY = 'copy'
    CREATE = 'create'
    DESTROY = 'destroy'
    DETACH = 'detach'
    DIE = 'die'
    EXEC_CREATE = 'exec_create'
    EXEC_DETACH = 'exec_detach'
    EXEC_START = 'exec_start'
    EXPORT = 'export'
    HEALTH_STATUS = 'health_status'
    KILL = 'kill'
    OOM = 'oom'
    PAUSE = 'pause'
    RENAME = 'rename'
    RESIZE = 'resize'
    RESTART = 'restart'
    START = 'start'
    STOP = 'stop'
    TOP = 'top'
    UNPAUSE = 'unpause'
    UPDATE = 'update'


class ImageAction(Enum):
    DELETE = 'delete'
    IMPORT = 'import'
    LOAD = 'load'
    PULL = 'pull'
    PUSH = 'push'
    SAVE = 'save'
    TAG = 'tag'
    UNTAG = 'untag'


class NetworkAction(Enum):
    CREATE = 'create'
    CONNECT = 'connect'
    DISCONNECT = 'disconnect'
    DESTROY = 'destroy'


class VolumeAction(Enum):
    CREATE = 'create'
    MOUNT = 'mount'
    UNMOUNT = 'unmount'
    DESTROY = 'destroy'


# plugin and daemon events carry their action as a plain string
ACTION_TYPES = {
    EventType.CONTAINER: ContainerAction,
    EventType.IMAGE: ImageAction,
    EventType.NETWORK: NetworkAction,
    EventType.VOLUME: VolumeAction,
}


class Event:
    """A single event from GET /events"""

    def __init__(self, event_type: EventType, action, actor_id: str,
                 time: int = 0, attributes: Optional[Dict[str, str]] = None):
        self.type = event_type
        self.action = action
        self.id = actor_id
        self.time = time
        self.attributes = attributes or {}

    def __repr__(self):
        action = self.action.value if isinstance(self.action, Enum) else self.action
        return f"<Event: {self.type.value} {action} {self.id[:12]}>"

    @property
    def name(self) -> Optional[str]:
        """Actor name attribute (container name for container events)"""
        return self.attributes.get('name')

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'Event':
        """
        Build an event from its decoded JSON

        Raises:
            UnsupportedEvent: If the type or action is unknown
            InvalidJson: If required keys are missing
        """
        if not isinstance(data, dict):
            raise InvalidJson('Event is not an object')
        type_name = data.get('Type')
        action_name = data.get('Action')
        if not isinstance(type_name, str) or not isinstance(action_name, str):
            raise InvalidJson(f"Event missing Type or Action: {data}")
        try:
            event_type = EventType(type_name)
        except ValueError:
            raise UnsupportedEvent(f"Unsupported event type: {type_name}")

        # "exec_create: sh -c ..." carries the command after the action
        action_name = action_name.split(':', 1)[0].strip()
        action_class = ACTION_TYPES.get(event_type)
        if action_class is None:
            action = action_name
        else:
            try:
                action = action_class(action_name)
            except ValueError:
                raise UnsupportedEvent(f"Unsupported {type_name} action: {action_name}")

        actor = data.get('Actor') or {}
        actor_id = actor.get('ID') or data.get('id') or ''
        attributes = actor.get('Attributes') or {}
        return cls(event_type, action, actor_id, int(data.get('time', 0) or 0), attributes)

    @classmethod
    def from_line(cls, line: bytes) -> 'Event':
        try:
            data = json.loads(line.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidJson(f"Invalid event JSON: {e}")
        return cls.from_json(data)

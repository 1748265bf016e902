"""
Docker Images model
Installed images and the image manifest the application requires
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from .containers import ContainerType
from .exceptions import InvalidJson

_TAG_PATTERN = re.compile(r'^(([\w][\w.-]+)/)?([\w][\w.-]+)(:([\w]?[\w.-]+))?$')

TYPE_LABEL = 'io.rc2.type'


class DockerTag:
    """An image reference of the form [repo/]name[:version]"""

    def __init__(self, name: str, repo: Optional[str] = None, version: Optional[str] = None):
        self.name = name
        self.repo = repo
        self.version = version

    def __repr__(self):
        return f"<DockerTag: {self}>"

    def __str__(self):
        value = self.name
        if self.repo:
            value = f"{self.repo}/{value}"
        if self.version:
            value = f"{value}:{self.version}"
        return value

    def __eq__(self, other):
        if not isinstance(other, DockerTag):
            return NotImplemented
        return str(self) == str(other)

    def __hash__(self):
        return hash(str(self))

    @classmethod
    def parse(cls, value: str) -> Optional['DockerTag']:
        """Parse a tag string, None if it is not a valid tag"""
        match = _TAG_PATTERN.match(value or '')
        if not match:
            return None
        return cls(match.group(3), repo=match.group(2), version=match.group(5))


class DockerImage:
    """An installed image from GET /images/json"""

    def __init__(self, image_id: str, tags: List[DockerTag], size: int = 0,
                 labels: Optional[Dict[str, str]] = None):
        self.id = image_id
        self.tags = tags
        self.size = size
        self.labels = labels or {}

    def __repr__(self):
        return f"<DockerImage: {self.id[:19]} {[str(t) for t in self.tags]}>"

    @property
    def type(self) -> Optional[ContainerType]:
        value = self.labels.get(TYPE_LABEL)
        if value:
            try:
                return ContainerType(value)
            except ValueError:
                pass
        for tag in self.tags:
            container_type = ContainerType.from_image_name(str(tag))
            if container_type is not None:
                return container_type
        return None

    def is_named(self, name: str) -> bool:
        """True if any tag starts with name"""
        return any(str(tag).startswith(name) for tag in self.tags)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'DockerImage':
        try:
            image_id = data['Id']
        except (KeyError, TypeError):
            raise InvalidJson('Image without Id')
        tags = []
        for value in data.get('RepoTags') or []:
            tag = DockerTag.parse(value)
            # untagged images are reported as <none>:<none>
            if tag is None or tag.name == 'none':
                continue
            tags.append(tag)
        return cls(image_id, tags, int(data.get('Size') or 0), data.get('Labels') or {})


class DockerImageInfo:
    """One required image from the image manifest"""

    def __init__(self, name: str, tag: str, image_id: str, size: int, est_size: int):
        self.name = name
        self.tag = tag
        self.id = image_id
        self.size = size
        self.est_size = est_size

    def __repr__(self):
        return f"<DockerImageInfo: {self.tag} {self.id[:19]}>"

    def __eq__(self, other):
        if not isinstance(other, DockerImageInfo):
            return NotImplemented
        return (self.id, self.tag, self.size) == (other.id, other.tag, other.size)

    @property
    def full_name(self) -> str:
        return self.tag

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'DockerImageInfo':
        try:
            size = int(data['size'])
            return cls(
                name=data['name'],
                tag=data.get('tag', ''),
                image_id=data['id'],
                size=size,
                est_size=int(data.get('estSize', size)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidJson(f"Invalid image info: {e}")

    def to_json(self) -> Dict[str, Any]:
        return {'name': self.name, 'tag': self.tag, 'id': self.id,
                'size': self.size, 'estSize': self.est_size}


class RequiredImageInfo:
    """
    Manifest of the images the application needs

    Loaded from the bundled imageInfo.json and replaced when a newer
    manifest is published. One image per container type.
    """

    SUPPORTED_VERSION = 2
    TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%SZ'

    def __init__(self, version: int, timestamp: datetime, images: Dict[ContainerType, DockerImageInfo]):
        self.version = version
        self.timestamp = timestamp
        self.images = images

    def __repr__(self):
        return f"<RequiredImageInfo: v{self.version} {self.timestamp_string}>"

    def __getitem__(self, container_type: ContainerType) -> DockerImageInfo:
        return self.images[container_type]

    def __iter__(self):
        return iter(self.images[t] for t in ContainerType)

    def __len__(self):
        return len(self.images)

    @property
    def timestamp_string(self) -> str:
        return self.timestamp.strftime(self.TIMESTAMP_FORMAT)

    @property
    def total_size(self) -> int:
        return sum(info.est_size for info in self)

    def newer_than(self, other: Optional['RequiredImageInfo']) -> bool:
        if other is None:
            return True
        return self.version == other.version and self.timestamp > other.timestamp

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'RequiredImageInfo':
        """
        Parse a manifest

        Raises:
            InvalidJson: If the manifest is malformed or of another version
        """
        if not isinstance(data, dict):
            raise InvalidJson('Image info is not an object')
        version = data.get('version')
        if version != cls.SUPPORTED_VERSION:
            raise InvalidJson(f"Unsupported image info version: {version}")
        try:
            timestamp = datetime.strptime(data['timestamp'], cls.TIMESTAMP_FORMAT)
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidJson(f"Invalid image info timestamp: {e}")
        images = data.get('images') or {}
        parsed = {}
        for container_type in ContainerType:
            if container_type.value not in images:
                raise InvalidJson(f"Image info missing {container_type.value}")
            parsed[container_type] = DockerImageInfo.from_json(images[container_type.value])
        return cls(version, timestamp, parsed)

    def to_json(self) -> Dict[str, Any]:
        return {
            'version': self.version,
            'timestamp': self.timestamp_string,
            'images': {t.value: self.images[t].to_json() for t in ContainerType},
        }

"""
Docker daemon version information
"""

import re
from typing import Any, Dict

from .exceptions import InvalidJson

_VERSION_PATTERN = re.compile(r'(\d+)\.(\d+)\.(\d+)')


class DockerVersion:
    """Version reported by GET /version"""

    def __init__(self, major: int, minor: int, fix: int, api_version: float):
        self.major = major
        self.minor = minor
        self.fix = fix
        self.api_version = api_version

    def __repr__(self):
        return f"<DockerVersion: {self} (API {self.api_version})>"

    def __str__(self):
        return f"{self.major}.{self.minor}.{self.fix}"

    def __eq__(self, other):
        if not isinstance(other, DockerVersion):
            return NotImplemented
        return (self.major, self.minor, self.fix, self.api_version) == \
            (other.major, other.minor, other.fix, other.api_version)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'DockerVersion':
        """
        Parse the /version response

        Raises:
            InvalidJson: If Version or ApiVersion is missing or malformed
        """
        if not isinstance(data, dict):
            raise InvalidJson('Version response is not an object')
        match = _VERSION_PATTERN.search(str(data.get('Version', '')))
        if not match:
            raise InvalidJson(f"Unparseable Docker version: {data.get('Version')!r}")
        try:
            api_version = float(data['ApiVersion'])
        except (KeyError, TypeError, ValueError):
            raise InvalidJson(f"Unparseable API version: {data.get('ApiVersion')!r}")
        return cls(int(match.group(1)), int(match.group(2)), int(match.group(3)), api_version)

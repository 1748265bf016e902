"""
Docker API for the local daemon
Works with Docker daemon via Unix socket (Linux/macOS)
"""

from .client import DockerClient
from .containers import Container, ContainerOperation, ContainerState, ContainerType
from .exceptions import (
    DockerException,
    DockerNotRunning,
    APIError,
    NoSuchObject,
    Conflict,
    AlreadyInProgress,
    DockerManagerError,
)
from .pull import PullProgress

__all__ = [
    'DockerClient',
    'Container',
    'ContainerOperation',
    'ContainerState',
    'ContainerType',
    'PullProgress',
    'DockerException',
    'DockerNotRunning',
    'APIError',
    'NoSuchObject',
    'Conflict',
    'AlreadyInProgress',
    'DockerManagerError',
]

__version__ = '1.0.0'

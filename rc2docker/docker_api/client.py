"""
Docker Client - Main API entry point
Typed access to the daemon endpoints the application uses
"""

import logging
import struct
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from .connection import DEFAULT_API_VERSION, LocalDockerConnection
from .containers import Container, ContainerOperation
from .exceptions import (
    AlreadyInProgress, ExecFailed, InvalidJson, NetworkError, NoSuchObject,
)
from .http_client import DockerHTTPClient
from .images import TYPE_LABEL, DockerImage
from .response_handler import DataMessage, Message
from .version import DockerVersion

logger = logging.getLogger(__name__)

CONTAINER_FILTER = {'label': ['rc2.live']}
RAW_STREAM = 'application/vnd.docker.raw-stream'
STDOUT = 1
STDERR = 2

_FRAME_HEADER = struct.Struct('>BxxxL')


def parse_docker_chunk(data: bytes) -> List[Tuple[int, bytes]]:
    """
    Split multiplexed stdout/stderr output into frames

    Each frame starts with an 8 byte header: stream type, three zero bytes
    and the big-endian payload size. Output of a TTY is not framed and is
    returned as a single stdout frame.

    Returns:
        List of (stream type, payload)
    """
    if len(data) < 8 or data[0] not in (STDOUT, STDERR) or data[1:4] != b'\x00\x00\x00':
        return [(STDOUT, data)] if data else []
    frames = []
    offset = 0
    while offset + 8 <= len(data):
        stream_type, size = _FRAME_HEADER.unpack_from(data, offset)
        offset += 8
        frames.append((stream_type, data[offset:offset + size]))
        offset += size
    return frames


class StreamDemuxer:
    """Incremental version of parse_docker_chunk for followed streams"""

    def __init__(self):
        self._buffer = b''
        self._framed: Optional[bool] = None

    def feed(self, data: bytes) -> List[Tuple[int, bytes]]:
        self._buffer += data
        if self._framed is None:
            if len(self._buffer) < 8:
                return []
            self._framed = self._buffer[0] in (STDOUT, STDERR) and self._buffer[1:4] == b'\x00\x00\x00'
        if not self._framed:
            data, self._buffer = self._buffer, b''
            return [(STDOUT, data)]
        frames = []
        while len(self._buffer) >= 8:
            stream_type, size = _FRAME_HEADER.unpack_from(self._buffer)
            if len(self._buffer) < 8 + size:
                break
            frames.append((stream_type, self._buffer[8:8 + size]))
            self._buffer = self._buffer[8 + size:]
        return frames


class DockerClient:
    """
    Docker API Client
    Blocking calls; run them off the GUI thread
    """

    def __init__(self, base_url: Optional[str] = None, timeout: int = 60,
                 api_version: str = DEFAULT_API_VERSION,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize Docker client

        Args:
            base_url: Docker socket path (default: auto-detect)
            timeout: Request timeout in seconds
            api_version: API version used in request paths
            sleep: Delay function used between exec status polls
        """
        self.http = DockerHTTPClient(base_url=base_url, timeout=timeout, api_version=api_version)
        self.timeout = timeout
        self.sleep = sleep
        self.exec_poll_attempts = 10
        self.exec_poll_delay = 0.2

    # -- daemon ------------------------------------------------------------

    def version(self) -> DockerVersion:
        """Get Docker version info"""
        return DockerVersion.from_json(self.http.get('/version'))

    def fetch_json(self, url: str) -> Any:
        """
        Fetch a JSON document from the web

        Raises:
            NetworkError: On timeouts, connection or HTTP status errors
            InvalidJson: If the body is not JSON
        """
        try:
            with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
                response = client.get(url)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timed out fetching {url}: {e}")
        except httpx.HTTPStatusError as e:
            raise NetworkError(f"HTTP {e.response.status_code} fetching {url}")
        except httpx.HTTPError as e:
            raise NetworkError(f"Failed to fetch {url}: {e}")
        except ValueError as e:
            raise InvalidJson(f"Invalid JSON from {url}: {e}")

    # -- images ------------------------------------------------------------

    def load_images(self) -> List[DockerImage]:
        """
        List installed application images

        Returns:
            Images labelled with io.rc2.type that have at least one tag
        """
        data = self.http.get('/images/json')
        if not isinstance(data, list):
            raise InvalidJson('Image list is not an array')
        images = [DockerImage.from_json(item) for item in data]
        return [image for image in images if TYPE_LABEL in image.labels and image.tags]

    def remove_image(self, image: DockerImage):
        """Remove an image; a missing image is not an error"""
        logger.info(f"Removing image {image.id}")
        try:
            self.http.delete(f"/images/{image.id}")
        except NoSuchObject:
            logger.debug(f"{image.id} already removed")

    # -- volumes and networks ------------------------------------------------

    def volume_exists(self, name: str) -> bool:
        data = self.http.get('/volumes') or {}
        return any(v.get('Name') == name for v in data.get('Volumes') or [])

    def create_volume(self, name: str):
        """Create a named volume"""
        logger.info(f"Creating volume {name}")
        self.http.post('/volumes/create', data={'Name': name})

    def network_exists(self, name: str) -> bool:
        data = self.http.get('/networks') or []
        return any(n.get('Name') == name for n in data)

    def create_network(self, name: str):
        """Create a bridge network"""
        logger.info(f"Creating network {name}")
        self.http.post('/networks/create', data={'Name': name, 'Driver': 'bridge'})

    # -- containers ----------------------------------------------------------

    def refresh_containers(self) -> List[Container]:
        """
        Load the application's containers from the daemon

        Returns:
            One Container per application container that exists
        """
        data = self.http.get('/containers/json', params={'all': 1, 'filters': CONTAINER_FILTER})
        if not isinstance(data, list):
            raise InvalidJson('Container list is not an array')
        containers = []
        for item in data:
            container = Container.from_json(item)
            if container is not None:
                containers.append(container)
        return containers

    def perform(self, operation: ContainerOperation, container: Container):
        """
        Run a state operation on a container

        An operation the container is already in (HTTP 304) counts as success.
        """
        logger.info(f"{operation.value} {container.name}")
        try:
            self.http.post(f"/containers/{container.name}/{operation.value}")
        except AlreadyInProgress:
            logger.debug(f"{container.name} already {operation.value}")

    def create_container(self, container: Container) -> str:
        """
        Create a container from its create info

        Returns:
            New container id

        Raises:
            Conflict: If a container with that name exists
        """
        logger.info(f"Creating container {container.name} from {container.image_tag}")
        result = self.http.post('/containers/create', params={'name': container.name},
                                data=container.create_info)
        if not isinstance(result, dict) or 'Id' not in result:
            raise InvalidJson(f"Invalid create response for {container.name}")
        for warning in result.get('Warnings') or []:
            logger.warning(f"{container.name}: {warning}")
        return result['Id']

    def remove_container(self, container: Container):
        """Remove a container; a missing container is not an error"""
        logger.info(f"Removing container {container.name}")
        try:
            self.http.delete(f"/containers/{container.name}")
        except NoSuchObject:
            logger.debug(f"{container.name} already removed")

    # -- exec ----------------------------------------------------------------

    def execute(self, command: List[str], container: Container) -> Tuple[int, bytes]:
        """
        Run a command in a container and wait for it

        Args:
            command: Command and arguments
            container: Container to run in

        Returns:
            (exit code, stdout)
        """
        created = self.http.post(f"/containers/{container.name}/exec", data={
            'AttachStdout': True,
            'AttachStderr': True,
            'Tty': False,
            'Cmd': command,
        })
        if not isinstance(created, dict) or 'Id' not in created:
            raise InvalidJson('Invalid exec create response')
        exec_id = created['Id']

        raw = self.http.request_data('POST', f"/exec/{exec_id}/start",
                                     data={'Detach': False, 'Tty': False},
                                     headers={'Accept': RAW_STREAM})
        stdout = b''
        for stream_type, payload in parse_docker_chunk(raw):
            if stream_type == STDOUT:
                stdout += payload
            else:
                logger.debug(f"{container.name} stderr: {payload.decode('utf-8', errors='replace').strip()}")
        return self.exec_exit_code(exec_id), stdout

    def exec_exit_code(self, exec_id: str) -> int:
        """Poll an exec instance until it has stopped"""
        for attempt in range(self.exec_poll_attempts):
            info = self.http.get(f"/exec/{exec_id}/json") or {}
            if not info.get('Running', False) and info.get('ExitCode') is not None:
                return int(info['ExitCode'])
            self.sleep(self.exec_poll_delay)
        raise ExecFailed(f"Exec {exec_id} did not finish")

    def execute_sync(self, command: List[str], container: Container) -> bytes:
        """
        Run a command and return its stdout

        Raises:
            ExecFailed: If the command exits with a non-zero code
        """
        exit_code, output = self.execute(command, container)
        if exit_code != 0:
            raise ExecFailed(f"{command[0]} exited with {exit_code}", exit_code, output)
        return output

    # -- logs ----------------------------------------------------------------

    def fetch_log(self, container: Container, tail: str = 'all') -> str:
        """Get container logs, stdout and stderr interleaved"""
        raw = self.http.request_data('GET', f"/containers/{container.name}/logs",
                                     params={'stdout': 1, 'stderr': 1, 'tail': tail})
        return b''.join(payload for _, payload in parse_docker_chunk(raw)).decode('utf-8', errors='replace')

    def stream_log(self, container: Container,
                   callback: Callable[[Optional[str], bool], None]) -> LocalDockerConnection:
        """
        Follow container logs

        Args:
            container: Container to follow
            callback: Called with (text, is_stderr) per frame and with
                (None, False) when the stream ends

        Returns:
            The open connection; close it to stop following
        """
        demuxer = StreamDemuxer()

        def on_message(message: Message):
            if isinstance(message, DataMessage):
                for stream_type, payload in demuxer.feed(message.data):
                    callback(payload.decode('utf-8', errors='replace'), stream_type == STDERR)
            elif message.terminal:
                callback(None, False)

        return self.http.stream('GET', f"/containers/{container.name}/logs", on_message,
                                params={'stdout': 1, 'stderr': 1, 'follow': 1})

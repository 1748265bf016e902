"""
Connection to the local Docker daemon
One HTTP/1.1 request per Unix socket connection
"""

import errno
import json
import logging
import os
import platform
import re
import socket
import threading
from typing import Any, Dict, Optional, Type
from urllib.parse import quote

from .exceptions import DockerNotRunning, InternalError, NetworkError
from .response_handler import Message, MessageCallback, ResponseHandler, SingleDataResponseHandler

logger = logging.getLogger(__name__)

DEFAULT_SOCKET_PATH = '/var/run/docker.sock'
DEFAULT_API_VERSION = '1.27'
USER_AGENT = 'rc2docker/1.0'
READ_SIZE = 65536

_VERSIONED_PATH = re.compile(r'^/v1\.\d+/')


def default_socket_path() -> str:
    """Detect the Docker socket path for this platform"""
    if platform.system() == 'Darwin':
        path = os.path.expanduser('~/.docker/run/docker.sock')
        if os.path.exists(path):
            return path
    return DEFAULT_SOCKET_PATH


def encode_query(params: Optional[Dict[str, Any]]) -> str:
    """Build a query string; lists and dicts are sent as JSON"""
    if not params:
        return ''
    parts = []
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = 'true' if value else 'false'
        elif isinstance(value, (list, dict)):
            value = json.dumps(value, separators=(',', ':'))
        parts.append(f"{key}={quote(str(value))}")
    return '&'.join(parts)


class DockerRequest:
    """A request to send to the daemon"""

    def __init__(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                 data: Any = None, headers: Optional[Dict[str, str]] = None):
        self.method = method.upper()
        self.path = path
        self.params = params or {}
        self.data = data
        self.headers = headers or {}

    def __repr__(self):
        return f"<DockerRequest: {self.method} {self.path}>"


def serialize_request(request: DockerRequest, api_version: str = DEFAULT_API_VERSION,
                      hijacked: bool = False) -> bytes:
    """
    Serialize a request to HTTP/1.1 bytes

    Args:
        request: Request to serialize
        api_version: Version prefix added to unversioned paths
        hijacked: Whether the response will be streamed

    Returns:
        Raw request bytes

    Raises:
        InternalError: If the body cannot be encoded
    """
    path = request.path
    if not path.startswith('/'):
        path = '/' + path
    if not _VERSIONED_PATH.match(path):
        path = f"/v{api_version}{path}"
    query = encode_query(request.params)
    if query:
        path = f"{path}?{query}"

    headers = {'Host': 'localhost', 'User-Agent': USER_AGENT}
    if hijacked:
        headers['Accept'] = '*/*'
    else:
        headers['Connection'] = 'close'

    body = b''
    if request.data is not None:
        if isinstance(request.data, bytes):
            body = request.data
        else:
            try:
                body = json.dumps(request.data).encode('utf-8')
            except (TypeError, ValueError) as e:
                raise InternalError(f"Cannot encode request body: {e}")
            headers['Content-Type'] = 'application/json'
        headers['Content-Length'] = str(len(body))
    headers.update(request.headers)

    lines = [f"{request.method} {path} HTTP/1.1"]
    lines.extend(f"{key}: {value}" for key, value in headers.items())
    try:
        head = ('\r\n'.join(lines) + '\r\n\r\n').encode('latin-1')
    except UnicodeEncodeError as e:
        raise InternalError(f"Cannot encode request headers: {e}")
    return head + body


class LocalDockerConnection:
    """
    Single-use connection over the daemon's Unix socket

    open() connects, write() sends the request and starts a reader thread
    that feeds the response handler. Messages are delivered on that thread.
    The socket is closed after the terminal message.
    """

    def __init__(self, request: DockerRequest, callback: MessageCallback,
                 handler_class: Type[ResponseHandler] = SingleDataResponseHandler,
                 socket_path: Optional[str] = None, api_version: str = DEFAULT_API_VERSION,
                 hijacked: bool = False, timeout: Optional[float] = 60):
        self.request = request
        self.callback = callback
        self.socket_path = socket_path or default_socket_path()
        self.api_version = api_version
        self.hijacked = hijacked
        # streams stay open indefinitely
        self.timeout = None if hijacked else timeout
        self.handler = handler_class(self._on_message)
        self.sock: Optional[socket.socket] = None
        self.closed = False
        self._lock = threading.Lock()
        self._reader: Optional[threading.Thread] = None

    def __repr__(self):
        return f"<LocalDockerConnection: {self.request.method} {self.request.path}>"

    def open(self):
        """
        Connect to the daemon socket

        Raises:
            DockerNotRunning: If the socket is missing or refuses connections
            NetworkError: For any other socket failure
        """
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        try:
            sock.connect(self.socket_path)
        except (FileNotFoundError, ConnectionRefusedError) as e:
            sock.close()
            self._open_failed(DockerNotRunning(f"Docker is not running at {self.socket_path}: {e}"))
        except OSError as e:
            sock.close()
            if e.errno in (errno.ENOENT, errno.ECONNREFUSED):
                self._open_failed(DockerNotRunning(f"Docker is not running at {self.socket_path}: {e}"))
            self._open_failed(NetworkError(f"Cannot connect to {self.socket_path}: {e}"))
        self.sock = sock
        logger.debug(f"Connected to {self.socket_path}")

    def _open_failed(self, error: Exception):
        self.closed = True
        self.handler.feed_error(error)
        raise error

    def write(self):
        """Send the request and start reading the response"""
        if self.sock is None or self.closed:
            raise InternalError('Connection is not open')
        payload = serialize_request(self.request, self.api_version, self.hijacked)
        logger.debug(f"Sending {self.request.method} {self.request.path}")
        try:
            self.sock.sendall(payload)
        except OSError as e:
            error = NetworkError(f"Failed to send request: {e}")
            # _on_message closes the socket
            self.handler.feed_error(error)
            raise error
        self._reader = threading.Thread(
            target=self._read_loop, name=f"docker-{self.request.path}", daemon=True)
        self._reader.start()

    def close(self):
        """Close the socket. Closing twice only logs a warning."""
        with self._lock:
            if self.closed:
                logger.warning(f"Connection already closed: {self}")
                return
            self.closed = True
        self._close_socket()

    def _close_socket(self):
        if self.sock is None:
            return
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()

    def _read_loop(self):
        while True:
            try:
                data = self.sock.recv(READ_SIZE)
            except OSError as e:
                if not self.closed:
                    self.handler.feed_error(NetworkError(f"Read failed: {e}"))
                break
            if self.closed:
                break
            if not data:
                self.handler.feed_eof()
                break
            self.handler.feed(data)
            if self.handler.done:
                break

    def _on_message(self, message: Message):
        if message.terminal:
            with self._lock:
                already_closed = self.closed
                self.closed = True
            if not already_closed:
                self._close_socket()
        self.callback(message)

"""
HTTP Client for Docker Unix Socket
Blocking requests and streams on top of LocalDockerConnection
"""

import json
import logging
import os
import threading
from typing import Any, Dict, Optional

from .connection import DEFAULT_API_VERSION, DockerRequest, LocalDockerConnection, default_socket_path
from .exceptions import NetworkError
from .response_handler import (
    DataMessage, ErrorMessage, HijackedResponseHandler, Message, MessageCallback,
    SingleDataResponseHandler,
)

logger = logging.getLogger(__name__)


class DockerHTTPClient:
    """HTTP client for Docker daemon"""

    def __init__(self, base_url: Optional[str] = None, timeout: int = 60,
                 api_version: str = DEFAULT_API_VERSION):
        """
        Initialize Docker HTTP client

        Args:
            base_url: Docker socket path (default: auto-detect)
            timeout: Request timeout in seconds
            api_version: API version prefix for request paths
        """
        self.timeout = timeout
        self.api_version = api_version
        if base_url:
            self.socket_path = base_url.replace('unix://', '')
        else:
            self.socket_path = default_socket_path()

    def socket_exists(self) -> bool:
        return os.path.exists(self.socket_path)

    def connection(self, request: DockerRequest, callback: MessageCallback,
                   hijacked: bool = False) -> LocalDockerConnection:
        """Create an unopened connection for a request"""
        handler_class = HijackedResponseHandler if hijacked else SingleDataResponseHandler
        return LocalDockerConnection(
            request, callback, handler_class=handler_class, socket_path=self.socket_path,
            api_version=self.api_version, hijacked=hijacked, timeout=self.timeout)

    def request_data(self, method: str, path: str, data: Any = None,
                     params: Optional[Dict[str, Any]] = None,
                     headers: Optional[Dict[str, str]] = None) -> bytes:
        """
        Make HTTP request and return the raw response body

        Args:
            method: HTTP method (GET, POST, DELETE, etc.)
            path: API path
            data: JSON data for request body, or raw bytes
            params: URL query parameters
            headers: HTTP headers

        Returns:
            Response body (empty for bodyless responses)

        Raises:
            DockerException: Transport, protocol or status error
        """
        body = []
        errors = []
        finished = threading.Event()

        def on_message(message: Message):
            if isinstance(message, DataMessage):
                body.append(message.data)
            elif isinstance(message, ErrorMessage):
                errors.append(message.error)
            if message.terminal:
                finished.set()

        conn = self.connection(DockerRequest(method, path, params, data, headers), on_message)
        conn.open()
        conn.write()
        # the socket timeout bounds each read; this bounds a stalled reader
        wait = None if self.timeout is None else self.timeout * 2
        if not finished.wait(wait):
            conn.close()
            raise NetworkError(f"Timed out waiting for {method} {path}")
        if errors:
            raise errors[0]
        return b''.join(body)

    def request(self, method: str, path: str, **kwargs) -> Any:
        """
        Make HTTP request

        Returns:
            Parsed JSON response, raw text if not JSON, None if empty
        """
        response_data = self.request_data(method, path, **kwargs)
        if not response_data:
            return None
        text = response_data.decode('utf-8', errors='replace')
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text

    def stream(self, method: str, path: str, callback: MessageCallback, data: Any = None,
               params: Optional[Dict[str, Any]] = None,
               headers: Optional[Dict[str, str]] = None) -> LocalDockerConnection:
        """
        Open a hijacked connection

        The callback receives every message on the reader thread. The caller
        owns the returned connection and closes it to stop the stream.
        """
        conn = self.connection(DockerRequest(method, path, params, data, headers), callback,
                               hijacked=True)
        conn.open()
        conn.write()
        return conn

    def get(self, path: str, **kwargs) -> Any:
        """Make GET request"""
        return self.request('GET', path, **kwargs)

    def post(self, path: str, **kwargs) -> Any:
        """Make POST request"""
        return self.request('POST', path, **kwargs)

    def delete(self, path: str, **kwargs) -> Any:
        """Make DELETE request"""
        return self.request('DELETE', path, **kwargs)

"""
Docker API Exceptions
"""

from typing import Optional


class DockerException(Exception):
    """Base Docker exception"""
    pass


class DockerNotRunning(DockerException):
    """Docker daemon socket is missing or refuses connections"""
    pass


class NetworkError(DockerException):
    """Socket level failure while talking to the daemon"""
    pass


class IncompleteResponse(DockerException):
    """Connection closed before the response body was complete"""
    pass


class ProtocolError(DockerException):
    """Malformed HTTP headers or chunk framing"""
    pass


class InternalError(DockerException):
    """Unexpected client side failure"""
    pass


class APIError(DockerException):
    """Docker API error"""

    def __init__(self, message, status_code=None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class NoSuchObject(APIError):
    """Requested object does not exist (404)"""
    pass


class Conflict(APIError):
    """Object name already in use (409)"""
    pass


class AlreadyInProgress(APIError):
    """Operation already performed (304)"""
    pass


class InvalidJson(DockerException):
    """Daemon returned JSON that could not be understood"""
    pass


class UnsupportedEvent(DockerException):
    """Event type or action is not known"""
    pass


class UnsupportedDockerVersion(DockerException):
    """Daemon API version is too old"""
    pass


class ExecFailed(DockerException):
    """Command executed inside a container failed"""

    def __init__(self, message, exit_code=None, output=b''):
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


class PullFailed(DockerException):
    """Daemon reported an error while pulling an image"""
    pass


class ContainerTimeout(DockerException):
    """Containers did not reach the running state in time"""
    pass


class DatabaseNotReady(DockerException):
    """Database server did not answer in time"""
    pass


class DockerManagerError(DockerException):
    """Error raised at the manager boundary, wrapping the underlying cause"""

    def __init__(self, message, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause

    def __str__(self):
        message = super().__str__()
        if self.cause is not None:
            return f"{message}: {self.cause}"
        return message


def _error_message(body: bytes) -> str:
    """Extract the daemon's error message from a response body"""
    import json

    text = body.decode('utf-8', errors='replace').strip() if body else ''
    try:
        data = json.loads(text)
    except ValueError:
        return text
    if isinstance(data, dict):
        return str(data.get('message', text))
    return text


def error_for_status(status_code: int, body: bytes = b'') -> Optional[APIError]:
    """
    Map an HTTP status code to an exception

    Args:
        status_code: HTTP status code from the daemon
        body: Response body, used for the error message

    Returns:
        None for 2xx statuses, otherwise the matching APIError
    """
    if 200 <= status_code < 300:
        return None
    message = _error_message(body)
    if status_code == 304:
        return AlreadyInProgress(message or 'Already in progress', status_code, body)
    if status_code == 404:
        return NoSuchObject(message or 'No such object', status_code, body)
    if status_code == 409:
        return Conflict(message or 'Conflict', status_code, body)
    return APIError(f"Docker API error: {message}", status_code, body)

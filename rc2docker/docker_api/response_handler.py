"""
Docker response handlers
Turn raw socket reads into a stream of messages
"""

import logging
from typing import Callable, List, Optional

from .exceptions import DockerException, IncompleteResponse, InternalError, error_for_status
from .http_parser import ChunkDecoder, HttpHeaders, parse_headers, split_headers

logger = logging.getLogger(__name__)


class Message:
    """Base class for messages emitted by a response handler"""
    terminal = False


class HeadersMessage(Message):
    def __init__(self, headers: HttpHeaders):
        self.headers = headers

    def __repr__(self):
        return f"<HeadersMessage: {self.headers.status_code}>"


class DataMessage(Message):
    def __init__(self, data: bytes):
        self.data = data

    def __repr__(self):
        return f"<DataMessage: {len(self.data)} bytes>"


class CompleteMessage(Message):
    terminal = True

    def __repr__(self):
        return "<CompleteMessage>"


class ErrorMessage(Message):
    terminal = True

    def __init__(self, error: Exception):
        self.error = error

    def __repr__(self):
        return f"<ErrorMessage: {self.error!r}>"


MessageCallback = Callable[[Message], None]


class ResponseHandler:
    """
    Incremental HTTP response reader

    Subclasses decide how body bytes are delivered. Exactly one terminal
    message (complete or error) is ever emitted; later input is ignored.
    """

    def __init__(self, callback: MessageCallback):
        self.callback = callback
        self.headers: Optional[HttpHeaders] = None
        self.done = False
        self._header_buffer = b''
        self._decoder: Optional[ChunkDecoder] = None
        self._body_received = 0
        self._error_body = b''

    # -- input -------------------------------------------------------------

    def feed(self, data: bytes):
        """Process bytes read from the socket"""
        if self.done or not data:
            return
        try:
            if self.headers is None:
                self._header_buffer += data
                parts = split_headers(self._header_buffer)
                if parts is None:
                    return
                block, data = parts
                self._header_buffer = b''
                self._start_body(parse_headers(block))
                if self.done or not data:
                    return
            self._feed_body(data)
        except DockerException as e:
            self._fail(e)

    def feed_eof(self):
        """Process end of stream"""
        if self.done:
            return
        if self.headers is None:
            self._fail(IncompleteResponse('Connection closed before headers were received'))
        elif not self.headers.is_success:
            self._fail(error_for_status(self.headers.status_code, self._error_body))
        else:
            self._handle_eof()

    def feed_error(self, error: Exception):
        """Process a transport error"""
        if not self.done:
            self._fail(error)

    # -- body --------------------------------------------------------------

    def _start_body(self, headers: HttpHeaders):
        self.headers = headers
        logger.debug(f"Response headers: {headers.status_code}")
        self._emit(HeadersMessage(headers))
        if headers.is_chunked:
            self._decoder = ChunkDecoder()
        if not headers.has_body:
            if headers.is_success:
                self._finish()
            else:
                self._fail(error_for_status(headers.status_code))

    def _feed_body(self, data: bytes):
        if self._decoder is not None:
            payloads = self._decoder.feed(data)
            for payload in payloads:
                self._payload(payload)
            if self._decoder.finished:
                self._body_end()
            return

        length = self.headers.content_length
        if length is not None:
            remaining = length - self._body_received
            data = data[:remaining]
            self._body_received += len(data)
            self._payload(data)
            if self._body_received >= length:
                self._body_end()
        else:
            self._body_received += len(data)
            self._payload(data)

    def _payload(self, data: bytes):
        if not self.headers.is_success:
            self._error_body += data
        elif data:
            self.handle_payload(data)

    def _body_end(self):
        if not self.headers.is_success:
            self._fail(error_for_status(self.headers.status_code, self._error_body))
        else:
            self.handle_body_end()

    @property
    def body_is_framed(self) -> bool:
        """True when the body length is known from the headers"""
        return self._decoder is not None or self.headers.content_length is not None

    # -- policy hooks ------------------------------------------------------

    def handle_payload(self, data: bytes):
        raise NotImplementedError

    def handle_body_end(self):
        raise NotImplementedError

    def _handle_eof(self):
        raise NotImplementedError

    # -- output ------------------------------------------------------------

    def _emit(self, message: Message):
        if self.done:
            return
        if message.terminal:
            self.done = True
        try:
            self.callback(message)
        except Exception as e:
            # the reader thread must always end with a terminal message
            logger.exception(f"Message callback failed on {message!r}")
            if not message.terminal:
                self._fail(InternalError(f"Message callback failed: {e}"))

    def _finish(self):
        self._emit(CompleteMessage())

    def _fail(self, error: Exception):
        logger.debug(f"Response failed: {error}")
        self._emit(ErrorMessage(error))


class SingleDataResponseHandler(ResponseHandler):
    """Collects the whole body and emits it as one data message"""

    def __init__(self, callback: MessageCallback):
        super().__init__(callback)
        self._chunks: List[bytes] = []

    def handle_payload(self, data: bytes):
        self._chunks.append(data)

    def handle_body_end(self):
        self._emit(DataMessage(b''.join(self._chunks)))
        self._finish()

    def _handle_eof(self):
        if self.body_is_framed:
            self._fail(IncompleteResponse('Connection closed before the body was complete'))
        else:
            # raw stream, the body ends with the connection
            self.handle_body_end()


class HijackedResponseHandler(ResponseHandler):
    """Emits every chunk as soon as it arrives"""

    def handle_payload(self, data: bytes):
        self._emit(DataMessage(data))

    def handle_body_end(self):
        self._finish()

    def _handle_eof(self):
        self._finish()


__all__ = [
    'Message',
    'HeadersMessage',
    'DataMessage',
    'CompleteMessage',
    'ErrorMessage',
    'ResponseHandler',
    'SingleDataResponseHandler',
    'HijackedResponseHandler',
]

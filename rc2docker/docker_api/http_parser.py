"""
HTTP response parsing
Header block parsing and chunked transfer decoding
"""

import re
from typing import Dict, List, Optional, Tuple

from .exceptions import ProtocolError

HEADER_TERMINATOR = b'\r\n\r\n'
CRLF = b'\r\n'

_STATUS_LINE = re.compile(r'^(HTTP/1\.\d) (\d+)')


class HttpHeaders:
    """Status line and headers of an HTTP response"""

    def __init__(self, status_code: int, version: str, headers: Dict[str, str]):
        self.status_code = status_code
        self.version = version
        # keys are stored lower-cased
        self.headers = {key.lower(): value for key, value in headers.items()}

    def __repr__(self):
        return f"<HttpHeaders: {self.version} {self.status_code}>"

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(key.lower(), default)

    @property
    def is_chunked(self) -> bool:
        encoding = self.get('Transfer-Encoding', '')
        return 'chunked' in encoding.lower()

    @property
    def content_length(self) -> Optional[int]:
        value = self.get('Content-Length')
        if value is None:
            return None
        try:
            return int(value.strip())
        except ValueError:
            raise ProtocolError(f"Invalid Content-Length: {value}")

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def has_body(self) -> bool:
        """Whether the response carries a body at all"""
        if self.status_code in (204, 304) or 100 <= self.status_code < 200:
            return False
        return self.content_length != 0


def split_headers(buffer: bytes) -> Optional[Tuple[bytes, bytes]]:
    """
    Split a buffer into header block and remaining body bytes

    Returns:
        (header_block, rest) or None if the header block is not complete yet
    """
    index = buffer.find(HEADER_TERMINATOR)
    if index < 0:
        return None
    return buffer[:index], buffer[index + len(HEADER_TERMINATOR):]


def parse_headers(block: bytes) -> HttpHeaders:
    """
    Parse an HTTP response header block

    Args:
        block: Bytes up to (not including) the blank line

    Returns:
        HttpHeaders

    Raises:
        ProtocolError: If the status line or a header line is malformed
    """
    try:
        text = block.decode('latin-1')
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Undecodable headers: {e}")

    lines = text.split('\r\n')
    match = _STATUS_LINE.match(lines[0])
    if not match:
        raise ProtocolError(f"Invalid status line: {lines[0]!r}")

    headers = {}
    for line in lines[1:]:
        if not line:
            continue
        key, sep, value = line.partition(':')
        if not sep or not key.strip():
            raise ProtocolError(f"Invalid header line: {line!r}")
        headers[key.strip()] = value.strip()

    return HttpHeaders(int(match.group(2)), match.group(1), headers)


class ChunkDecoder:
    """
    Incremental decoder for chunked transfer encoding

    Bytes are fed in whatever pieces the socket delivers. Every call to
    feed() returns the payloads of all chunks completed by that call.
    Once the zero-size chunk and the trailer are consumed, ``finished``
    becomes true and any remaining bytes are ignored.
    """

    def __init__(self):
        self._buffer = b''
        self._chunk_size: Optional[int] = None
        self._in_trailer = False
        self.finished = False

    def feed(self, data: bytes) -> List[bytes]:
        if self.finished:
            return []
        self._buffer += data
        payloads = []

        while not self.finished:
            if self._in_trailer:
                if not self._consume_trailer():
                    break
                continue

            if self._chunk_size is None:
                index = self._buffer.find(CRLF)
                if index < 0:
                    if len(self._buffer) > 1024:
                        raise ProtocolError('Chunk size line too long')
                    break
                self._chunk_size = self._parse_size(self._buffer[:index])
                self._buffer = self._buffer[index + 2:]
                if self._chunk_size == 0:
                    self._in_trailer = True
                    continue

            # payload plus its CRLF
            needed = self._chunk_size + 2
            if len(self._buffer) < needed:
                break
            if self._buffer[self._chunk_size:needed] != CRLF:
                raise ProtocolError('Chunk payload not terminated by CRLF')
            payloads.append(self._buffer[:self._chunk_size])
            self._buffer = self._buffer[needed:]
            self._chunk_size = None

        return payloads

    def _consume_trailer(self) -> bool:
        """Consume trailer lines up to the blank line; False if more data needed"""
        index = self._buffer.find(CRLF)
        if index < 0:
            return False
        line = self._buffer[:index]
        self._buffer = self._buffer[index + 2:]
        if not line:
            self.finished = True
            self._buffer = b''
        return True

    @staticmethod
    def _parse_size(line: bytes) -> int:
        size_text = line.split(b';', 1)[0].strip()
        try:
            size = int(size_text, 16)
        except ValueError:
            raise ProtocolError(f"Invalid chunk size: {line!r}")
        if size < 0:
            raise ProtocolError(f"Invalid chunk size: {line!r}")
        return size


class LineBuffer:
    """Splits streamed data into newline-terminated lines"""

    def __init__(self):
        self._pending = b''

    def feed(self, data: bytes) -> List[bytes]:
        """Return the complete, non-empty lines; keep the trailing partial line"""
        self._pending += data
        *lines, self._pending = self._pending.split(b'\n')
        return [line.strip() for line in lines if line.strip()]

    def flush(self) -> List[bytes]:
        """Return whatever is left at end of stream"""
        rest, self._pending = self._pending.strip(), b''
        return [rest] if rest else []

"""
Docker event monitor
Follows GET /events and hands parsed events to a delegate
"""

import logging
from typing import Optional

from .events import Event
from .exceptions import InvalidJson, UnsupportedEvent
from .http_parser import LineBuffer
from .response_handler import CompleteMessage, DataMessage, ErrorMessage, Message

logger = logging.getLogger(__name__)


class EventMonitorDelegate:
    """Receiver of monitor callbacks. Both are called on the reader thread."""

    def handle_event(self, event: Event):
        pass

    def event_monitor_closed(self, error: Optional[Exception]):
        pass


class EventMonitor:
    """Streams daemon events until closed"""

    def __init__(self, http_client, delegate: EventMonitorDelegate):
        """
        Open the event stream

        Args:
            http_client: DockerHTTPClient to stream from
            delegate: Receives events and the closed notification

        Raises:
            DockerException: If the stream cannot be opened
        """
        self.delegate = delegate
        self.stopped = False
        self._lines = LineBuffer()
        self.connection = http_client.stream('GET', '/events', self.handle_message)
        logger.info('Event monitor started')

    def close(self):
        """Stop monitoring without notifying the delegate"""
        if self.stopped:
            return
        self.stopped = True
        if not self.connection.closed:
            self.connection.close()
        logger.info('Event monitor stopped')

    def handle_message(self, message: Message):
        if self.stopped:
            return
        if isinstance(message, DataMessage):
            for line in self._lines.feed(message.data):
                self.handle_line(line)
        elif isinstance(message, CompleteMessage):
            for line in self._lines.flush():
                self.handle_line(line)
            self._closed(None)
        elif isinstance(message, ErrorMessage):
            self._closed(message.error)

    def handle_line(self, line: bytes):
        try:
            event = Event.from_line(line)
        except (UnsupportedEvent, InvalidJson) as e:
            logger.warning(f"Ignoring event: {e}")
            return
        logger.debug(f"Event: {event}")
        self.delegate.handle_event(event)

    def _closed(self, error: Optional[Exception]):
        self.stopped = True
        if error is not None:
            logger.warning(f"Event monitor closed: {error}")
        else:
            logger.info('Event monitor closed by daemon')
        self.delegate.event_monitor_closed(error)

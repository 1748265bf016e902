"""
Tests for EventMonitor
"""

import threading
from unittest.mock import MagicMock

from rc2docker.docker_api.event_monitor import EventMonitor, EventMonitorDelegate
from rc2docker.docker_api.events import ContainerAction
from rc2docker.docker_api.exceptions import InternalError, NetworkError
from rc2docker.docker_api.response_handler import CompleteMessage, DataMessage, ErrorMessage


class RecordingDelegate(EventMonitorDelegate):
    def __init__(self):
        self.events = []
        self.closed = []
        self.closed_event = threading.Event()

    def handle_event(self, event):
        self.events.append(event)

    def event_monitor_closed(self, error):
        self.closed.append(error)
        self.closed_event.set()


def make_monitor():
    http_client = MagicMock()
    delegate = RecordingDelegate()
    monitor = EventMonitor(http_client, delegate)
    callback = http_client.stream.call_args[0][2]
    return monitor, delegate, callback, http_client


START = b'{"Type":"container","Action":"start","Actor":{"ID":"c1","Attributes":{"name":"rc2_compute"}}}\n'


class TestEventMonitor:
    """Tests for event stream handling"""

    def test_opens_event_stream(self):
        _, _, _, http_client = make_monitor()
        assert http_client.stream.call_args[0][:2] == ('GET', '/events')

    def test_event_split_across_chunks(self):
        _, delegate, callback, _ = make_monitor()
        callback(DataMessage(START[:20]))
        assert delegate.events == []
        callback(DataMessage(START[20:]))
        assert delegate.events[0].action == ContainerAction.START

    def test_unsupported_event_skipped(self):
        _, delegate, callback, _ = make_monitor()
        callback(DataMessage(b'{"Type":"container","Action":"teleport","Actor":{"ID":"x"}}\n' + START))
        assert len(delegate.events) == 1

    def test_close_notifies(self):
        _, delegate, callback, _ = make_monitor()
        callback(CompleteMessage())
        assert delegate.closed == [None]

    def test_error_notifies(self):
        _, delegate, callback, _ = make_monitor()
        error = NetworkError('reset')
        callback(ErrorMessage(error))
        assert delegate.closed == [error]

    def test_close_stops_delivery(self):
        monitor, delegate, callback, http_client = make_monitor()
        http_client.stream.return_value.closed = False
        monitor.close()
        http_client.stream.return_value.close.assert_called_once()
        callback(DataMessage(START))
        callback(CompleteMessage())
        assert delegate.events == []
        assert delegate.closed == []


class TestEventMonitorSocket:
    """EventMonitor against a fake daemon"""

    def test_stream(self, fake_daemon):
        from rc2docker.docker_api.http_client import DockerHTTPClient

        fake_daemon.route('GET', '/v1.27/events', [
            b'HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n',
            f"{len(START):x}\r\n".encode() + START + b'\r\n',
            b'0\r\n\r\n',
        ])
        delegate = RecordingDelegate()
        EventMonitor(DockerHTTPClient(base_url=fake_daemon.socket_path, timeout=5), delegate)
        assert delegate.closed_event.wait(5)
        assert [e.action for e in delegate.events] == [ContainerAction.START]
        assert delegate.closed == [None]

    def test_failing_delegate_closes_stream(self, fake_daemon):
        from rc2docker.docker_api.http_client import DockerHTTPClient

        class FailingDelegate(RecordingDelegate):
            def handle_event(self, event):
                raise KeyError(event.id)

        fake_daemon.route('GET', '/v1.27/events', [
            b'HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n',
            f"{len(START):x}\r\n".encode() + START + b'\r\n0\r\n\r\n',
        ])
        delegate = FailingDelegate()
        monitor = EventMonitor(DockerHTTPClient(base_url=fake_daemon.socket_path, timeout=5), delegate)
        assert delegate.closed_event.wait(5)
        assert len(delegate.closed) == 1
        assert isinstance(delegate.closed[0], InternalError)
        assert monitor.connection.closed

"""
Shared fixtures: settings in a temp dir and a fake Docker daemon on a Unix socket
"""

import os
import shutil
import socket
import socketserver
import tempfile
import threading

import pytest


class FakeDaemon:
    """
    Minimal HTTP server on a Unix socket

    Responses are looked up by (method, path without query); unmatched
    requests get a 404. Every request is recorded raw.
    """

    def __init__(self, socket_path):
        self.socket_path = socket_path
        self.routes = {}
        self.requests = []
        daemon = self

        class Handler(socketserver.BaseRequestHandler):
            def handle(self):
                data = b''
                while b'\r\n\r\n' not in data:
                    chunk = self.request.recv(4096)
                    if not chunk:
                        return
                    data += chunk
                head, _, body = data.partition(b'\r\n\r\n')
                lines = head.decode('latin-1').split('\r\n')
                method, target, _ = lines[0].split(' ')
                headers = {}
                for line in lines[1:]:
                    key, _, value = line.partition(':')
                    headers[key.strip().lower()] = value.strip()
                length = int(headers.get('content-length', 0))
                while len(body) < length:
                    body += self.request.recv(4096)
                daemon.requests.append({'method': method, 'target': target,
                                        'headers': headers, 'body': body})
                path = target.split('?', 1)[0]
                response = daemon.routes.get((method, path))
                if response is None:
                    response = (b'HTTP/1.1 404 Not Found\r\nContent-Type: application/json\r\n'
                                b'Content-Length: 29\r\n\r\n{"message":"page not found"}\n')
                for piece in (response if isinstance(response, list) else [response]):
                    self.request.sendall(piece)

        self.server = socketserver.ThreadingUnixStreamServer(socket_path, Handler)
        self.server.daemon_threads = True
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    def route(self, method, path, response):
        self.routes[(method, path)] = response

    def json_route(self, method, path, body, status='200 OK'):
        payload = body.encode('utf-8') if isinstance(body, str) else body
        self.route(method, path, (
            f"HTTP/1.1 {status}\r\nContent-Type: application/json\r\n"
            f"Content-Length: {len(payload)}\r\n\r\n").encode('latin-1') + payload)

    def start(self):
        self.thread.start()

    def stop(self):
        self.server.shutdown()
        self.server.server_close()


@pytest.fixture
def fake_daemon():
    if not hasattr(socket, 'AF_UNIX'):
        pytest.skip('Unix sockets not available')
    # AF_UNIX paths are short, keep the directory near the root
    directory = tempfile.mkdtemp(prefix='rc2', dir='/tmp')
    daemon = FakeDaemon(os.path.join(directory, 'd.sock'))
    daemon.start()
    yield daemon
    daemon.stop()
    shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture
def settings(tmp_path):
    from rc2docker.settings_manager import SettingsManager

    return SettingsManager(settings_file=str(tmp_path / 'settings.json'))


@pytest.fixture(scope='session')
def qt_app():
    QtCore = pytest.importorskip('PyQt6.QtCore')
    app = QtCore.QCoreApplication.instance() or QtCore.QCoreApplication([])
    yield app

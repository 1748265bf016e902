"""
Tests for DockerClient against a fake daemon
"""

import json
import struct
import threading
from unittest.mock import MagicMock, patch

import httpx
import pytest

from rc2docker.docker_api.client import DockerClient, StreamDemuxer, parse_docker_chunk
from rc2docker.docker_api.containers import Container, ContainerOperation, ContainerState, ContainerType
from rc2docker.docker_api.exceptions import Conflict, ExecFailed, InvalidJson, NetworkError
from rc2docker.docker_api.images import DockerImage


def frame(stream_type, payload):
    return struct.pack('>BxxxL', stream_type, len(payload)) + payload


def status_response(status, body=b''):
    return (f"HTTP/1.1 {status}\r\nContent-Type: application/json\r\n"
            f"Content-Length: {len(body)}\r\n\r\n").encode('latin-1') + body


@pytest.fixture
def client(fake_daemon):
    return DockerClient(base_url=fake_daemon.socket_path, timeout=5, sleep=lambda s: None)


class TestParseDockerChunk:
    """Tests for stdout/stderr demultiplexing"""

    def test_frames(self):
        data = frame(1, b'out\n') + frame(2, b'err\n') + frame(1, b'more')
        assert parse_docker_chunk(data) == [(1, b'out\n'), (2, b'err\n'), (1, b'more')]

    def test_unframed_output(self):
        assert parse_docker_chunk(b'plain text output') == [(1, b'plain text output')]

    def test_empty(self):
        assert parse_docker_chunk(b'') == []

    def test_demuxer_partial_frames(self):
        data = frame(1, b'hello') + frame(2, b'oops')
        demuxer = StreamDemuxer()
        frames = []
        for i in range(0, len(data), 3):
            frames.extend(demuxer.feed(data[i:i + 3]))
        assert frames == [(1, b'hello'), (2, b'oops')]


class TestDockerClient:
    """Tests for the typed API"""

    def test_version(self, fake_daemon, client):
        fake_daemon.json_route('GET', '/v1.27/version', '{"Version":"18.03.1-ce","ApiVersion":"1.37"}')
        version = client.version()
        assert (version.major, version.minor, version.fix) == (18, 3, 1)

    def test_refresh_containers(self, fake_daemon, client):
        fake_daemon.json_route('GET', '/v1.27/containers/json', json.dumps([
            {'Id': 'c1', 'Names': ['/rc2_dbserver'], 'ImageID': 'sha256:db', 'State': 'running'},
            {'Id': 'c2', 'Names': ['/unrelated'], 'ImageID': 'sha256:x', 'State': 'running'},
        ]))
        containers = client.refresh_containers()
        assert [c.type for c in containers] == [ContainerType.DBSERVER]
        assert containers[0].state == ContainerState.RUNNING
        target = fake_daemon.requests[0]['target']
        assert 'all=1' in target
        assert 'rc2.live' in target

    def test_load_images_filters(self, fake_daemon, client):
        fake_daemon.json_route('GET', '/v1.27/images/json', json.dumps([
            {'Id': 'sha256:1', 'RepoTags': ['rc2server/compute:1'], 'Labels': {'io.rc2.type': 'compute'}},
            {'Id': 'sha256:2', 'RepoTags': ['<none>:<none>'], 'Labels': {'io.rc2.type': 'compute'}},
            {'Id': 'sha256:3', 'RepoTags': ['ubuntu:18.04'], 'Labels': None},
        ]))
        assert [i.id for i in client.load_images()] == ['sha256:1']

    @pytest.mark.parametrize('status', ['201 Created', '204 No Content'])
    def test_create_volume_success(self, fake_daemon, client, status):
        fake_daemon.route('POST', '/v1.27/volumes/create', status_response(status))
        client.create_volume('rc2_dbdata')
        assert json.loads(fake_daemon.requests[0]['body']) == {'Name': 'rc2_dbdata'}

    def test_create_network_conflict(self, fake_daemon, client):
        fake_daemon.route('POST', '/v1.27/networks/create',
                          status_response('409 Conflict', b'{"message":"network exists"}'))
        with pytest.raises(Conflict):
            client.create_network('rc2server')

    def test_exists_checks(self, fake_daemon, client):
        fake_daemon.json_route('GET', '/v1.27/volumes', '{"Volumes":[{"Name":"rc2_dbdata"}]}')
        fake_daemon.json_route('GET', '/v1.27/networks', '[{"Name":"bridge"}]')
        assert client.volume_exists('rc2_dbdata')
        assert not client.volume_exists('rc2_userlib')
        assert not client.network_exists('rc2server')

    def test_create_container(self, fake_daemon, client):
        fake_daemon.route('POST', '/v1.27/containers/create',
                          status_response('201 Created', b'{"Id":"new1","Warnings":[]}'))
        container = Container(ContainerType.COMPUTE, {'Image': 'rc2server/compute:1'})
        assert client.create_container(container) == 'new1'
        assert 'name=rc2_compute' in fake_daemon.requests[0]['target']

    def test_create_container_conflict(self, fake_daemon, client):
        fake_daemon.route('POST', '/v1.27/containers/create',
                          status_response('409 Conflict', b'{"message":"name in use"}'))
        with pytest.raises(Conflict):
            client.create_container(Container(ContainerType.COMPUTE))

    def test_perform_already_done(self, fake_daemon, client):
        fake_daemon.route('POST', '/v1.27/containers/rc2_compute/start',
                          b'HTTP/1.1 304 Not Modified\r\n\r\n')
        client.perform(ContainerOperation.START, Container(ContainerType.COMPUTE))

    def test_remove_missing_container(self, fake_daemon, client):
        client.remove_container(Container(ContainerType.COMPUTE))
        assert fake_daemon.requests[0]['method'] == 'DELETE'

    def test_remove_missing_image(self, fake_daemon, client):
        client.remove_image(DockerImage('sha256:gone', []))
        assert fake_daemon.requests[0]['target'].startswith('/v1.27/images/sha256:gone')

    def exec_routes(self, fake_daemon, output, exit_code):
        fake_daemon.route('POST', '/v1.27/containers/rc2_dbserver/exec',
                          status_response('201 Created', b'{"Id":"e1"}'))
        fake_daemon.route('POST', '/v1.27/exec/e1/start', [
            b'HTTP/1.1 200 OK\r\nContent-Type: application/vnd.docker.raw-stream\r\n\r\n',
            output,
        ])
        fake_daemon.json_route('GET', '/v1.27/exec/e1/json',
                               json.dumps({'Running': False, 'ExitCode': exit_code}))

    def test_execute(self, fake_daemon, client):
        self.exec_routes(fake_daemon, frame(1, b'id\n') + frame(2, b'warning\n') + frame(1, b'1\n'), 0)
        exit_code, output = client.execute(['psql'], Container(ContainerType.DBSERVER))
        assert exit_code == 0
        assert output == b'id\n1\n'
        exec_body = json.loads(fake_daemon.requests[0]['body'])
        assert exec_body == {'AttachStdout': True, 'AttachStderr': True, 'Tty': False, 'Cmd': ['psql']}
        assert fake_daemon.requests[1]['headers']['accept'] == 'application/vnd.docker.raw-stream'

    def test_execute_sync_failure(self, fake_daemon, client):
        self.exec_routes(fake_daemon, frame(2, b'no such db\n'), 1)
        with pytest.raises(ExecFailed) as info:
            client.execute_sync(['pg_dump'], Container(ContainerType.DBSERVER))
        assert info.value.exit_code == 1

    def test_exec_poll_gives_up(self):
        client = DockerClient(base_url='/nonexistent.sock', sleep=lambda s: None)
        client.http = MagicMock()
        client.http.get.return_value = {'Running': True, 'ExitCode': None}
        with pytest.raises(ExecFailed):
            client.exec_exit_code('e1')
        assert client.http.get.call_count == client.exec_poll_attempts

    def test_fetch_log(self, fake_daemon, client):
        fake_daemon.route('GET', '/v1.27/containers/rc2_appserver/logs', [
            b'HTTP/1.1 200 OK\r\nContent-Type: application/vnd.docker.raw-stream\r\n\r\n',
            frame(1, b'started\n') + frame(2, b'warned\n'),
        ])
        assert client.fetch_log(Container(ContainerType.APPSERVER)) == 'started\nwarned\n'

    def test_stream_log(self, fake_daemon, client):
        data = frame(1, b'hello\n') + frame(2, b'oops\n')
        fake_daemon.route('GET', '/v1.27/containers/rc2_compute/logs', [
            b'HTTP/1.1 200 OK\r\nContent-Type: application/vnd.docker.raw-stream\r\n\r\n',
            data[:5], data[5:15], data[15:],
        ])
        lines = []
        ended = threading.Event()

        def on_log(text, is_stderr):
            lines.append((text, is_stderr))
            if text is None:
                ended.set()

        client.stream_log(Container(ContainerType.COMPUTE), on_log)
        assert ended.wait(5)
        assert lines == [('hello\n', False), ('oops\n', True), (None, False)]
        assert 'follow=1' in fake_daemon.requests[0]['target']


class TestFetchJson:
    """Tests for fetching the published image manifest"""

    def test_success(self):
        client = DockerClient(base_url='/nonexistent.sock')
        response = httpx.Response(200, json={'version': 2},
                                  request=httpx.Request('GET', 'https://www.rc2.io/imageInfo.json'))
        with patch('httpx.Client.get', return_value=response):
            assert client.fetch_json('https://www.rc2.io/imageInfo.json') == {'version': 2}

    def test_http_error(self):
        client = DockerClient(base_url='/nonexistent.sock')
        response = httpx.Response(404, request=httpx.Request('GET', 'https://www.rc2.io/imageInfo.json'))
        with patch('httpx.Client.get', return_value=response):
            with pytest.raises(NetworkError):
                client.fetch_json('https://www.rc2.io/imageInfo.json')

    def test_timeout(self):
        client = DockerClient(base_url='/nonexistent.sock')
        with patch('httpx.Client.get', side_effect=httpx.ConnectTimeout('slow')):
            with pytest.raises(NetworkError):
                client.fetch_json('https://www.rc2.io/imageInfo.json')

    def test_invalid_json(self):
        client = DockerClient(base_url='/nonexistent.sock')
        response = httpx.Response(200, content=b'<html>',
                                  request=httpx.Request('GET', 'https://www.rc2.io/imageInfo.json'))
        with patch('httpx.Client.get', return_value=response):
            with pytest.raises(InvalidJson):
                client.fetch_json('https://www.rc2.io/imageInfo.json')

"""
Tests for the bounded and hijacked response handlers
"""

import pytest

from rc2docker.docker_api.exceptions import (
    AlreadyInProgress, APIError, Conflict, IncompleteResponse, InternalError, NetworkError, NoSuchObject,
    ProtocolError,
)
from rc2docker.docker_api.response_handler import (
    CompleteMessage, DataMessage, ErrorMessage, HeadersMessage, HijackedResponseHandler,
    SingleDataResponseHandler,
)

CHUNKED_HEAD = b'HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n'


def run(handler_class, pieces, eof=True):
    messages = []
    handler = handler_class(messages.append)
    for piece in pieces:
        handler.feed(piece)
    if eof:
        handler.feed_eof()
    return messages


def byte_pieces(data):
    return [data[i:i + 1] for i in range(len(data))]


def body_messages(messages):
    return [m for m in messages if not isinstance(m, HeadersMessage)]


class TestSingleDataResponseHandler:
    """Tests for SingleDataResponseHandler"""

    def test_chunked_whole(self):
        messages = body_messages(run(SingleDataResponseHandler, [CHUNKED_HEAD + b'4\r\nWiki\r\n0\r\n\r\n']))
        assert isinstance(messages[0], DataMessage)
        assert messages[0].data == b'Wiki'
        assert isinstance(messages[1], CompleteMessage)
        assert len(messages) == 2

    def test_chunked_byte_by_byte(self):
        response = CHUNKED_HEAD + b'4\r\nWiki\r\n5\r\npedia\r\n0\r\n\r\n'
        messages = body_messages(run(SingleDataResponseHandler, byte_pieces(response)))
        assert [type(m) for m in messages] == [DataMessage, CompleteMessage]
        assert messages[0].data == b'Wikipedia'

    def test_headers_message_first(self):
        messages = run(SingleDataResponseHandler, [CHUNKED_HEAD + b'0\r\n\r\n'])
        assert isinstance(messages[0], HeadersMessage)
        assert messages[0].headers.status_code == 200

    def test_content_length(self):
        response = b'HTTP/1.1 200 OK\r\nContent-Length: 11\r\n\r\n{"Id":"ab"}'
        messages = body_messages(run(SingleDataResponseHandler, [response[:30], response[30:]], eof=False))
        assert messages[0].data == b'{"Id":"ab"}'
        assert isinstance(messages[1], CompleteMessage)

    def test_raw_stream_reads_to_eof(self):
        response = b'HTTP/1.1 200 OK\r\nContent-Type: application/vnd.docker.raw-stream\r\n\r\n'
        messages = body_messages(run(SingleDataResponseHandler, [response, b'abc', b'def']))
        assert messages[0].data == b'abcdef'
        assert isinstance(messages[1], CompleteMessage)

    def test_premature_eof_is_error(self):
        messages = body_messages(run(SingleDataResponseHandler, [CHUNKED_HEAD + b'4\r\nWi']))
        assert len(messages) == 1
        assert isinstance(messages[0].error, IncompleteResponse)

    def test_eof_before_headers(self):
        messages = run(SingleDataResponseHandler, [b'HTTP/1.1 200'])
        assert isinstance(messages[0].error, IncompleteResponse)

    def test_no_content(self):
        messages = body_messages(run(SingleDataResponseHandler, [b'HTTP/1.1 204 No Content\r\n\r\n'], eof=False))
        assert [type(m) for m in messages] == [CompleteMessage]

    @pytest.mark.parametrize('status,error_class', [
        (b'404 Not Found', NoSuchObject),
        (b'409 Conflict', Conflict),
        (b'500 Server Error', APIError),
    ])
    def test_error_status_collects_body(self, status, error_class):
        body = b'{"message":"boom"}'
        response = (b'HTTP/1.1 ' + status + b'\r\nContent-Length: '
                    + str(len(body)).encode() + b'\r\n\r\n' + body)
        messages = body_messages(run(SingleDataResponseHandler, [response], eof=False))
        assert len(messages) == 1
        error = messages[0].error
        assert type(error) is error_class
        assert 'boom' in str(error)

    def test_not_modified(self):
        messages = body_messages(run(SingleDataResponseHandler, [b'HTTP/1.1 304 Not Modified\r\n\r\n'], eof=False))
        assert isinstance(messages[0].error, AlreadyInProgress)

    def test_chunked_error_body(self):
        response = (b'HTTP/1.1 404 Not Found\r\nTransfer-Encoding: chunked\r\n\r\n'
                    b'16\r\n{"message":"no such"}\n\r\n0\r\n\r\n')
        messages = body_messages(run(SingleDataResponseHandler, [response]))
        assert len(messages) == 1
        assert isinstance(messages[0].error, NoSuchObject)
        assert str(messages[0].error) == 'no such'

    def test_malformed_chunk_header(self):
        messages = body_messages(run(SingleDataResponseHandler, [CHUNKED_HEAD + b'xyz\r\n']))
        assert len(messages) == 1
        assert isinstance(messages[0].error, ProtocolError)

    def test_malformed_status_line(self):
        messages = run(SingleDataResponseHandler, [b'garbage\r\n\r\n'])
        assert len(messages) == 1
        assert isinstance(messages[0].error, ProtocolError)

    def test_transport_error(self):
        messages = []
        handler = SingleDataResponseHandler(messages.append)
        handler.feed(CHUNKED_HEAD)
        handler.feed_error(NetworkError('reset'))
        handler.feed_error(NetworkError('again'))
        handler.feed_eof()
        errors = [m for m in messages if isinstance(m, ErrorMessage)]
        assert len(errors) == 1
        assert handler.done


class TestHijackedResponseHandler:
    """Tests for HijackedResponseHandler"""

    def test_emits_each_chunk(self):
        response = CHUNKED_HEAD + b'4\r\nWiki\r\n5\r\npedia\r\n0\r\n\r\n'
        messages = body_messages(run(HijackedResponseHandler, [response], eof=False))
        assert [m.data for m in messages if isinstance(m, DataMessage)] == [b'Wiki', b'pedia']
        assert isinstance(messages[-1], CompleteMessage)

    def test_byte_by_byte(self):
        response = CHUNKED_HEAD + b'4\r\nWiki\r\n0\r\n\r\n'
        messages = body_messages(run(HijackedResponseHandler, byte_pieces(response), eof=False))
        assert [type(m) for m in messages] == [DataMessage, CompleteMessage]
        assert messages[0].data == b'Wiki'

    def test_eof_completes_stream(self):
        messages = body_messages(run(HijackedResponseHandler, [CHUNKED_HEAD + b'4\r\nWiki\r\n']))
        assert [type(m) for m in messages] == [DataMessage, CompleteMessage]

    def test_raw_passthrough(self):
        response = b'HTTP/1.1 200 OK\r\n\r\n'
        messages = body_messages(run(HijackedResponseHandler, [response, b'one', b'two']))
        assert [m.data for m in messages if isinstance(m, DataMessage)] == [b'one', b'two']
        assert isinstance(messages[-1], CompleteMessage)

    def test_nothing_after_terminal(self):
        messages = []
        handler = HijackedResponseHandler(messages.append)
        handler.feed(CHUNKED_HEAD + b'0\r\n\r\n')
        handler.feed(b'4\r\nmore\r\n')
        handler.feed_eof()
        assert [type(m) for m in messages] == [HeadersMessage, CompleteMessage]

    def test_error_status(self):
        response = (b'HTTP/1.1 404 Not Found\r\nContent-Length: 27\r\n\r\n'
                    b'{"message":"no such image"}')
        messages = body_messages(run(HijackedResponseHandler, [response], eof=False))
        assert len(messages) == 1
        assert isinstance(messages[0].error, NoSuchObject)

    def test_failing_callback_ends_stream(self):
        messages = []

        def callback(message):
            messages.append(message)
            if isinstance(message, DataMessage):
                raise ValueError('bad payload')

        handler = HijackedResponseHandler(callback)
        handler.feed(CHUNKED_HEAD + b'4\r\nWiki\r\n5\r\npedia\r\n')
        handler.feed_eof()
        assert handler.done
        assert [type(m) for m in messages] == [HeadersMessage, DataMessage, ErrorMessage]
        assert isinstance(messages[-1].error, InternalError)

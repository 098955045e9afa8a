"""Tests for the HTTP transport (requests is mocked)."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from patchstream.mode import select_mode
from patchstream.session import SessionState, StreamSession
from patchstream.transport.base import TransportError
from patchstream.transport.http import HttpTransport
from patchstream.tree import Element, Tree


LINES = [
    b'{"op":"set","path":"/root","value":"card-1"}\n{"op":"set","pa',
    b'th":"/elements/card-1","value":{"key":"card-1","type":"Card","props":{}}}\n',
]


def _response(chunks=None, status=200, error=None):
    resp = MagicMock()
    resp.status_code = status
    resp.raise_for_status = MagicMock()
    if status >= 400:
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError(str(status))

    def _iter_content(chunk_size=None, decode_unicode=False):
        for chunk in chunks or []:
            yield chunk
        if error is not None:
            raise error

    resp.iter_content.side_effect = _iter_content
    return resp


class TestOpen:
    @patch("patchstream.transport.http.requests.post")
    def test_posts_request_payload(self, mock_post):
        mock_post.return_value = _response(LINES)
        transport = HttpTransport("http://producer/api", api_key="k",
                                  headers={"X-Trace": "1"},
                                  connect_timeout=3, read_timeout=30)
        base = Tree(root="a", elements={"a": Element(key="a", type="Text")})
        stream = transport.open(select_mode("change it", base))

        args, kwargs = mock_post.call_args
        assert args == ("http://producer/api",)
        assert kwargs["stream"] is True
        assert kwargs["timeout"] == (3, 30)
        assert kwargs["json"]["prompt"] == "change it"
        assert kwargs["json"]["mode"] == "delta"
        assert kwargs["json"]["baseTree"]["root"] == "a"
        assert kwargs["headers"]["Authorization"] == "Bearer k"
        assert kwargs["headers"]["X-Trace"] == "1"
        assert list(stream) == LINES
        assert stream.bytes_read == sum(len(c) for c in LINES)

    @patch("patchstream.transport.http.requests.post")
    def test_no_auth_header_without_key(self, mock_post):
        mock_post.return_value = _response([])
        HttpTransport("http://producer/api").open(select_mode("p"))
        assert "Authorization" not in mock_post.call_args.kwargs["headers"]

    @patch("patchstream.transport.http.requests.post")
    def test_error_status(self, mock_post):
        resp = _response(status=500)
        mock_post.return_value = resp
        with pytest.raises(TransportError) as exc_info:
            HttpTransport("http://producer/api").open(select_mode("p"))
        assert exc_info.value.status_code == 500
        resp.close.assert_called()

    @patch("patchstream.transport.http.requests.post",
           side_effect=requests.exceptions.ConnectionError("refused"))
    def test_connection_error(self, mock_post):
        with pytest.raises(TransportError) as exc_info:
            HttpTransport("http://producer/api").open(select_mode("p"))
        assert exc_info.value.status_code is None

    @patch("patchstream.transport.http.requests.post",
           side_effect=TypeError("Object of type set is not JSON serializable"))
    def test_unserializable_body(self, mock_post):
        base = Tree(root="a", elements={
            "a": Element(key="a", type="Text", props={"tags": {"x"}})})
        with pytest.raises(TransportError) as exc_info:
            HttpTransport("http://producer/api").open(select_mode("edit", base))
        assert "Cannot encode request" in str(exc_info.value)
        assert exc_info.value.status_code is None


class TestStream:
    @patch("patchstream.transport.http.requests.post")
    def test_broken_stream_raises(self, mock_post):
        mock_post.return_value = _response(
            LINES[:1], error=requests.exceptions.ChunkedEncodingError("reset"))
        stream = HttpTransport("http://producer/api").open(select_mode("p"))
        received = []
        with pytest.raises(TransportError):
            for chunk in stream:
                received.append(chunk)
        assert received == LINES[:1]

    @patch("patchstream.transport.http.requests.post")
    def test_read_error_after_close_is_quiet(self, mock_post):
        resp = _response(LINES, error=AttributeError("'NoneType' has no attribute 'read'"))
        mock_post.return_value = resp
        stream = HttpTransport("http://producer/api").open(select_mode("p"))
        received = []
        for chunk in stream:
            received.append(chunk)
            stream.close()
        assert received == LINES[:1]
        resp.close.assert_called()

    @patch("patchstream.transport.http.requests.post")
    def test_close_is_idempotent(self, mock_post):
        resp = _response([])
        mock_post.return_value = resp
        stream = HttpTransport("http://producer/api").open(select_mode("p"))
        stream.close()
        stream.close()
        assert resp.close.call_count == 1


class TestSessionOverHttp:
    @patch("patchstream.transport.http.requests.post")
    def test_session_completes(self, mock_post):
        mock_post.return_value = _response(LINES)
        session = StreamSession(HttpTransport("http://producer/api"))
        tree = session.start("make a card")
        assert session.state is SessionState.COMPLETED
        assert tree.root == "card-1"
        assert tree.elements["card-1"].type == "Card"

    @patch("patchstream.transport.http.requests.post")
    def test_session_errors_on_dropped_connection(self, mock_post):
        mock_post.return_value = _response(
            LINES[:1], error=requests.exceptions.ChunkedEncodingError("reset"))
        errors = []
        session = StreamSession(HttpTransport("http://producer/api"),
                                on_error=lambda exc, tree: errors.append(tree))
        tree = session.start("make a card")
        assert session.state is SessionState.ERRORED
        assert tree.root == "card-1"
        assert errors == [tree]

    @patch("patchstream.transport.http.requests.post",
           side_effect=ValueError("Out of range float values are not JSON compliant"))
    def test_session_errors_on_unserializable_base(self, mock_post):
        base = Tree(root="a", elements={
            "a": Element(key="a", type="Gauge", props={"value": float("nan")})})
        errors = []
        session = StreamSession(HttpTransport("http://producer/api"),
                                on_error=lambda exc, tree: errors.append(exc))
        tree = session.start("raise the gauge", base)
        assert session.state is SessionState.ERRORED
        assert isinstance(session.error, TransportError)
        assert errors == [session.error]
        assert tree.root == "a"

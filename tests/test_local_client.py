"""
Unit tests for the local agent client.
"""

import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest.mock import patch

import pytest
import requests

from meshsync.local.client import (
    LocalAgentClient,
    LocalAgentError,
    LocalAgentNotConfiguredError,
)

from conftest import make_peer


def make_response(status_code: int = 200, body=None, text: str = "") -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    if body is not None:
        response._content = json.dumps(body).encode()
    else:
        response._content = text.encode()
    response.url = "http://10.0.0.1:8080/peers"
    return response


@pytest.fixture
def client():
    client = LocalAgentClient(base_url="http://10.0.0.1:8080/", server_token="s3cret")
    yield client
    client.close()


class TestLocalAgentClient:
    """Tests for LocalAgentClient."""

    def test_not_configured(self):
        """Test a missing base URL short-circuits every call."""
        with LocalAgentClient() as client:
            assert client.is_configured is False

            with pytest.raises(LocalAgentNotConfiguredError, match="Local server not configured"):
                client.fetch_all()

    def test_token_header(self, client: LocalAgentClient):
        """Test the shared secret header is sent."""
        assert client._session.headers["x-server-token"] == "s3cret"
        assert "s3cret" not in repr(client)

    def test_no_token_header_without_secret(self):
        """Test the header is absent when no secret is configured."""
        with LocalAgentClient(base_url="http://10.0.0.1:8080") as client:
            assert LocalAgentClient.TOKEN_HEADER not in client._session.headers

    def test_fetch_all(self, client: LocalAgentClient, peer_response: dict):
        """Test fetching the peer list."""
        with patch.object(
            client._session, "request", return_value=make_response(200, [peer_response])
        ) as request:
            peers = client.fetch_all()

        assert [p.id for p in peers] == ["peer-1"]
        kwargs = request.call_args.kwargs
        assert kwargs["method"] == "GET"
        assert kwargs["url"] == "http://10.0.0.1:8080/peers"

    def test_fetch_all_invalid_json(self, client: LocalAgentClient):
        """Test a non-JSON body is an error."""
        with patch.object(
            client._session, "request", return_value=make_response(200, text="<html>")
        ):
            with pytest.raises(LocalAgentError, match="invalid JSON"):
                client.fetch_all()

    def test_error_body_is_detail(self, client: LocalAgentClient):
        """Test non-2xx responses carry the body as detail."""
        with patch.object(
            client._session, "request",
            return_value=make_response(403, text="invalid server token"),
        ):
            with pytest.raises(LocalAgentError, match=r"\(403\): invalid server token") as exc_info:
                client.fetch_all()

        assert exc_info.value.status_code == 403

    def test_network_error(self, client: LocalAgentClient):
        """Test connection failures are wrapped."""
        with patch.object(
            client._session, "request",
            side_effect=requests.exceptions.ConnectTimeout("timed out"),
        ):
            with pytest.raises(LocalAgentError, match="unreachable"):
                client.fetch_all()

    def test_create_posts_peer(self, client: LocalAgentClient, sample_peer):
        """Test create POSTs the full record."""
        with patch.object(client._session, "request", return_value=make_response(201, {})) as request:
            client.create(sample_peer)

        kwargs = request.call_args.kwargs
        assert kwargs["method"] == "POST"
        assert kwargs["url"] == "http://10.0.0.1:8080/peers"
        assert kwargs["json"]["private_key"] == sample_peer.private_key

    def test_update_puts_to_peer_url(self, client: LocalAgentClient):
        """Test update PUTs to the peer's own URL."""
        peer = make_peer("abc")

        with patch.object(client._session, "request", return_value=make_response(200, {})) as request:
            client.update(peer)

        kwargs = request.call_args.kwargs
        assert kwargs["method"] == "PUT"
        assert kwargs["url"] == "http://10.0.0.1:8080/peers/abc"

    def test_update_encodes_peer_id(self, client: LocalAgentClient):
        """Test ids with reserved characters stay one path segment."""
        peer = make_peer("site/a b")

        with patch.object(client._session, "request", return_value=make_response(200, {})) as request:
            client.update(peer)

        assert request.call_args.kwargs["url"] == "http://10.0.0.1:8080/peers/site%2Fa%20b"

    def test_fetch_all_rejects_malformed_row(self, client: LocalAgentClient, peer_response: dict):
        """Test a row that cannot be parsed fails the fetch instead of vanishing."""
        peer_response["transfer_rx"] = "n/a"

        with patch.object(
            client._session, "request", return_value=make_response(200, [peer_response])
        ):
            with pytest.raises(LocalAgentError, match="malformed peer row"):
                client.fetch_all()


class FailingAgentHandler(BaseHTTPRequestHandler):
    """Answers every request with a 500 and a plain-text reason."""

    BODY = b"wg0 interface down"
    requests_seen = 0

    def do_GET(self):
        type(self).requests_seen += 1
        self.send_response(500)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(self.BODY)))
        self.end_headers()
        self.wfile.write(self.BODY)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def failing_agent():
    FailingAgentHandler.requests_seen = 0
    server = ThreadingHTTPServer(("127.0.0.1", 0), FailingAgentHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


class TestServerErrors:
    """Tests through the real HTTP adapter and its retry policy."""

    def test_exhausted_retries_keep_status_and_body(self, failing_agent: str):
        """Test a persistent 500 is reported as an HTTP error with its body."""
        client = LocalAgentClient(base_url=failing_agent, max_retries=1, timeout=5)
        client._session.trust_env = False

        with client:
            with pytest.raises(LocalAgentError) as exc_info:
                client.fetch_all()

        error = exc_info.value
        assert error.status_code == 500
        assert "wg0 interface down" in str(error)
        assert "unreachable" not in str(error)
        assert FailingAgentHandler.requests_seen == 2

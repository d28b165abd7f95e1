"""Tests for the scrape, push and delete HTTP operations."""
import base64
import time

import httpx
import pytest

from push_proxy import gateway
from push_proxy.errors import CleanupError, PushError, ScrapeError, TransportError

from conftest import GATEWAY, TARGET, SlowStream

PUSH_URL = f"{GATEWAY}/metrics/job/batch/instance/pod-7"


def test_scrape_returns_open_stream(servers, client):
    servers.target_body = b"# metric_a 1\nmetric_b 2\n"
    response = gateway.scrape(client, TARGET, timeout=1.0)
    try:
        assert response.status_code == 200
        assert b"".join(response.iter_bytes()) == b"# metric_a 1\nmetric_b 2\n"
    finally:
        response.close()
    assert servers.requests[0].method == "GET"
    assert "authorization" not in servers.requests[0].headers


def test_scrape_non_200_raises_with_status_and_body(servers, client):
    servers.target_status = 503
    servers.target_body = b"unavailable"
    with pytest.raises(ScrapeError) as exc_info:
        gateway.scrape(client, TARGET)
    assert exc_info.value.status == 503
    assert exc_info.value.body == "unavailable"
    assert "503" in str(exc_info.value)


def test_scrape_transport_failure(servers, client):
    servers.fail_target = True
    with pytest.raises(TransportError):
        gateway.scrape(client, TARGET)


def test_push_sends_plain_text_body(servers, client):
    status = gateway.push(client, PUSH_URL, [b"# metric_a ", b"1\n"])
    assert status == 202
    post = servers.by_method("POST")[0]
    assert str(post.url) == PUSH_URL
    assert post.headers["content-type"] == "text/plain"
    assert post.content == b"# metric_a 1\n"
    assert "authorization" not in post.headers


def test_push_basic_auth(servers, client):
    gateway.push(client, PUSH_URL, b"x 1\n", auth=("user", "secret"))
    post = servers.by_method("POST")[0]
    expected = "Basic " + base64.b64encode(b"user:secret").decode()
    assert post.headers["authorization"] == expected


def test_push_non_2xx_raises(servers, client):
    servers.gateway_status = 400
    servers.gateway_body = b"text format parsing error"
    with pytest.raises(PushError) as exc_info:
        gateway.push(client, PUSH_URL, b"bad")
    assert exc_info.value.status == 400
    assert exc_info.value.url == PUSH_URL
    assert "parsing error" in exc_info.value.body


def test_push_transport_failure():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with httpx.Client(transport=httpx.MockTransport(handler)) as c:
        with pytest.raises(TransportError):
            gateway.push(c, PUSH_URL, b"x 1\n")


def test_delete_success(servers, client):
    assert gateway.delete(client, PUSH_URL, auth=("u", "p"), timeout=2.0) == 202
    req = servers.by_method("DELETE")[0]
    assert str(req.url) == PUSH_URL
    assert req.content == b""
    assert req.headers["authorization"].startswith("Basic ")


def test_delete_failure_raises_cleanup_error(servers, client):
    servers.delete_status = 500
    with pytest.raises(CleanupError) as exc_info:
        gateway.delete(client, PUSH_URL)
    assert exc_info.value.status == 500


def test_delete_transport_failure_raises_cleanup_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with httpx.Client(transport=httpx.MockTransport(handler)) as c:
        with pytest.raises(CleanupError):
            gateway.delete(c, PUSH_URL)


def test_scrape_body_read_is_bounded_by_deadline(servers, client):
    """A target trickling bytes fails once the total budget is spent."""
    servers.target_stream = SlowStream([b"x"] * 20, delay=0.05)
    started = time.monotonic()
    response = gateway.scrape(client, TARGET, timeout=0.2)
    try:
        with pytest.raises(TransportError, match="deadline"):
            b"".join(response.iter_bytes())
    finally:
        response.close()
    assert time.monotonic() - started < 0.6


def test_push_upload_is_bounded_by_deadline(servers, client):
    def slow_body():
        for _ in range(20):
            time.sleep(0.05)
            yield b"x 1\n"

    started = time.monotonic()
    with pytest.raises(TransportError, match="deadline"):
        gateway.push(client, PUSH_URL, slow_body(), timeout=0.2)
    assert time.monotonic() - started < 0.6


def test_push_shares_deadline_with_scrape(servers, client):
    deadline = gateway.Deadline(0.2)
    time.sleep(0.25)
    with pytest.raises(TransportError, match="deadline"):
        gateway.push(client, PUSH_URL, b"x 1\n", deadline=deadline)
    assert servers.by_method("POST") == []


def test_delete_is_bounded_by_its_own_timeout():
    def handler(request):
        return httpx.Response(202, stream=SlowStream([b"."] * 20, delay=0.05))

    started = time.monotonic()
    with httpx.Client(transport=httpx.MockTransport(handler)) as c:
        with pytest.raises(CleanupError, match="deadline"):
            gateway.delete(c, PUSH_URL, timeout=0.2)
    assert time.monotonic() - started < 0.6

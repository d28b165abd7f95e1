"""Shared fixtures: an in-memory target and Pushgateway behind httpx.MockTransport."""
import sys
import time
from pathlib import Path

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from push_proxy.config import build_config

TARGET = "http://target.local:9090/metrics"
GATEWAY = "http://gateway.local:9091"


class SlowStream(httpx.SyncByteStream):
    """Response body that trickles out one chunk per delay."""

    def __init__(self, chunks, delay):
        self.chunks = list(chunks)
        self.delay = delay

    def __iter__(self):
        for chunk in self.chunks:
            time.sleep(self.delay)
            yield chunk


class FakeServers:
    """Records every request and answers target/gateway calls from settable responses."""

    def __init__(self):
        self.requests = []
        self.target_status = 200
        self.target_body = b"# metric_a 1\n"
        self.gateway_status = 202
        self.gateway_body = b""
        self.delete_status = 202
        self.on_push = None
        self.fail_target = False
        self.target_stream = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        if request.url.host == "target.local":
            if self.fail_target:
                raise httpx.ConnectError("connection refused", request=request)
            if self.target_stream is not None:
                return httpx.Response(self.target_status, stream=self.target_stream)
            return httpx.Response(self.target_status, content=self.target_body)
        if request.method == "DELETE":
            return httpx.Response(self.delete_status)
        if self.on_push is not None:
            self.on_push(request)
        return httpx.Response(self.gateway_status, content=self.gateway_body)

    def by_method(self, method):
        return [r for r in self.requests if r.method == method]


@pytest.fixture
def servers():
    return FakeServers()


@pytest.fixture
def client(servers):
    with httpx.Client(transport=httpx.MockTransport(servers.handler)) as c:
        yield c


@pytest.fixture
def make_config():
    def _make(**overrides):
        raw = {
            "target_addr": TARGET,
            "pushgateway_addr": GATEWAY,
            "job": "batch",
            "instance": "pod-7",
            "interval_s": 0.01,
        }
        raw.update(overrides)
        return build_config(raw, environ={})
    return _make

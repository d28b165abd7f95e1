"""HTTP operations against the scrape target and the Pushgateway."""
from typing import Iterable, Iterator, Optional, Tuple, Union
import logging
import time

import httpx

from push_proxy.errors import CleanupError, PushError, ScrapeError, TransportError

logger = logging.getLogger(__name__)

Auth = Optional[Tuple[str, str]]

_PUSH_HEADERS = {"Content-Type": "text/plain"}


class Deadline:
    """Overall time budget shared by every step of one request or cycle.

    httpx timeouts bound each connect/read/write on its own; this bounds
    the total, so a peer trickling bytes cannot stretch a call forever.
    """

    def __init__(self, seconds: float):
        self.seconds = seconds
        self.expires_at = time.monotonic() + seconds

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    def check(self, what: str):
        if self.expired():
            raise TransportError(f"deadline of {self.seconds}s exceeded while {what}")


class _BoundedStream(httpx.SyncByteStream):
    """Response stream that fails once the deadline has passed."""

    def __init__(self, stream, deadline: Deadline, what: str):
        self._stream = stream
        self._deadline = deadline
        self._what = what

    def __iter__(self) -> Iterator[bytes]:
        for chunk in self._stream:
            self._deadline.check(self._what)
            yield chunk

    def close(self):
        self._stream.close()


def _bounded_chunks(chunks: Iterable[bytes], deadline: Deadline, what: str) -> Iterator[bytes]:
    for chunk in chunks:
        deadline.check(what)
        yield chunk


def _resolve_deadline(timeout: Optional[float], deadline: Optional[Deadline]) -> Optional[Deadline]:
    if deadline is not None:
        return deadline
    if timeout is not None:
        return Deadline(timeout)
    return None


def _timeout_kwargs(deadline: Optional[Deadline], what: str) -> dict:
    # No deadline means "client default", not "no timeout"
    if deadline is None:
        return {}
    deadline.check(what)
    return {"timeout": deadline.remaining()}


def _is_success(status: int) -> bool:
    return 200 <= status < 300


def _read_text(response: httpx.Response) -> str:
    try:
        response.read()
        return response.text
    except httpx.HTTPError as e:
        return f"<unreadable body: {e}>"


def _send(
    client: httpx.Client,
    request: httpx.Request,
    auth: Auth,
    deadline: Optional[Deadline],
    what: str,
) -> Tuple[int, str]:
    """Send ``request`` and read the whole response inside the deadline."""
    try:
        response = client.send(request, auth=auth, stream=True)
        try:
            if deadline is not None:
                response.stream = _BoundedStream(response.stream, deadline, what)
            response.read()
        finally:
            response.close()
    except httpx.HTTPError as e:
        raise TransportError(f"error {what}: {e}") from e
    return response.status_code, response.text


def scrape(
    client: httpx.Client,
    url: str,
    timeout: Optional[float] = None,
    deadline: Optional[Deadline] = None,
) -> httpx.Response:
    """GET ``url`` and return the open, unread response on HTTP 200.

    The body is streamed: the caller must ``close()`` the response once
    it has been consumed. Reading it past the deadline raises
    TransportError.
    """
    deadline = _resolve_deadline(timeout, deadline)
    request = client.build_request("GET", url, **_timeout_kwargs(deadline, f"scraping {url}"))
    try:
        response = client.send(request, stream=True)
    except httpx.HTTPError as e:
        raise TransportError(f"error scraping {url}: {e}") from e

    if deadline is not None:
        response.stream = _BoundedStream(response.stream, deadline, f"reading {url}")

    if response.status_code != 200:
        try:
            body = _read_text(response)
        finally:
            response.close()
        raise ScrapeError(response.status_code, body)
    return response


def push(
    client: httpx.Client,
    url: str,
    body: Union[bytes, Iterable[bytes]],
    auth: Auth = None,
    timeout: Optional[float] = None,
    deadline: Optional[Deadline] = None,
) -> int:
    """POST ``body`` to the gateway and return the 2xx status code."""
    deadline = _resolve_deadline(timeout, deadline)
    what = f"pushing metrics to {url}"
    if deadline is not None and not isinstance(body, bytes):
        body = _bounded_chunks(body, deadline, what)

    request = client.build_request(
        "POST", url, content=body, headers=_PUSH_HEADERS, **_timeout_kwargs(deadline, what)
    )
    status, text = _send(client, request, auth, deadline, what)
    if not _is_success(status):
        raise PushError(status, url, text)
    return status


def delete(
    client: httpx.Client,
    url: str,
    auth: Auth = None,
    timeout: Optional[float] = None,
) -> int:
    """DELETE the grouping key at ``url``; returns the 2xx status code.

    ``timeout`` is a total budget of its own, unrelated to any cycle deadline.
    """
    logger.debug(f"Cleanup request: DELETE {url}")
    deadline = _resolve_deadline(timeout, None)
    what = "during cleanup request to Pushgateway"
    try:
        request = client.build_request("DELETE", url, **_timeout_kwargs(deadline, what))
        status, text = _send(client, request, auth, deadline, what)
    except TransportError as e:
        raise CleanupError(str(e)) from e

    if not _is_success(status):
        raise CleanupError(f"Pushgateway cleanup error: {status}, body: {text}", status=status)
    return status

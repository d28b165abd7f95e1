"""Exception types raised by the relay."""
from typing import Optional


class RelayError(Exception):
    """Base class for all relay errors."""


class ConfigError(RelayError):
    """Configuration could not be resolved into a usable RelayConfig."""


class TransportError(RelayError):
    """DNS, connect, or timeout failure talking to the target or gateway."""


class ScrapeError(RelayError):
    """The scrape target answered with a non-200 status."""

    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(f"metrics endpoint returned {status}: {body}")


class PushError(RelayError):
    """The gateway rejected a push with a non-2xx status."""

    def __init__(self, status: int, url: str, body: str):
        self.status = status
        self.url = url
        self.body = body
        super().__init__(f"Pushgateway error: {status}, {url} body: {body}")


class CleanupError(RelayError):
    """Deleting this instance's metrics from the gateway failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)

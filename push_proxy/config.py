"""Configuration models using Pydantic for validation."""
from typing import Any, Dict, Iterable, Literal, Mapping, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
import math
import os
import re
import socket

from push_proxy.errors import ConfigError
from push_proxy.series import SeriesIdentity

DEFAULT_TARGET_ADDR = "http://localhost:9090/metrics"
DEFAULT_PUSHGATEWAY_ADDR = "http://localhost:9091"
DEFAULT_INTERVAL_S = 15.0
DEFAULT_CLEANUP_TIMEOUT_S = 5.0

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: Any) -> float:
    """Parse a duration such as ``15s``, ``1m30s`` or ``500ms`` into seconds.

    Bare numbers (or numeric strings) are taken as seconds.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if not text:
        raise ValueError("empty duration")
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds):
            raise ValueError(f"invalid duration: {value!r}")
        return seconds

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text) or pos == 0:
        raise ValueError(f"invalid duration: {value!r}")
    return total


def parse_labels(entries: Optional[Iterable[str]]) -> Dict[str, str]:
    """Parse repeated ``key=value[,key=value...]`` entries, keeping order."""
    labels: Dict[str, str] = {}
    if not entries:
        return labels
    for entry in entries:
        for pair in entry.split(","):
            pair = pair.strip()
            if not pair:
                continue
            if "=" not in pair:
                raise ConfigError(f"invalid label {pair!r}, expected key=value")
            key, val = pair.split("=", 1)
            key = key.strip()
            if not key:
                raise ConfigError(f"invalid label {pair!r}, empty key")
            labels[key] = val.strip()
    return labels


def local_primary_ip() -> str:
    """Return the address of the interface used for outbound traffic."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # UDP connect only selects a route, nothing is sent
        s.connect(("10.255.255.255", 1))
        return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        s.close()


def default_instance_label(environ: Optional[Mapping[str, str]] = None) -> str:
    """POD_NAME, then POD_IP, then the host's primary IP."""
    env = os.environ if environ is None else environ
    for name in ("POD_NAME", "POD_IP"):
        value = env.get(name)
        if value:
            return value
    return local_primary_ip()


class RelayConfig(BaseModel):
    """Resolved, immutable configuration for one relay process."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    target_addr: str = DEFAULT_TARGET_ADDR
    pushgateway_addr: str = DEFAULT_PUSHGATEWAY_ADDR
    pushgateway_user: str = ""
    pushgateway_pass: str = ""

    job: str = ""
    instance: str = ""
    namespace: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    namespace_placement: Literal["suffix", "prefix"] = "suffix"

    interval_s: float = DEFAULT_INTERVAL_S
    request_timeout_s: Optional[float] = None
    cleanup_timeout_s: float = DEFAULT_CLEANUP_TIMEOUT_S
    auto_cleanup: bool = True

    metrics_port: int = 0
    log_level: str = "INFO"

    @field_validator("interval_s", "cleanup_timeout_s", mode="before")
    @classmethod
    def parse_required_duration(cls, v):
        return parse_duration(v)

    @field_validator("request_timeout_s", mode="before")
    @classmethod
    def parse_optional_duration(cls, v):
        if v is None or v == "":
            return None
        return parse_duration(v)

    @field_validator("pushgateway_addr")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")

    @field_validator("labels", mode="before")
    @classmethod
    def stringify_labels(cls, v):
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("labels must be a mapping of key to value")
        return {str(k): "" if val is None else str(val) for k, val in v.items()}

    @model_validator(mode="after")
    def validate_required(self):
        if not self.job:
            raise ValueError(
                "Push job name is empty, set a job name using --label-job"
            )
        if not self.instance:
            raise ValueError(
                "Instance label is empty, set an instance label using --label-instance"
            )
        if self.interval_s <= 0:
            raise ValueError(f"interval must be positive, got {self.interval_s}s")
        if self.cleanup_timeout_s <= 0:
            raise ValueError(f"cleanup timeout must be positive, got {self.cleanup_timeout_s}s")
        if self.request_timeout_s is not None and self.request_timeout_s <= 0:
            raise ValueError(f"request timeout must be positive, got {self.request_timeout_s}s")
        return self

    @property
    def identity(self) -> SeriesIdentity:
        return SeriesIdentity.from_labels(self.job, self.instance, self.namespace, self.labels)

    @property
    def credentials(self) -> Optional[Tuple[str, str]]:
        """Basic auth pair, only when both user and password are set."""
        if self.pushgateway_user and self.pushgateway_pass:
            return (self.pushgateway_user, self.pushgateway_pass)
        return None

    @property
    def effective_request_timeout_s(self) -> float:
        """Per-request deadline, never longer than the interval."""
        if self.request_timeout_s is None:
            return self.interval_s
        return min(self.request_timeout_s, self.interval_s)

    def push_url(self) -> str:
        return self.identity.push_url(self.pushgateway_addr, self.namespace_placement)


def _error_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg", "")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def build_config(raw: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> RelayConfig:
    """Validate a raw mapping, filling in the instance label default."""
    raw = dict(raw)
    if raw.get("instance") is None:
        raw["instance"] = default_instance_label(environ)
    try:
        return RelayConfig(**raw)
    except ValidationError as e:
        raise ConfigError(_error_message(e)) from e


def load_config(
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RelayConfig:
    """Load configuration from YAML file, environment and CLI overrides.

    Later sources win: file, then environment, then ``overrides`` entries
    that are not None.
    """
    import yaml

    env = os.environ if environ is None else environ
    raw: Dict[str, Any] = {}

    if config_path:
        if not os.path.exists(config_path):
            raise ConfigError(f"Configuration file not found: {config_path}")
        with open(config_path, 'r') as f:
            try:
                loaded = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Configuration file {config_path} must contain a mapping")
        raw.update(loaded)

    # Apply environment variable overrides
    if env_gateway := env.get('PUSHGATEWAY_ADDR'):
        raw['pushgateway_addr'] = env_gateway
    if env_user := env.get('PUSHGATEWAY_USER'):
        raw['pushgateway_user'] = env_user
    if env_pass := env.get('PUSHGATEWAY_PASS'):
        raw['pushgateway_pass'] = env_pass
    if env_log_level := env.get('LOG_LEVEL'):
        raw['log_level'] = env_log_level

    for key, value in (overrides or {}).items():
        if value is not None:
            raw[key] = value

    return build_config(raw, env)

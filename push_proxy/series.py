"""Grouping key under which the relayed metrics are stored at the gateway."""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote_plus
import base64

NAMESPACE_SUFFIX = "suffix"
NAMESPACE_PREFIX = "prefix"


def _segment(key: str, value: str) -> str:
    # Same grouping key escaping as prometheus_client.push_to_gateway: the
    # gateway only decodes "/" (and empty values) from the @base64 form.
    if value == "":
        return f"/{key}@base64/="
    if "/" in value or " " in value:
        encoded = base64.urlsafe_b64encode(value.encode("utf-8")).decode("utf-8")
        return f"/{key}@base64/{encoded}"
    return f"/{key}/{quote_plus(value)}"


@dataclass(frozen=True)
class SeriesIdentity:
    """Job, instance and extra labels identifying one pushed group."""
    job: str
    instance: str
    namespace: Optional[str] = None
    labels: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    @classmethod
    def from_labels(
        cls,
        job: str,
        instance: str,
        namespace: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> "SeriesIdentity":
        # dict order is insertion order, frozen here so the path never changes
        return cls(job, instance, namespace or None, tuple((labels or {}).items()))

    def path_segments(self, namespace_placement: str = NAMESPACE_SUFFIX) -> List[str]:
        segments = [_segment("job", self.job), _segment("instance", self.instance)]
        extra = [_segment(k, v) for k, v in self.labels]
        if self.namespace:
            ns = _segment("namespace", self.namespace)
            if namespace_placement == NAMESPACE_PREFIX:
                extra.insert(0, ns)
            else:
                extra.append(ns)
        return segments + extra

    def push_url(self, gateway_addr: str, namespace_placement: str = NAMESPACE_SUFFIX) -> str:
        """Build the gateway URL used for both pushes and cleanup."""
        base = gateway_addr.rstrip("/")
        return base + "/metrics" + "".join(self.path_segments(namespace_placement))

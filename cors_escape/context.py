from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from cors_escape.target import Target


@dataclass
class PendingRequest:
    """The request that the next hop will send upstream."""

    method: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""


@dataclass
class RequestContext:
    """
    State of one client request while it is relayed.

    Created when the request is admitted and owned by that request alone;
    nothing here is shared with other requests.
    """

    target: Target
    request: PendingRequest
    relay_base_url: str
    get_proxy_for_url: Callable[[str], Optional[str]]
    max_redirects: int = 5
    redirect_count: int = 0
    client_host: Optional[str] = None
    client_port: Optional[int] = None
    client_scheme: str = "http"

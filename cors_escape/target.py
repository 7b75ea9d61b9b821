import ipaddress
import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs

import tldextract

logger = logging.getLogger("uvicorn.error")

#                      1:scheme              3:hostname   4:port                      5:path + query
_TARGET_RE = re.compile(
    r"^(?:(https?:)?//)?(([^/?]+?)(?::(\d{0,5})(?=[/?]|$))?)([/?][\S\s]*|$)",
    re.IGNORECASE,
)
_EXPLICIT_SCHEME_RE = re.compile(r"^/https?:", re.IGNORECASE)

# Offline snapshot of the public suffix list; never fetched at runtime.
_extract = tldextract.TLDExtract(
    suffix_list_urls=(), cache_dir=None, include_psl_private_domains=False
)


@dataclass(frozen=True)
class Target:
    """A parsed relay target. Replaced, never mutated, on every redirect hop."""

    scheme: str
    host: str
    hostname: str
    port: Optional[int]
    path: str

    @property
    def request_target(self) -> str:
        """Path and query as sent on the request line."""
        if not self.path or self.path.startswith("?"):
            return "/" + self.path
        return self.path

    @property
    def origin(self) -> str:
        return f"{self.scheme}://{self.hostname}"

    @property
    def href(self) -> str:
        return f"{self.scheme}://{self.host}{self.request_target}"

    def __str__(self) -> str:
        return self.href


def parse_target(raw: str) -> Optional[Target]:
    """
    Parse a target such as ``example.com/a?b``, ``//example.com:443/`` or
    ``https://example.com``. A missing scheme becomes ``https`` for port 443
    and ``http`` otherwise. Returns None when ``raw`` is not a URL at all.
    """
    match = _TARGET_RE.match(raw)
    if not match:
        return None
    scheme, host, hostname, port, path = match.groups()
    if scheme:
        scheme = scheme[:-1].lower()
    else:
        scheme = "https" if port == "443" else "http"
    hostname = hostname.lower()
    if hostname.startswith("[") and hostname.endswith("]"):
        hostname = hostname[1:-1]
    return Target(
        scheme=scheme,
        host=host.lower(),
        hostname=hostname,
        port=int(port) if port else None,
        path=path,
    )


def target_text_from_request_path(raw_path: str) -> str:
    """
    Strip the leading ``/`` (and ``?``) from the raw request path. An
    explicit ``url`` query parameter wins over the path itself.
    """
    text = re.sub(r"^/(\?)?", "", raw_path, count=1)
    url_param = parse_qs(text, keep_blank_values=True).get("url")
    if url_param:
        return url_param[0]
    return raw_path[1:] if raw_path.startswith("/") else raw_path


def has_explicit_scheme(raw_path: str) -> bool:
    return bool(_EXPLICIT_SCHEME_RE.match(raw_path))


def _is_ip_literal(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return True


def is_valid_hostname(hostname: str) -> bool:
    """True for names ending in a registered TLD, and for IPv4/IPv6 literals."""
    if not hostname:
        return False
    if _is_ip_literal(hostname):
        return True
    name = hostname.rstrip(".")
    if "." not in name:
        return False
    return bool(_extract(name).suffix)

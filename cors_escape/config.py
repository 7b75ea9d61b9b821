from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Mapping, Optional

from cors_escape import vars as env
from cors_escape.proxy_env import get_proxy_for_url
from cors_escape.rate_limit import create_rate_limit_checker, no_rate_limit

RateLimitChecker = Callable[[str], Optional[str]]
ProxySelector = Callable[[str], Optional[str]]


def _no_proxy(_url: str) -> Optional[str]:
    return None


@dataclass(frozen=True)
class CorsEscapeConfig:
    """Process-wide relay settings. Never mutated once the app is built."""

    require_headers: frozenset = frozenset()
    remove_headers: frozenset = frozenset()
    set_headers: Mapping[str, str] = field(default_factory=dict)
    origin_blacklist: frozenset = frozenset()
    origin_whitelist: frozenset = frozenset()
    cors_max_age: int = 0
    redirect_same_origin: bool = False
    spoof_origin: bool = True
    max_redirects: int = 5
    xfwd: bool = True
    upstream_timeout: float = 30.0
    check_rate_limit: RateLimitChecker = no_rate_limit
    get_proxy_for_url: ProxySelector = _no_proxy

    def __post_init__(self):
        # Header names are compared lower-cased everywhere.
        object.__setattr__(
            self, "require_headers", frozenset(h.lower() for h in self.require_headers)
        )
        object.__setattr__(
            self, "remove_headers", frozenset(h.lower() for h in self.remove_headers)
        )
        object.__setattr__(
            self,
            "set_headers",
            MappingProxyType({k.lower(): v for k, v in dict(self.set_headers).items()}),
        )
        object.__setattr__(self, "origin_blacklist", frozenset(self.origin_blacklist))
        object.__setattr__(self, "origin_whitelist", frozenset(self.origin_whitelist))

    @classmethod
    def from_env(cls) -> "CorsEscapeConfig":
        return cls(
            require_headers=frozenset(env.REQUIRE_HEADERS),
            remove_headers=frozenset(env.REMOVE_HEADERS),
            set_headers=env.SET_HEADERS,
            origin_blacklist=frozenset(env.ORIGIN_BLACKLIST),
            origin_whitelist=frozenset(env.ORIGIN_WHITELIST),
            cors_max_age=env.CORS_MAX_AGE,
            redirect_same_origin=env.REDIRECT_SAME_ORIGIN,
            spoof_origin=env.SPOOF_ORIGIN,
            max_redirects=env.MAX_REDIRECTS,
            xfwd=env.XFWD,
            upstream_timeout=env.PROXY_TIMEOUT,
            check_rate_limit=create_rate_limit_checker(env.RATE_LIMIT),
            get_proxy_for_url=get_proxy_for_url,
        )

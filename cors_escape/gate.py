"""
Admission checks run before anything is sent upstream.

The checks run in a fixed order and the first failing one answers the
request. Every answer, including the preflight reply, carries the CORS
headers.
"""

import logging
from dataclasses import dataclass
from typing import MutableMapping, Optional

import httpx
from fastapi.responses import Response

from cors_escape.config import CorsEscapeConfig
from cors_escape.cors import with_cors
from cors_escape.home import show_home_page
from cors_escape.target import (
    Target,
    has_explicit_scheme,
    is_valid_hostname,
    parse_target,
    target_text_from_request_path,
)
from cors_escape.utils import append_raw_headers, encode_headers

logger = logging.getLogger("uvicorn.error")

MAX_PORT = 65535


@dataclass
class GateDecision:
    target: Optional[Target] = None
    response: Optional[Response] = None

    @property
    def admitted(self) -> bool:
        return self.response is None


class RequestGate:
    def __init__(self, config: CorsEscapeConfig):
        self.config = config

    def _respond(
        self,
        status_code: int,
        request_headers: MutableMapping[str, str],
        content: str = "",
        extra_headers: Optional[dict] = None,
    ) -> GateDecision:
        headers = with_cors(
            httpx.Headers(encode_headers(extra_headers or {})),
            request_headers,
            self.config.cors_max_age,
        )
        response = Response(content=content, status_code=status_code)
        append_raw_headers(response, headers)
        return GateDecision(response=response)

    def has_required_headers(self, request_headers: MutableMapping[str, str]) -> bool:
        required = self.config.require_headers
        return not required or any(name in request_headers for name in required)

    def evaluate(
        self,
        method: str,
        raw_path: str,
        request_headers: MutableMapping[str, str],
    ) -> GateDecision:
        """
        Decide what to do with one client request.

        ``request_headers`` must use lower-cased names. It is modified in
        place: preflight ``access-control-request-*`` headers are consumed.
        """
        config = self.config

        if method.upper() == "OPTIONS":
            logger.debug(f"[Gate] Preflight for {raw_path}")
            return self._respond(200, request_headers)

        target = parse_target(target_text_from_request_path(raw_path))
        if target is None:
            return GateDecision(
                response=show_home_page(request_headers, config.cors_max_age)
            )

        if target.port is not None and target.port > MAX_PORT:
            logger.warning(f"[Gate] Rejected {raw_path}: port {target.port} too large")
            return self._respond(
                400, request_headers, f"Port number too large: {target.port}"
            )

        if not has_explicit_scheme(raw_path) and not is_valid_hostname(target.hostname):
            # Stray browser lookups such as /favicon.ico or /robots.txt end here.
            logger.debug(f"[Gate] Invalid host {target.hostname!r} for {raw_path}")
            return self._respond(
                404, request_headers, f"Invalid host: {target.hostname}"
            )

        if not self.has_required_headers(request_headers):
            logger.warning(f"[Gate] Rejected {target}: missing required header")
            return self._respond(
                400,
                request_headers,
                "Missing required request header. Must specify one of: "
                + ",".join(sorted(config.require_headers)),
            )

        origin = request_headers.get("origin", "")
        if origin in config.origin_blacklist:
            logger.warning(f"[Gate] Rejected blacklisted origin {origin!r}")
            return self._respond(
                403,
                request_headers,
                f'The origin "{origin}" was blacklisted by the operator of this proxy.',
            )

        if config.origin_whitelist and origin not in config.origin_whitelist:
            logger.warning(f"[Gate] Rejected non-whitelisted origin {origin!r}")
            return self._respond(
                403,
                request_headers,
                f'The origin "{origin}" was not whitelisted by the operator of this proxy.',
            )

        rate_limit_message = config.check_rate_limit(origin)
        if rate_limit_message:
            logger.warning(f"[Gate] Rate limited origin {origin!r}")
            return self._respond(
                429,
                request_headers,
                f'The origin "{origin}" has sent too many requests.\n{rate_limit_message}',
            )

        if (
            config.redirect_same_origin
            and origin
            and target.href.startswith(origin + "/")
        ):
            logger.info(f"[Gate] Same-origin request, redirecting to {target.href}")
            return self._respond(
                301,
                request_headers,
                extra_headers={
                    "vary": "origin",
                    "cache-control": "private",
                    "location": target.href,
                },
            )

        return GateDecision(target=target)

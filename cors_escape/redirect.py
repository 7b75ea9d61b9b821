"""
Redirect following for one relayed request.

    client (request) -> cors-escape -> (hop 0..n) -> target server
    client (response) <- cors-escape <- (final hop) <- target server

Every hop's response headers are evaluated before any body byte is read.
A 301/302/303 within the redirect budget is followed here as a GET and the
intermediate response is discarded unseen. Anything else, including 307/308
and redirects past the budget, is delivered to the client with the CORS
headers applied.
"""

import logging
from enum import Enum
from typing import AsyncIterator, Dict, MutableMapping, Optional, Tuple
from urllib.parse import urljoin

import httpx
from fastapi.responses import Response, StreamingResponse
from opentelemetry import trace

from cors_escape.config import CorsEscapeConfig
from cors_escape.context import PendingRequest, RequestContext
from cors_escape.cors import with_cors
from cors_escape.dispatcher import ProxyDispatcher, UpstreamExchange, abort_response
from cors_escape.target import Target, parse_target
from cors_escape.utils import (
    HOP_BY_HOP_HEADERS,
    append_raw_headers,
    encode_headers,
    header_name,
)
from cors_escape.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)

logger = logging.getLogger("uvicorn.error")
tracer = trace.get_tracer(__name__)

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
# 307 and 308 require replaying method and body, which is not supported.
FOLLOWED_STATUSES = frozenset({301, 302, 303})

# Errors that mean the upstream could not be talked to at all.
UPSTREAM_ERRORS = (httpx.TransportError, httpx.InvalidURL)


class FollowState(str, Enum):
    DISPATCHING = "dispatching"
    AWAITING_RESPONSE = "awaiting_response"
    EVALUATING_STATUS = "evaluating_status"
    REDIRECTING = "redirecting"
    DELIVERING = "delivering"
    FAILED = "failed"


class RedirectFollower:
    def __init__(self, dispatcher: ProxyDispatcher, config: CorsEscapeConfig):
        self.dispatcher = dispatcher
        self.config = config

    async def run(
        self,
        context: RequestContext,
        request_headers: MutableMapping[str, str],
    ) -> Response:
        """
        Drive the hops for ``context`` and return the client response.

        ``request_headers`` are the client's own headers, consulted (and
        consumed) by the CORS header writer.
        """
        # Headers this layer adds to the client response.
        relay_headers: Dict[str, str] = {}
        exchange: Optional[UpstreamExchange] = None
        error: Optional[Exception] = None
        next_target: Optional[Target] = None
        state = FollowState.DISPATCHING

        while True:
            logger.debug(
                f"[Relay] {context.target.href}: {state.value} (hop {context.redirect_count})"
            )
            if state is FollowState.DISPATCHING:
                state = FollowState.AWAITING_RESPONSE
                try:
                    with tracer.start_as_current_span("cors_escape.hop") as span:
                        span.set_attribute("cors_escape.target_url", context.target.href)
                        span.set_attribute("cors_escape.hop", context.redirect_count)
                        exchange = await self.dispatcher.dispatch(context)
                        span.set_attribute(
                            "http.status_code", exchange.response.status_code
                        )
                        span.set_attribute("cors_escape.via_proxy", exchange.via_proxy)
                except UPSTREAM_ERRORS as e:
                    error = e
                    state = FollowState.FAILED
                else:
                    state = FollowState.EVALUATING_STATUS

            elif state is FollowState.EVALUATING_STATUS:
                state, next_target = self.evaluate(context, exchange, relay_headers)

            elif state is FollowState.REDIRECTING:
                await self.follow(context, exchange, next_target)
                state = FollowState.DISPATCHING

            elif state is FollowState.DELIVERING:
                return self.deliver(context, exchange, relay_headers, request_headers)

            elif state is FollowState.FAILED:
                return self.fail(context, error, request_headers)

    def evaluate(
        self,
        context: RequestContext,
        exchange: UpstreamExchange,
        relay_headers: Dict[str, str],
    ) -> Tuple[FollowState, Optional[Target]]:
        """
        Decide whether the hop's response is followed or delivered.

        Returns the next state, and the next target when following.
        """
        response = exchange.response
        status_code = response.status_code

        if context.redirect_count == 0:
            relay_headers["x-request-url"] = context.target.href

        location = response.headers.get("location")
        if status_code not in REDIRECT_STATUSES or not location:
            return FollowState.DELIVERING, None

        next_url = urljoin(context.target.href, location)
        logger.debug(
            f"[Relay] Request to {context.target.href} redirecting with status "
            f"{status_code} to {next_url}"
        )

        if status_code in FOLLOWED_STATUSES:
            context.redirect_count += 1
            next_target = parse_target(next_url)
            if context.redirect_count <= context.max_redirects and next_target:
                # Debugging aid only, clients must not parse it.
                relay_headers[f"x-cors-redirect-{context.redirect_count}"] = (
                    f"{status_code} {next_url}"
                )
                return FollowState.REDIRECTING, next_target

        response.headers["location"] = f"{context.relay_base_url}/{next_url}"
        return FollowState.DELIVERING, None

    async def follow(
        self, context: RequestContext, exchange: UpstreamExchange, next_target: Target
    ):
        """Turn the pending request into a body-less GET for the next target."""
        headers = dict(exchange.sent_headers)
        headers["content-length"] = "0"
        headers.pop("content-type", None)
        context.request = PendingRequest(method="GET", headers=headers, body=b"")

        # The previous hop must be gone before the next one connects.
        await abort_response(exchange.response)
        context.target = next_target

    def response_headers(
        self,
        context: RequestContext,
        upstream: httpx.Response,
        relay_headers: Dict[str, str],
        request_headers: MutableMapping[str, str],
    ) -> httpx.Headers:
        """Upstream headers byte for byte, minus hop-by-hop, plus the relay's own."""
        added = {**relay_headers, "x-final-url": context.target.href}
        raw = [
            (name, value)
            for name, value in upstream.headers.raw
            if header_name(name) not in HOP_BY_HOP_HEADERS
            and header_name(name) not in added
        ]
        raw.extend(encode_headers(added))
        return with_cors(httpx.Headers(raw), request_headers, self.config.cors_max_age)

    def deliver(
        self,
        context: RequestContext,
        exchange: UpstreamExchange,
        relay_headers: Dict[str, str],
        request_headers: MutableMapping[str, str],
    ) -> Response:
        upstream = exchange.response
        headers = self.response_headers(context, upstream, relay_headers, request_headers)
        logger.info(
            f"[Relay] {context.request.method} {context.target.href} -> "
            f"{upstream.status_code} after {context.redirect_count} redirect(s)"
        )
        response = StreamingResponse(
            stream_upstream_body(upstream), status_code=upstream.status_code
        )
        append_raw_headers(response, headers)
        return response

    def fail(
        self,
        context: RequestContext,
        error: Exception,
        request_headers: MutableMapping[str, str],
    ) -> Response:
        log_exception_with_details(
            logger, f"[Relay] Upstream error for {context.target.href}:", error, logging.WARNING
        )
        headers = with_cors(httpx.Headers(), request_headers, self.config.cors_max_age)
        response = Response(
            content=f"Not found because of proxy error: {format_exception_message(error)}",
            status_code=404,
        )
        append_raw_headers(response, headers)
        return response


async def stream_upstream_body(upstream: httpx.Response) -> AsyncIterator[bytes]:
    """
    Pass the upstream body through untouched (still content-encoded).

    Once streaming has started the status line is gone, so a transport
    error only ends the body early. The upstream response is always closed,
    including when the client disconnects and this iterator is cancelled.
    """
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    except httpx.TransportError as e:
        log_exception_with_details(
            logger,
            f"[Relay] Upstream body from {upstream.request.url} interrupted:",
            e,
            logging.WARNING,
        )
    finally:
        await abort_response(upstream)

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict

import httpx

from cors_escape.config import CorsEscapeConfig
from cors_escape.context import RequestContext
from cors_escape.utils import HOP_BY_HOP_HEADERS, encode_headers
from cors_escape.utils.exception_logging import format_exception_message

logger = logging.getLogger("uvicorn.error")


@dataclass
class UpstreamExchange:
    """One hop: the headers that were sent and the response, body still unread."""

    sent_headers: Dict[str, str]
    response: httpx.Response
    via_proxy: bool = False


async def _close_quietly(response: httpx.Response) -> None:
    try:
        await response.aclose()
    except Exception as e:
        logger.debug(
            f"[Dispatch] Ignoring error while aborting {response.request.url}: "
            f"{format_exception_message(e)}"
        )


async def abort_response(response: httpx.Response) -> None:
    """
    Tear down an upstream response whose body will not be read.

    Errors raised by the teardown are discarded. The close also completes
    when the calling task is being cancelled.
    """
    await asyncio.shield(_close_quietly(response))


def _append(headers: Dict[str, str], name: str, value: str) -> None:
    existing = headers.get(name)
    headers[name] = f"{existing},{value}" if existing else value


class ProxyDispatcher:
    """Sends a RequestContext's pending request to its current target."""

    def __init__(self, client: httpx.AsyncClient, config: CorsEscapeConfig):
        self.client = client
        self.config = config

    def prepare_headers(self, context: RequestContext) -> Dict[str, str]:
        config = self.config
        target = context.target
        headers = {
            name: value
            for name, value in context.request.headers.items()
            if name not in HOP_BY_HOP_HEADERS and name != "host"
        }

        for name in config.remove_headers:
            headers.pop(name, None)
        for name, value in config.set_headers.items():
            headers[name] = value

        if config.spoof_origin:
            headers["origin"] = target.origin

        # Later hops carry over what the first hop sent.
        if config.xfwd and context.redirect_count == 0:
            if context.client_host:
                _append(headers, "x-forwarded-for", context.client_host)
            if context.client_port:
                _append(headers, "x-forwarded-port", str(context.client_port))
            _append(headers, "x-forwarded-proto", context.client_scheme)

        return headers

    def build_request(
        self, context: RequestContext, headers: Dict[str, str]
    ) -> httpx.Request:
        target = context.target
        pending = context.request
        proxy_url = context.get_proxy_for_url(target.href)
        if not proxy_url:
            return self.client.build_request(
                pending.method,
                target.href,
                headers=encode_headers(headers),
                content=pending.body,
            )

        # Through another proxy: connect to the proxy, put the absolute URL
        # on the request line, and keep the real host in the Host header.
        logger.debug(f"[Dispatch] Routing {target.href} through {proxy_url}")
        return self.client.build_request(
            pending.method,
            proxy_url,
            headers=encode_headers({**headers, "host": target.host}),
            content=pending.body,
            extensions={"target": str(httpx.URL(target.href)).encode("ascii")},
        )

    async def dispatch(self, context: RequestContext) -> UpstreamExchange:
        """
        Send the pending request and return as soon as the response headers
        arrive. The caller owns the response and must read or abort it.

        Raises httpx.TransportError when the upstream cannot be reached.
        """
        headers = self.prepare_headers(context)
        request = self.build_request(context, headers)
        logger.debug(
            f"[Dispatch] {request.method} {context.target.href} "
            f"(hop {context.redirect_count})"
        )
        response = await self.client.send(request, stream=True)
        return UpstreamExchange(
            sent_headers=headers,
            response=response,
            via_proxy="target" in request.extensions,
        )

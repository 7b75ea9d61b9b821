import logging
import re

from fastapi import APIRouter, Request
from fastapi.responses import Response
from opentelemetry import trace

from cors_escape.context import PendingRequest, RequestContext
from cors_escape.cors import REQUEST_HEADERS, REQUEST_METHOD
from cors_escape.utils import lower_case_headers
from cors_escape.utils.traced_requests import traced_request

router = APIRouter()
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

RELAY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD"]


def raw_request_path(request: Request) -> str:
    """The request path and query exactly as the client sent them."""
    raw_path = request.scope.get("raw_path") or request.url.path.encode("utf-8")
    path = raw_path.split(b"?", 1)[0].decode("latin-1")
    query = request.scope.get("query_string", b"").decode("latin-1")
    return f"{path}?{query}" if query else path


def relay_base_url(request: Request) -> str:
    """Scheme and host of this relay as seen by the client."""
    forwarded_proto = request.headers.get("x-forwarded-proto", "")
    is_https = request.url.scheme == "https" or re.match(r"^\s*https", forwarded_proto)
    scheme = "https" if is_https else "http"
    return f"{scheme}://{request.headers.get('host', '')}"


@router.api_route("/{path:path}", methods=RELAY_METHODS, include_in_schema=False)
async def relay(request: Request, path: str) -> Response:
    """Relay the URL in the request path and return the response with CORS headers."""
    state = request.app.state
    config = state.config
    raw_path = raw_request_path(request)
    request_headers = lower_case_headers(request.headers.items())

    decision = state.gate.evaluate(request.method, raw_path, request_headers)
    if not decision.admitted:
        return decision.response

    target = decision.target
    origin = request_headers.get("origin", "")
    # Preflight headers are answered by this relay and never sent upstream.
    cors_request_headers = {
        name: request_headers.pop(name)
        for name in (REQUEST_METHOD, REQUEST_HEADERS)
        if name in request_headers
    }
    with traced_request(
        tracer,
        operation="cors_escape.relay",
        target_url=target.href,
        origin=origin,
        start_message=f"[Relay] {request.method} {target.href} for origin {origin!r}",
        extra_attrs={"http.method": request.method},
    ) as span:
        context = RequestContext(
            target=target,
            request=PendingRequest(
                method=request.method,
                headers=request_headers,
                body=await request.body(),
            ),
            relay_base_url=relay_base_url(request),
            get_proxy_for_url=config.get_proxy_for_url,
            max_redirects=config.max_redirects,
            client_host=request.client.host if request.client else None,
            client_port=request.client.port if request.client else None,
            client_scheme=request.url.scheme,
        )
        response = await state.follower.run(context, cors_request_headers)
        span.set_attribute("cors_escape.final_url", context.target.href)
        span.set_attribute("cors_escape.redirects", context.redirect_count)
        span.set_attribute("http.status_code", response.status_code)
        return response

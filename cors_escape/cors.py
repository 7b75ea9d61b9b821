from typing import Dict, MutableMapping, Optional

import httpx

from cors_escape.utils import encode_headers, header_name

ALLOW_ORIGIN = "access-control-allow-origin"
ALLOW_METHODS = "access-control-allow-methods"
ALLOW_HEADERS = "access-control-allow-headers"
EXPOSE_HEADERS = "access-control-expose-headers"
MAX_AGE = "access-control-max-age"
REQUEST_METHOD = "access-control-request-method"
REQUEST_HEADERS = "access-control-request-headers"


def with_cors(
    headers: Optional[httpx.Headers],
    request_headers: MutableMapping[str, str],
    cors_max_age: int = 0,
) -> httpx.Headers:
    """
    Return ``headers`` with the CORS response headers added.

    The preflight ``access-control-request-*`` headers are echoed back and
    removed from ``request_headers`` so they are not forwarded upstream.
    Must be the last change to the headers: the expose list names every
    header present at this point. Existing values are kept as raw bytes.
    """
    cors: Dict[str, str] = {ALLOW_ORIGIN: "*"}
    if cors_max_age:
        cors[MAX_AGE] = str(cors_max_age)
    requested_method = request_headers.pop(REQUEST_METHOD, None)
    if requested_method:
        cors[ALLOW_METHODS] = requested_method
    requested_headers = request_headers.pop(REQUEST_HEADERS, None)
    if requested_headers:
        cors[ALLOW_HEADERS] = requested_headers

    raw = [
        (name, value)
        for name, value in (headers.raw if headers is not None else [])
        if header_name(name) not in cors and header_name(name) != EXPOSE_HEADERS
    ]
    raw.extend(encode_headers(cors))

    exposed = dict.fromkeys(header_name(name) for name, _ in raw)
    raw.append((EXPOSE_HEADERS.encode("ascii"), ",".join(exposed).encode("latin-1")))
    return httpx.Headers(raw)

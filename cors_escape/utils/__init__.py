from typing import Dict, Iterable, List, Mapping, Tuple

import httpx
from fastapi.responses import Response

# Hop-by-hop headers are never forwarded in either direction (RFC 7230).
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)


def lower_case_headers(items: Iterable[Tuple[str, str]]) -> Dict[str, str]:
    """Collapse header pairs into a dict keyed by lower-cased name."""
    headers: Dict[str, str] = {}
    for name, value in items:
        name = name.lower()
        if name in headers:
            # Same joining rule as a comma-separated header list.
            headers[name] = f"{headers[name]}, {value}"
        else:
            headers[name] = value
    return headers


def encode_header(value: str) -> bytes:
    """
    Header text as it goes on the wire.

    Starlette decodes incoming header bytes as latin-1, so those values
    round-trip unchanged. Text outside latin-1 is sent as UTF-8.
    """
    try:
        return value.encode("latin-1")
    except UnicodeEncodeError:
        return value.encode("utf-8")


def encode_headers(headers: Mapping[str, str]) -> List[Tuple[bytes, bytes]]:
    return [(encode_header(name), encode_header(value)) for name, value in headers.items()]


def header_name(raw_name: bytes) -> str:
    return raw_name.decode("latin-1").lower()


def append_raw_headers(response: Response, headers: httpx.Headers) -> None:
    """Copy ``headers`` onto a Starlette response byte for byte."""
    response.raw_headers.extend(
        (name.lower(), value) for name, value in headers.raw
    )

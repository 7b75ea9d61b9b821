from pathlib import Path
from typing import MutableMapping

import httpx
from fastapi.responses import Response

from cors_escape.cors import with_cors
from cors_escape.utils import append_raw_headers

HELP_FILE = Path(__file__).with_name("help.txt")
HELP_TEXT = HELP_FILE.read_text(encoding="utf-8")


def show_home_page(
    request_headers: MutableMapping[str, str], cors_max_age: int = 0
) -> Response:
    """Usage help, returned whenever the request path is not a URL."""
    headers = with_cors(
        httpx.Headers({"content-type": "text/plain; charset=utf-8"}),
        request_headers,
        cors_max_age,
    )
    response = Response(content=HELP_TEXT, status_code=200)
    append_raw_headers(response, headers)
    return response

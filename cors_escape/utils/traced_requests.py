import logging
from contextlib import contextmanager
from typing import Dict, Optional
from urllib.parse import urlsplit

from opentelemetry.trace import Status, StatusCode, Tracer

logger = logging.getLogger("uvicorn.error")


@contextmanager
def traced_request(
    tracer: Tracer,
    operation: str,
    target_url: Optional[str],
    origin: Optional[str],
    start_message: str,
    extra_attrs: Optional[Dict] = None,
):
    """
    Open a span for one relayed request and log ``start_message``.

    The span carries the target URL, its host and the requesting origin.
    Unhandled errors are recorded on the span and re-raised.
    """
    with tracer.start_as_current_span(operation) as span:
        if target_url:
            span.set_attribute("cors_escape.target_url", target_url)
            span.set_attribute("cors_escape.target_host", urlsplit(target_url).netloc)
        if origin:
            span.set_attribute("cors_escape.origin", origin)
        for name, value in (extra_attrs or {}).items():
            span.set_attribute(name, value)
        logger.info(start_message)
        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, type(e).__name__))
            raise

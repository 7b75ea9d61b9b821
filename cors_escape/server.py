import logging
from contextlib import asynccontextmanager
from typing import Optional, Sequence

import httpx
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from cors_escape.config import CorsEscapeConfig
from cors_escape.dispatcher import ProxyDispatcher
from cors_escape.gate import RequestGate
from cors_escape.redirect import RedirectFollower
from cors_escape.routes import router
from cors_escape.vars import LOG_LEVEL, OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME

logger = logging.getLogger("uvicorn.error")
logger.setLevel(LOG_LEVEL)


class FilteringSpanExporter(SpanExporter):
    """
    Drops the per-chunk ASGI body spans of relayed responses, which would
    otherwise bury the relay and hop spans of every large download.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


def configure_tracing() -> None:
    trace.set_tracer_provider(
        TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    )
    if OTLP_ENDPOINT:
        otlp_exporter = OTLPSpanExporter(
            endpoint=OTLP_ENDPOINT,
            headers=((OTLP_HEADERS).split(",") if OTLP_HEADERS else None),
        )
        trace.get_tracer_provider().add_span_processor(
            BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
        )


def create_http_client(config: CorsEscapeConfig) -> httpx.AsyncClient:
    # Redirects and upstream proxies are handled by the relay itself.
    return httpx.AsyncClient(
        timeout=httpx.Timeout(config.upstream_timeout),
        follow_redirects=False,
        trust_env=False,
    )


def build_app(
    config: Optional[CorsEscapeConfig] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    metrics: bool = False,
) -> FastAPI:
    """Create the relay application. Tests pass their own config and client."""
    config = config or CorsEscapeConfig.from_env()
    owns_client = http_client is None
    client = http_client or create_http_client(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"[Startup] cors-escape ready (blacklist={sorted(config.origin_blacklist)}, "
            f"whitelist={sorted(config.origin_whitelist)}, "
            f"max_redirects={config.max_redirects})"
        )
        yield
        if owns_client:
            await client.aclose()

    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.config = config
    app.state.http_client = client
    app.state.gate = RequestGate(config)
    app.state.follower = RedirectFollower(ProxyDispatcher(client, config), config)

    if metrics:
        # Registered before the catch-all relay route so /metrics stays local.
        Instrumentator().instrument(app).expose(app, include_in_schema=False)
    FastAPIInstrumentor.instrument_app(app)

    app.include_router(router)
    return app


configure_tracing()

# Add app_name to the metrics
app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})

app = build_app(metrics=True)

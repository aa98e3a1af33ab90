import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional, Sequence

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

from chaos_proxy.config import ProxySettings
from chaos_proxy.counters import MethodCounters
from chaos_proxy.failures.decision import FailureDecision
from chaos_proxy.proxy.handler import ProxyHandler
from chaos_proxy.proxy.route import AbsoluteFormMiddleware, router
from chaos_proxy.vars import OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME

logger = logging.getLogger("uvicorn.error")


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out the ASGI body spans emitted for every
    relayed chunk. A proxied download produces one per chunk otherwise.
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


def parse_otlp_headers(raw: str) -> Optional[Dict[str, str]]:
    """Parse ``key=value,key=value`` into gRPC metadata (lowercase keys)."""
    headers = {}
    for pair in raw.split(","):
        key, sep, value = pair.partition("=")
        if sep and key.strip():
            headers[key.strip().lower()] = value.strip()
    return headers or None


def setup_tracing(
    endpoint: Optional[str] = OTLP_ENDPOINT, headers: str = OTLP_HEADERS
) -> TracerProvider:
    """Install the process-wide tracer provider, exporting over OTLP if configured."""
    tracer_provider = TracerProvider(
        resource=Resource.create({"service.name": SERVICE_NAME})
    )
    if endpoint:
        otlp_exporter = OTLPSpanExporter(
            endpoint=endpoint,
            headers=parse_otlp_headers(headers),
        )
        tracer_provider.add_span_processor(
            BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
        )
    trace.set_tracer_provider(tracer_provider)
    return tracer_provider


def create_app(
    settings: Optional[ProxySettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    decision: Optional[FailureDecision] = None,
    counters: Optional[MethodCounters] = None,
) -> FastAPI:
    """
    Build the proxy application.

    Args:
        settings: Runtime configuration; read from the environment if omitted
        transport: Transport for the upstream client (tests pass a mock)
        decision: Failure decision source; built from ``settings`` if omitted
        counters: Method counters shared with the periodic reporter
    """
    settings = settings or ProxySettings.from_env()
    decision = decision or FailureDecision(settings.fail_with_prefix)
    counters = counters or MethodCounters()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.upstream_timeout),
            follow_redirects=False,
            transport=transport,
        )
        app.state.proxy_handler = ProxyHandler(settings, client, decision, counters)
        reporter = asyncio.create_task(
            counters.report_periodically(settings.counters_interval)
        )
        try:
            yield
        finally:
            reporter.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reporter
            await client.aclose()

    # docs routes would shadow proxied paths
    app = FastAPI(
        title=SERVICE_NAME,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.counters = counters
    app.state.decision = decision
    app.add_middleware(AbsoluteFormMiddleware)

    FastAPIInstrumentor.instrument_app(app)

    app.include_router(router)
    return app

from __future__ import annotations

import logging
from typing import Iterator, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
TRACER_NAME = "examhall"

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    # Silence HTTP client debug logs
    for noisy in ("httpcore", "httpx", "pymongo"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _span_processors(otlp_endpoint: Optional[str], console_exporter: bool) -> Iterator[SpanProcessor]:
    if console_exporter:
        yield SimpleSpanProcessor(ConsoleSpanExporter())
    if otlp_endpoint:
        yield BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint))


def init_otel(
    *,
    app: object,
    enabled: bool,
    service_name: str,
    otlp_endpoint: Optional[str],
    console_exporter: bool,
    sample_rate: float,
) -> None:
    """Install a tracer provider and instrument inbound requests. No-op when disabled."""
    if not enabled:
        return

    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name}),
        sampler=ParentBased(TraceIdRatioBased(sample_rate)),
    )
    exporters = 0
    for processor in _span_processors(otlp_endpoint, console_exporter):
        provider.add_span_processor(processor)
        exporters += 1
    if not exporters:
        logger.warning("Tracing enabled without an exporter; spans will be dropped")

    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app)  # type: ignore[arg-type]
    logger.info(f"OpenTelemetry tracing enabled for {service_name} (sample rate {sample_rate})")


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(TRACER_NAME)

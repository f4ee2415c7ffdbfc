"""OpenTelemetry setup for incubator services and spans around domain operations."""

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (  # type: ignore[attr-defined]
    OTLPSpanExporter as OTLPGrpcExporter,
)
from opentelemetry.exporter.otlp.proto.http.trace_exporter import (  # type: ignore[attr-defined]
    OTLPSpanExporter as OTLPHttpExporter,
)
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.trace import Status, StatusCode

from .config import ServiceSettings

_LOGGER = logging.getLogger(__name__)
_INSTRUMENTED_APPS: set[int] = set()

SERVICE_NAMESPACE = "incubator"
# Health and scrape endpoints are polled constantly and carry no domain work.
_EXCLUDED_URLS = "health,metrics"


def _span_exporter(settings: ServiceSettings) -> SpanExporter | None:
    endpoint = settings.tracing_endpoint
    if endpoint is None:
        return None
    if settings.tracing_protocol == "grpc":
        return OTLPGrpcExporter(endpoint=endpoint, insecure=settings.tracing_insecure)
    return OTLPHttpExporter(endpoint=endpoint)


def _tracer_provider(settings: ServiceSettings) -> trace.TracerProvider:
    installed = trace.get_tracer_provider()
    if isinstance(installed, TracerProvider):
        return installed

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.app_name,
                "service.namespace": SERVICE_NAMESPACE,
                "deployment.environment": settings.environment,
            }
        ),
        sampler=TraceIdRatioBased(settings.tracing_sample_rate),
    )
    exporter = _span_exporter(settings)
    if exporter is None:
        _LOGGER.warning("No OTLP endpoint for %s; spans stay in-process", settings.app_name)
    else:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return trace.get_tracer_provider()


def configure_tracing(app: FastAPI, settings: ServiceSettings) -> None:
    """Install a tracer provider and instrument ``app`` once, if tracing is on."""

    if not settings.enable_tracing:
        return
    provider = _tracer_provider(settings)
    if id(app) in _INSTRUMENTED_APPS:
        return
    FastAPIInstrumentor().instrument_app(app, tracer_provider=provider, excluded_urls=_EXCLUDED_URLS)
    _INSTRUMENTED_APPS.add(id(app))


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


@contextmanager
def domain_span(tracer: trace.Tracer, name: str, **attributes: Any) -> Iterator[trace.Span]:
    """Open ``name`` as the current span with ``inventory.*`` attributes.

    ``None`` attributes are skipped. An exception carrying a ``code`` attribute
    is tagged as ``error.code`` before the span is marked failed.
    """

    with tracer.start_as_current_span(name, record_exception=False, set_status_on_exception=False) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"inventory.{key}", value)
        try:
            yield span
        except Exception as exc:
            code = getattr(exc, "code", None)
            if code is not None:
                span.set_attribute("error.code", code)
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            raise

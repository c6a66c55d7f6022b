"""Tracing setup.

OpenTelemetry accepts a single global tracer provider per process, so one is
created lazily and shared by the exporters configured from settings and by the
in-memory exporter used in tests.
"""

from __future__ import annotations

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from teamcrm.core.config import Settings


SERVICE_NAME = "teamcrm-api"
SPAN_ATTRIBUTE_PREFIX = "teamcrm."

_provider: TracerProvider | None = None
_exporters_installed = False


def tracer_provider(service_name: str = SERVICE_NAME, service_version: str = "0.1.0") -> TracerProvider:
    global _provider
    if _provider is None:
        _provider = TracerProvider(
            resource=Resource.create({"service.name": service_name, "service.version": service_version})
        )
        trace.set_tracer_provider(_provider)
    return _provider


def setup_otel(settings: Settings) -> TracerProvider | None:
    global _exporters_installed
    if not settings.otel_enabled:
        return None

    provider = tracer_provider(service_version=settings.app_version)
    if not _exporters_installed:
        if settings.otel_exporter_otlp_endpoint:
            exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)
            provider.add_span_processor(BatchSpanProcessor(exporter))
        if settings.otel_console_exporter:
            provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        _exporters_installed = True
    return provider


def setup_inmemory_otel(service_name: str = SERVICE_NAME) -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    tracer_provider(service_name).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def annotate_current_span(**attributes: str | None) -> None:
    """Set ``teamcrm.<name>`` attributes on the active span, skipping ``None`` values."""

    span = trace.get_current_span()
    if not span.is_recording():
        return
    for name, value in attributes.items():
        if value is not None:
            span.set_attribute(SPAN_ATTRIBUTE_PREFIX + name, value)


def server_request_hook(span: Any, scope: dict[str, Any]) -> None:
    if span is None or not span.is_recording():
        return
    for name, value in scope.get("headers", []):
        if name == b"x-correlation-id":
            span.set_attribute("correlation_id", value.decode("latin-1"))
            break

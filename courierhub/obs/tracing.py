# courierhub/obs/tracing.py
# OpenTelemetry: spans around courier calls; export only when an OTLP endpoint is configured
from __future__ import annotations

from typing import Optional

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from courierhub.core.config import AppSettings, get_settings

tracer = trace.get_tracer("courierhub")


def setup_tracing(app: Optional[FastAPI] = None, settings: Optional[AppSettings] = None) -> bool:
    """
    Install an OTLP/HTTP exporter.

    - no OTEL_EXPORTER_OTLP_ENDPOINT -> nothing installed, spans stay no-op (returns False)
    - /metrics and /health are not traced
    """
    settings = settings or get_settings()
    endpoint = (settings.OTEL_EXPORTER_OTLP_ENDPOINT or "").strip()
    if not endpoint:
        return False

    resource = Resource.create(
        {
            "service.name": settings.OTEL_SERVICE_NAME,
            "deployment.environment": settings.ENV,
        }
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)

    if app is not None:
        FastAPIInstrumentor.instrument_app(app, excluded_urls="metrics,health")
    return True

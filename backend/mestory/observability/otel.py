from __future__ import annotations

import os

from fastapi import FastAPI

from ..settings import Settings
from .logging import get_logger


def _truthy(v: str | None) -> bool:
    return str(v or "").strip().lower() in ("1", "true", "yes", "y", "on")


def configure_otel(settings: Settings) -> None:
    """
    Optional OpenTelemetry setup (install the `otel` extra).

    - If OTEL is disabled, do nothing.
    - If OTEL packages are not installed, log once and do nothing.
    - Without an OTLP endpoint, spans go to the console exporter.
    """

    enabled = bool(settings.otel_enabled) or _truthy(os.environ.get("OTEL_ENABLED"))
    if not enabled:
        return

    log = get_logger("otel")

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
            OTLPSpanExporter,
        )
    except ImportError:
        log.warning("otel_disabled_missing_deps")
        return

    service_name = str(settings.otel_service_name or "mestory-backend").strip()
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

    endpoint = str(settings.otel_exporter_otlp_endpoint or "").strip()
    if endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        log.info("otel_configured", exporter="otlp_http", endpoint=endpoint)
    else:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        log.info("otel_configured", exporter="console")

    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI, settings: Settings) -> None:
    """
    Wire instrumentation for inbound HTTP and outbound httpx / botocore calls.
    """
    if not (bool(settings.otel_enabled) or _truthy(os.environ.get("OTEL_ENABLED"))):
        return

    log = get_logger("otel")

    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app)
        log.info("otel_instrumented", target="fastapi")
    except ImportError:
        log.warning("otel_instrument_failed", target="fastapi")

    try:
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

        HTTPXClientInstrumentor().instrument()
        log.info("otel_instrumented", target="httpx")
    except ImportError:
        log.warning("otel_instrument_failed", target="httpx")

    try:
        from opentelemetry.instrumentation.botocore import BotocoreInstrumentor

        BotocoreInstrumentor().instrument()
        log.info("otel_instrumented", target="botocore")
    except ImportError:
        log.warning("otel_instrument_failed", target="botocore")

# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import os


def setup_otel_from_env(use_console: bool = False) -> bool:
    """Configure OpenTelemetry tracing from environment variables.

    Env vars:
    - OTEL_EXPORTER_OTLP_ENDPOINT (spans are exported over OTLP/HTTP only if set)
    - OTEL_SERVICE_NAME (default pbtc-gateway)
    - OTEL_CONSOLE_EXPORTER=1 to also print spans to stdout

    Returns False when neither exporter is requested; verification and RPC
    spans then stay no-ops.
    """
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    console = use_console or os.getenv("OTEL_CONSOLE_EXPORTER", "0").lower() in {"1", "true", "yes"}
    if not endpoint and not console:
        return False

    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
            OTLPSpanExporter,
        )
        from opentelemetry.sdk.resources import SERVICE_NAME, Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import (
            BatchSpanProcessor,
            ConsoleSpanExporter,
            SimpleSpanProcessor,
        )
    except ImportError as e:  # pragma: no cover - import error path
        raise RuntimeError(
            "OpenTelemetry SDK/exporter not installed. Install extras: pip install pbtc-pay[otel]"
        ) from e

    service_name = os.getenv("OTEL_SERVICE_NAME", "pbtc-gateway")
    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))
    trace.set_tracer_provider(provider)

    if endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    if console:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    return True

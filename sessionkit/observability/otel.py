"""OpenTelemetry + Prometheus fallback wiring for sessionkit."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from sessionkit import config

logger = logging.getLogger("sessionkit.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_operation_counter: Any | None = None
_operation_latency_hist: Any | None = None
_parse_failure_counter: Any | None = None
_chain_repair_counter: Any | None = None
_orphan_cleanup_counter: Any | None = None

_prom_enabled = False
_prom_operation_counter: Any | None = None
_prom_operation_latency_hist: Any | None = None
_prom_parse_failure_counter: Any | None = None
_prom_chain_repair_counter: Any | None = None
_prom_orphan_cleanup_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _prom_labels(*, project_id: str, **extra: str) -> dict[str, str]:
    labels = {"project": project_id or "unknown"}
    for key, value in extra.items():
        labels[key] = (value or "").strip() or "unknown"
    return labels


def _start_prometheus() -> None:
    global _prom_enabled
    global _prom_operation_counter, _prom_operation_latency_hist, _prom_parse_failure_counter
    global _prom_chain_repair_counter, _prom_orphan_cleanup_counter

    try:
        from prometheus_client import Counter, Histogram, start_http_server

        start_http_server(config.PROM_PORT)
        _prom_operation_counter = Counter(
            "sessionkit_operations_total",
            "Count of session maintenance operations",
            ["operation", "result", "project"],
        )
        _prom_operation_latency_hist = Histogram(
            "sessionkit_operation_latency_ms",
            "Latency of session maintenance operations",
            ["operation", "result", "project"],
        )
        _prom_parse_failure_counter = Counter(
            "sessionkit_parse_failures_total",
            "Count of log lines that could not be parsed",
            ["parser", "project"],
        )
        _prom_chain_repair_counter = Counter(
            "sessionkit_chain_repairs_total",
            "Count of parent pointers rewritten by chain repair",
            ["operation", "project"],
        )
        _prom_orphan_cleanup_counter = Counter(
            "sessionkit_orphan_cleanup_total",
            "Count of orphaned files removed or backed up",
            ["kind", "action", "project"],
        )
        _prom_enabled = True
        logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Prometheus fallback not started: %s", exc)
        _prom_enabled = False


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _operation_counter, _operation_latency_hist, _parse_failure_counter
    global _chain_repair_counter, _orphan_cleanup_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (SESSIONKIT_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "sessionkit"

    resource = Resource.create({"service.name": service_name, "service.namespace": "sessionkit"})

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)

    metric_reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=metrics_endpoint or None))
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("sessionkit")

    _operation_counter = meter.create_counter(
        "sessionkit_operations_total",
        unit="1",
        description="Count of session maintenance operations",
    )
    _operation_latency_hist = meter.create_histogram(
        "sessionkit_operation_latency_ms",
        unit="ms",
        description="Latency of session maintenance operations",
    )
    _parse_failure_counter = meter.create_counter(
        "sessionkit_parse_failures_total",
        unit="1",
        description="Count of log lines that could not be parsed",
    )
    _chain_repair_counter = meter.create_counter(
        "sessionkit_chain_repairs_total",
        unit="1",
        description="Count of parent pointers rewritten by chain repair",
    )
    _orphan_cleanup_counter = meter.create_counter(
        "sessionkit_orphan_cleanup_total",
        unit="1",
        description="Count of orphaned files removed or backed up",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = trace.get_tracer("sessionkit")
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        _start_prometheus()

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    try:
        if app and _fastapi_instrumentor:
            _fastapi_instrumentor.uninstrument_app(app)
    except Exception as exc:  # noqa: BLE001
        logger.debug("FastAPI uninstrument failed: %s", exc)
    for provider in (_meter_provider, _trace_provider):
        if provider is None:
            continue
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_operation(operation: str, result: str, duration_ms: float, *, project_id: str) -> None:
    labels = {
        "operation": operation or "unknown",
        "result": result or "unknown",
        "project_id": project_id or "unknown",
    }
    if _enabled and _operation_counter is not None:
        _operation_counter.add(1, labels)
    if _enabled and _operation_latency_hist is not None:
        _operation_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _prom_enabled and _prom_operation_counter is not None:
        prom = _prom_labels(project_id=project_id, operation=operation, result=result)
        _prom_operation_counter.labels(**prom).inc()
    if _prom_enabled and _prom_operation_latency_hist is not None:
        prom = _prom_labels(project_id=project_id, operation=operation, result=result)
        _prom_operation_latency_hist.labels(**prom).observe(max(0.0, float(duration_ms)))


def record_parse_failure(parser: str, *, project_id: str) -> None:
    labels = {
        "parser": parser or "unknown",
        "project_id": project_id or "unknown",
    }
    if _enabled and _parse_failure_counter is not None:
        _parse_failure_counter.add(1, labels)
    if _prom_enabled and _prom_parse_failure_counter is not None:
        prom = _prom_labels(project_id=project_id, parser=parser)
        _prom_parse_failure_counter.labels(**prom).inc()


def record_chain_repair(operation: str, count: int, *, project_id: str) -> None:
    safe_count = max(0, int(count))
    if safe_count == 0:
        return
    labels = {
        "operation": operation or "unknown",
        "project_id": project_id or "unknown",
    }
    if _enabled and _chain_repair_counter is not None:
        _chain_repair_counter.add(safe_count, labels)
    if _prom_enabled and _prom_chain_repair_counter is not None:
        prom = _prom_labels(project_id=project_id, operation=operation)
        _prom_chain_repair_counter.labels(**prom).inc(safe_count)


def record_orphan_cleanup(kind: str, action: str, count: int, *, project_id: str) -> None:
    safe_count = max(0, int(count))
    if safe_count == 0:
        return
    labels = {
        "kind": kind or "unknown",
        "action": action or "unknown",
        "project_id": project_id or "unknown",
    }
    if _enabled and _orphan_cleanup_counter is not None:
        _orphan_cleanup_counter.add(safe_count, labels)
    if _prom_enabled and _prom_orphan_cleanup_counter is not None:
        prom = _prom_labels(project_id=project_id, kind=kind, action=action)
        _prom_orphan_cleanup_counter.labels(**prom).inc(safe_count)

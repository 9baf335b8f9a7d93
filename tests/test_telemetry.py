from __future__ import annotations

import logging

from opentelemetry.sdk.trace import TracerProvider

from support_directory.core.config import Settings
from support_directory.core.telemetry import (
    TelemetryRuntime,
    TraceContextFilter,
    configure_logging,
    setup_telemetry,
    shutdown_telemetry,
)


def _record() -> logging.LogRecord:
    return logging.LogRecord("test", logging.INFO, __file__, 1, "message", None, None)


def test_trace_filter_stamps_active_span_ids() -> None:
    tracer = TracerProvider().get_tracer(__name__)
    trace_filter = TraceContextFilter()

    outside = _record()
    trace_filter.filter(outside)
    with tracer.start_as_current_span("reconcile.region") as span:
        inside = _record()
        trace_filter.filter(inside)
        context = span.get_span_context()

    assert (outside.trace_id, outside.span_id) == ("-", "-")
    assert inside.trace_id == format(context.trace_id, "032x")
    assert inside.span_id == format(context.span_id, "016x")


def test_configure_logging_keeps_existing_handlers(monkeypatch) -> None:
    root = logging.getLogger()
    existing = logging.NullHandler()
    monkeypatch.setattr(root, "handlers", [existing])

    configure_logging(Settings())

    assert root.handlers == [existing]


def test_configure_logging_installs_correlated_handler(monkeypatch) -> None:
    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", [])
    previous_level = root.level
    try:
        configure_logging(Settings(otel_log_correlation=True))
    finally:
        installed = list(root.handlers)
        root.setLevel(previous_level)

    assert len(installed) == 1
    assert any(isinstance(item, TraceContextFilter) for item in installed[0].filters)


def test_disabled_telemetry_is_a_no_op() -> None:
    runtime = setup_telemetry(Settings(otel_enabled=False))

    assert runtime == TelemetryRuntime()
    shutdown_telemetry(runtime)

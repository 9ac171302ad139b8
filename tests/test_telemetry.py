import logging

from opentelemetry.sdk.trace import TracerProvider

from events_pipeline.core.config import Settings
from events_pipeline.core.telemetry import TraceContextFilter, _parse_headers, setup_telemetry


def test_parse_headers_drops_malformed_pairs() -> None:
    assert _parse_headers("Authorization=Bearer abc, x-tenant = events ,broken,=empty") == {
        "Authorization": "Bearer abc",
        "x-tenant": "events",
    }
    assert _parse_headers(None) == {}


def test_trace_context_filter_sets_zero_ids_outside_spans() -> None:
    record = logging.LogRecord("events", logging.INFO, __file__, 1, "hello", None, None)
    assert TraceContextFilter().filter(record) is True
    assert record.trace_id == "0" * 32
    assert record.span_id == "0" * 16


def test_trace_context_filter_reads_active_span() -> None:
    tracer = TracerProvider().get_tracer(__name__)
    record = logging.LogRecord("events", logging.INFO, __file__, 1, "hello", None, None)
    with tracer.start_as_current_span("events.test") as span:
        TraceContextFilter().filter(record)
        expected = format(span.get_span_context().trace_id, "032x")
    assert record.trace_id == expected


def test_setup_telemetry_disabled() -> None:
    runtime = setup_telemetry(Settings(otel_enabled=False))
    assert runtime.enabled is False
    assert runtime.provider is None

"""Tests for calsync.core.telemetry: OpenTelemetry initialization and run spans."""

import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

import calsync.core.telemetry as _telemetry_mod
from calsync.core.telemetry import get_tracer, init_telemetry, sync_span
from tests.factories import SOURCE_CALENDAR, make_event

pytestmark = pytest.mark.unit


def _reset_otel_global_state():
    """Fully reset the OpenTelemetry global tracer provider state."""
    trace._TRACER_PROVIDER_SET_ONCE = trace.Once()
    trace._TRACER_PROVIDER = None
    _telemetry_mod._tracer_provider_installed = False


@pytest.fixture(autouse=True)
def _clean_tracer_provider():
    _reset_otel_global_state()
    yield
    _reset_otel_global_state()


@pytest.fixture
def exporter() -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return exporter


class TestInitTelemetry:
    def test_noop_without_endpoint(self, monkeypatch):
        monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
        tracer = init_telemetry("calsync-test")
        with tracer.start_as_current_span("noop") as span:
            assert span is not None
        assert _telemetry_mod._tracer_provider_installed is False

    def test_get_tracer(self):
        assert get_tracer() is not None


class TestSyncSpan:
    def test_span_attributes(self, exporter):
        with sync_span("sync_binding", binding_id="b1", trigger="manual"):
            pass

        (span,) = exporter.get_finished_spans()
        assert span.name == "calsync.sync_binding"
        assert span.attributes["calsync.binding_id"] == "b1"
        assert span.attributes["calsync.trigger"] == "manual"

    def test_exception_recorded_and_reraised(self, exporter):
        with pytest.raises(RuntimeError):
            with sync_span("sync_binding", binding_id="b1"):
                raise RuntimeError("boom")

        (span,) = exporter.get_finished_spans()
        assert span.status.status_code == trace.StatusCode.ERROR
        assert span.events[0].name == "exception"
        assert "calsync.trigger" not in span.attributes

    async def test_engine_run_emits_span(self, exporter, engine, store, binding):
        store.put(SOURCE_CALENDAR, make_event("src-1"))

        await engine.sync_binding(binding.id, trigger="scheduled")

        (span,) = exporter.get_finished_spans()
        assert span.name == "calsync.sync_binding"
        assert span.attributes["calsync.binding_id"] == binding.id
        assert span.attributes["calsync.trigger"] == "scheduled"
        assert span.attributes["calsync.success"] is True
        assert span.attributes["calsync.items_synced"] == 1

"""OpenTelemetry metrics instruments for the reconciliation subsystem.

Instruments are created lazily from the global MeterProvider, so callers do
not need to pass a Meter instance around.

Initialization
--------------
Call ``init_metrics(service_name)`` once during startup (alongside
``init_telemetry``).  When OTEL_EXPORTER_OTLP_ENDPOINT is not set, the SDK
falls back to a no-op MeterProvider and all recordings are silent no-ops.

Instruments
-----------
  calsync.sync.runs_total          Counter  (label: outcome=success|failure)
      Completed reconciliation runs.

  calsync.sync.items_synced_total  Counter
      Creates, updates and deletes applied to target calendars.

  calsync.sync.duration_ms         Histogram
      Wall-clock duration of one reconciliation run.

  calsync.sync.active_runs         UpDownCounter (gauge semantics)
      Runs currently holding their binding's exclusive-run guard.

  calsync.sync.declined_total      Counter  (label: trigger=schedule|manual)
      Triggers declined because the binding was already syncing.

  calsync.remote.retries_total     Counter
      Transient remote failures that were retried.

Binding-scoped instruments carry a ``binding`` label.
"""

from __future__ import annotations

import logging
import os

from opentelemetry import metrics

logger = logging.getLogger(__name__)

_METER_NAME = "calsync"


def init_metrics(service_name: str) -> metrics.Meter:
    """Initialize OpenTelemetry metrics.

    When OTEL_EXPORTER_OTLP_ENDPOINT is set, configures a real MeterProvider
    with a periodic OTLP gRPC exporter.  Otherwise, the global no-op
    MeterProvider is used and all recordings are silent.
    """
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op meter")
        return metrics.get_meter(_METER_NAME)

    # Import SDK/exporter only when needed to avoid hard dependency at import time
    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource

    resource = Resource.create({"service.name": service_name})
    exporter = OTLPMetricExporter(endpoint=endpoint)
    reader = PeriodicExportingMetricReader(exporter, export_interval_millis=15_000)
    provider = MeterProvider(resource=resource, metric_readers=[reader])

    metrics.set_meter_provider(provider)
    logger.info("Metrics initialized: service=%s, endpoint=%s", service_name, endpoint)

    return metrics.get_meter(_METER_NAME)


def get_meter() -> metrics.Meter:
    """Return a Meter from the current global provider."""
    return metrics.get_meter(_METER_NAME)


# ---------------------------------------------------------------------------
# Instrument factories
# ---------------------------------------------------------------------------


def _runs_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="calsync.sync.runs_total",
        description="Completed reconciliation runs by outcome",
        unit="runs",
    )


def _items_synced_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="calsync.sync.items_synced_total",
        description="Creates, updates and deletes applied to target calendars",
        unit="events",
    )


def _duration_ms() -> metrics.Histogram:
    return get_meter().create_histogram(
        name="calsync.sync.duration_ms",
        description="Duration of a reconciliation run in milliseconds",
        unit="ms",
    )


def _active_runs() -> metrics.UpDownCounter:
    return get_meter().create_up_down_counter(
        name="calsync.sync.active_runs",
        description="Reconciliation runs currently in flight",
        unit="runs",
    )


def _declined_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="calsync.sync.declined_total",
        description="Triggers declined because the binding was already syncing",
        unit="triggers",
    )


def _retries_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="calsync.remote.retries_total",
        description="Transient remote failures that were retried",
        unit="retries",
    )


# ---------------------------------------------------------------------------
# SyncMetrics: convenience wrapper that caches instruments
# ---------------------------------------------------------------------------


class SyncMetrics:
    """Convenience wrapper around the reconciliation metrics.

    Instruments are lazily created from the global MeterProvider on first
    use, so it is safe to construct this object before ``init_metrics`` is
    called (all recordings will be no-ops until a real provider is installed).
    """

    def __init__(self) -> None:
        self.__runs: metrics.Counter | None = None
        self.__items: metrics.Counter | None = None
        self.__duration: metrics.Histogram | None = None
        self.__active: metrics.UpDownCounter | None = None
        self.__declined: metrics.Counter | None = None
        self.__retries: metrics.Counter | None = None

    # -- instrument accessors (lazy init) ------------------------------------

    @property
    def _runs(self) -> metrics.Counter:
        if self.__runs is None:
            self.__runs = _runs_total()
        return self.__runs

    @property
    def _items(self) -> metrics.Counter:
        if self.__items is None:
            self.__items = _items_synced_total()
        return self.__items

    @property
    def _duration(self) -> metrics.Histogram:
        if self.__duration is None:
            self.__duration = _duration_ms()
        return self.__duration

    @property
    def _active(self) -> metrics.UpDownCounter:
        if self.__active is None:
            self.__active = _active_runs()
        return self.__active

    @property
    def _declined(self) -> metrics.Counter:
        if self.__declined is None:
            self.__declined = _declined_total()
        return self.__declined

    @property
    def _retries(self) -> metrics.Counter:
        if self.__retries is None:
            self.__retries = _retries_total()
        return self.__retries

    # -- recording helpers ---------------------------------------------------

    def record_run(self, binding_id: str, *, success: bool, items: int, duration_ms: float) -> None:
        """Record one finished reconciliation run."""
        attrs = {"binding": binding_id}
        self._runs.add(1, {**attrs, "outcome": "success" if success else "failure"})
        if items:
            self._items.add(items, attrs)
        self._duration.record(duration_ms, attrs)

    def active_runs_inc(self, binding_id: str) -> None:
        self._active.add(1, {"binding": binding_id})

    def active_runs_dec(self, binding_id: str) -> None:
        self._active.add(-1, {"binding": binding_id})

    def record_declined(self, binding_id: str, trigger: str) -> None:
        self._declined.add(1, {"binding": binding_id, "trigger": trigger})

    def record_retry(self, operation: str) -> None:
        self._retries.add(1, {"operation": operation})

"""OpenTelemetry wiring for the simulator API and its session counters."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI
from opentelemetry import metrics, trace
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.metrics import MeterProvider as MeterProviderApi
from opentelemetry.sdk._logs import LoggerProvider
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.semconv.resource import ResourceAttributes

from investotype.config import AppSettings

logger = logging.getLogger(__name__)

_INSTRUMENTED_APPS: set[int] = set()
METER_NAME = "investotype.simulation"


class SimulationTelemetry:
    """Counters for session lifecycle events.

    Instruments are created from the global meter provider unless one is
    passed in, so without an SDK provider every call is a no-op.
    """

    def __init__(self, meter_provider: MeterProviderApi | None = None) -> None:
        meter = (meter_provider or metrics.get_meter_provider()).get_meter(METER_NAME)
        self._started = meter.create_counter(
            "simulation.sessions.started", unit="{session}", description="Sessions created"
        )
        self._finished = meter.create_counter(
            "simulation.sessions.finished", unit="{session}", description="Final reports built"
        )
        self._rebalances = meter.create_counter(
            "simulation.rebalances", unit="{rebalance}", description="Scheduled rebalances executed"
        )
        self._trades = meter.create_counter("simulation.trades", unit="{trade}", description="Ad-hoc trades executed")
        self._fees = meter.create_counter("simulation.fees", unit="USD", description="Transaction fees charged")

    def session_started(self, frequency: str, asset_count: int) -> None:
        self._started.add(1, {"frequency": frequency, "assets": asset_count})

    def rebalanced(self, mode: str, fee: float) -> None:
        self._rebalances.add(1, {"mode": mode})
        if fee > 0:
            self._fees.add(fee, {"source": "rebalance"})

    def traded(self, fee: float) -> None:
        self._trades.add(1)
        if fee > 0:
            self._fees.add(fee, {"source": "trade"})

    def session_finished(self, profile_code: str) -> None:
        self._finished.add(1, {"profile": profile_code})


def _exporter_options(settings: AppSettings) -> dict[str, Any]:
    options: dict[str, Any] = {"insecure": settings.telemetry_otlp_insecure}
    if settings.telemetry_otlp_endpoint:
        options["endpoint"] = settings.telemetry_otlp_endpoint
    return options


def setup_telemetry(app: FastAPI, settings: AppSettings) -> None:
    """Install OTLP trace, metric and log exporters and instrument the app plus outbound httpx."""

    if id(app) in _INSTRUMENTED_APPS:
        return
    if not settings.telemetry_enabled:
        logger.info("Telemetry disabled via configuration")
        return

    resource = Resource.create(
        {
            ResourceAttributes.SERVICE_NAME: settings.telemetry_service_name or settings.app_name,
            ResourceAttributes.SERVICE_NAMESPACE: "investotype",
            ResourceAttributes.SERVICE_VERSION: app.version,
        }
    )
    options = _exporter_options(settings)

    tracer_provider = TracerProvider(
        resource=resource,
        sampler=ParentBased(TraceIdRatioBased(settings.telemetry_sample_ratio)),
    )
    tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**options)))
    trace.set_tracer_provider(tracer_provider)

    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=[
            PeriodicExportingMetricReader(
                OTLPMetricExporter(**options),
                export_interval_millis=settings.telemetry_metric_interval_ms,
            )
        ],
    )
    metrics.set_meter_provider(meter_provider)

    logger_provider = LoggerProvider(resource=resource)
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(OTLPLogExporter(**options)))
    set_logger_provider(logger_provider)
    LoggingInstrumentor().instrument(set_logging_format=False)

    FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider, meter_provider=meter_provider)
    # Yahoo Finance requests show up as child spans of the simulation call
    HTTPXClientInstrumentor().instrument(tracer_provider=tracer_provider)

    _INSTRUMENTED_APPS.add(id(app))
    logger.info("Telemetry exporting to %s", settings.telemetry_otlp_endpoint or "the default OTLP endpoint")


__all__ = ["METER_NAME", "SimulationTelemetry", "setup_telemetry"]

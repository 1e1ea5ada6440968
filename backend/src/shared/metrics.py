from opentelemetry import metrics
from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource


def setup_metrics(app_name: str):
    """Configure OpenTelemetry metrics."""

    resource = Resource.create({"service.name": app_name})

    # Prometheus (pull model); the reader registers with the default prometheus_client registry
    prometheus_reader = PrometheusMetricReader()

    # Console exporter for local visibility
    console_reader = PeriodicExportingMetricReader(ConsoleMetricExporter())

    provider = MeterProvider(resource=resource, metric_readers=[prometheus_reader, console_reader])

    metrics.set_meter_provider(provider)

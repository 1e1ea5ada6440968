"""OpenTelemetry metrics for the preflight module."""

from collections.abc import Iterator

from opentelemetry import metrics

meter = metrics.get_meter("preflight")

# ============================================================================
# Certificate Authority Metrics
# ============================================================================

ca_created_total = meter.create_counter(
    name="preflight_ca_created_total",
    description="Total certificate authorities created",
    unit="1",
)

ca_uploads_total = meter.create_counter(
    name="preflight_ca_uploads_total",
    description="Total CA uploads by outcome",
    unit="1",
)

ca_resets_total = meter.create_counter(
    name="preflight_ca_resets_total",
    description="Total CA resets",
    unit="1",
)

ca_changed_notifications_total = meter.create_counter(
    name="preflight_ca_changed_notifications_total",
    description="Total CA-changed notifications by outcome",
    unit="1",
)

# CA source gauge - last source observed by the CA manager
_ca_source: str | None = None


def _get_ca_configured(
    options: metrics.CallbackOptions,
) -> Iterator[metrics.Observation]:
    """Callback to report CA presence."""
    if _ca_source:
        yield metrics.Observation(1, {"source": _ca_source})
    else:
        yield metrics.Observation(0, {"source": "none"})


ca_configured_gauge = meter.create_observable_gauge(
    name="preflight_ca_configured",
    description="CA present (1=yes, 0=no)",
    unit="1",
    callbacks=[_get_ca_configured],
)

# ============================================================================
# Node Provisioning Metrics
# ============================================================================

node_state_changes_total = meter.create_counter(
    name="preflight_node_state_changes_total",
    description="Total provisioning state changes by target state",
    unit="1",
)

node_resets_total = meter.create_counter(
    name="preflight_node_resets_total",
    description="Total provisioning records deleted",
    unit="1",
)


class PreflightMetrics:
    """Facade for preflight metrics with proper labels."""

    def record_ca_created(self, source: str) -> None:
        """Record CA creation. Labels: source=generated"""
        ca_created_total.add(1, {"source": source})

    def record_ca_upload(self, result: str) -> None:
        """Record CA upload. Labels: result=stored|failed"""
        ca_uploads_total.add(1, {"result": result})

    def record_ca_reset(self) -> None:
        ca_resets_total.add(1)

    def record_ca_changed_notification(self, result: str) -> None:
        """Record notification outcome. Labels: result=delivered|failed"""
        ca_changed_notifications_total.add(1, {"result": result})

    def record_ca_source(self, source: str | None) -> None:
        """Record the CA source last observed (None when there is no CA)."""
        global _ca_source
        _ca_source = source

    def record_node_state_change(self, state: str) -> None:
        node_state_changes_total.add(1, {"state": state})

    def record_node_reset(self, count: int = 1) -> None:
        node_resets_total.add(count)


# Singleton instance
preflight_metrics = PreflightMetrics()

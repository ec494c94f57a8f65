"""Bridge Observability Metrics.

In-process counters and gauges for the payment backends.

Metric Categories:
- Incoming: requests created/failed, payments received, waits expired
- Reconciliation: confirmed quotes with no cost record
- Outgoing: payments by terminal status, paid actions executed
- Streams: pending waits, wait stream liveness

Usage:
    metrics = BridgeMetrics()
    metrics.incoming_created.inc()

    # For Prometheus export
    print(metrics.to_prometheus())

    # For JSON export
    print(metrics.to_json())
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any


@dataclass
class Counter:
    """A counter metric (monotonically increasing)."""

    name: str
    value: int = 0
    labels: dict[str, str] = field(default_factory=dict)
    help_text: str = ""

    def inc(self, amount: int = 1) -> None:
        if amount < 0:
            raise ValueError("Counters only go up")
        self.value += amount


@dataclass
class Gauge:
    """A gauge metric (can go up or down)."""

    name: str
    value: float | int = 0
    labels: dict[str, str] = field(default_factory=dict)
    help_text: str = ""

    def set(self, value: float | int) -> None:
        self.value = value


def _counter(name: str, help_text: str) -> Any:
    return field(default_factory=lambda: Counter(name=name, help_text=help_text))


def _gauge(name: str, help_text: str) -> Any:
    return field(default_factory=lambda: Gauge(name=name, help_text=help_text))


@dataclass
class BridgeMetrics:
    """Collection of all bridge metrics."""

    incoming_created: Counter = _counter(
        "athenut_incoming_requests_created_total", "Incoming payment requests created"
    )
    incoming_failed: Counter = _counter(
        "athenut_incoming_requests_failed_total", "Incoming payment requests that failed"
    )
    payments_received: Counter = _counter(
        "athenut_payments_received_total", "Incoming payments confirmed"
    )
    waits_expired: Counter = _counter(
        "athenut_waits_expired_total", "Pending waits that resolved without payment"
    )
    reconciliation_failures: Counter = _counter(
        "athenut_reconciliation_failures_total", "Confirmed quotes with no cost record"
    )
    paid_actions: Counter = _counter(
        "athenut_paid_actions_total", "Paid actions executed"
    )
    outgoing_by_status: dict[str, Counter] = field(default_factory=dict)

    pending_waits: Gauge = _gauge("athenut_pending_waits", "Waits currently in flight")
    wait_stream_active: Gauge = _gauge(
        "athenut_wait_stream_active", "Payment event streams currently live"
    )

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def record_outgoing(self, status: str) -> None:
        counter = self.outgoing_by_status.get(status)
        if counter is None:
            counter = Counter(
                name="athenut_outgoing_payments_total",
                labels={"status": status},
                help_text="Outgoing payments by terminal status",
            )
            self.outgoing_by_status[status] = counter
        counter.inc()

    def _metrics(self) -> list[Counter | Gauge]:
        result: list[Counter | Gauge] = []
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, (Counter, Gauge)):
                result.append(value)
        result.extend(self.outgoing_by_status[k] for k in sorted(self.outgoing_by_status))
        return result

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {"started_at": self.started_at.isoformat()}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, (Counter, Gauge)):
                result[f.name] = self._metric_to_dict(value)
        result["outgoing_by_status"] = {
            status: self._metric_to_dict(counter)
            for status, counter in sorted(self.outgoing_by_status.items())
        }
        return result

    def _metric_to_dict(self, metric: Counter | Gauge) -> dict[str, Any]:
        """Convert single metric to dict."""
        return {
            "name": metric.name,
            "value": metric.value,
            "labels": metric.labels,
            "help": metric.help_text,
        }

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=2)

    def to_prometheus(self) -> str:
        """Convert to Prometheus text format."""
        lines: list[str] = []
        described: set[str] = set()

        for metric in self._metrics():
            if metric.name not in described:
                kind = "counter" if isinstance(metric, Counter) else "gauge"
                if metric.help_text:
                    lines.append(f"# HELP {metric.name} {metric.help_text}")
                lines.append(f"# TYPE {metric.name} {kind}")
                described.add(metric.name)

            labels = ""
            if metric.labels:
                label_parts = [f'{k}="{v}"' for k, v in metric.labels.items()]
                labels = "{" + ",".join(label_parts) + "}"
            lines.append(f"{metric.name}{labels} {metric.value}")

        return "\n".join(lines) + "\n"

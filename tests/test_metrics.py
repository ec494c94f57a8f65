"""Tests for bridge metrics."""

import json

import pytest

from athenut_mint.metrics import BridgeMetrics, Counter


class TestCounter:
    def test_counters_only_go_up(self):
        counter = Counter(name="x")
        counter.inc()
        counter.inc(2)
        assert counter.value == 3
        with pytest.raises(ValueError):
            counter.inc(-1)


class TestBridgeMetrics:
    """Export formats."""

    def test_fresh_instances_do_not_share_state(self):
        a, b = BridgeMetrics(), BridgeMetrics()
        a.incoming_created.inc()
        assert b.incoming_created.value == 0

    def test_outgoing_counted_per_status(self):
        metrics = BridgeMetrics()
        metrics.record_outgoing("paid")
        metrics.record_outgoing("paid")
        metrics.record_outgoing("failed")

        assert metrics.outgoing_by_status["paid"].value == 2
        assert metrics.outgoing_by_status["failed"].labels == {"status": "failed"}

    def test_prometheus_text(self):
        metrics = BridgeMetrics()
        metrics.payments_received.inc(4)
        metrics.pending_waits.set(2)
        metrics.record_outgoing("paid")
        metrics.record_outgoing("failed")

        text = metrics.to_prometheus()

        assert "# TYPE athenut_payments_received_total counter" in text
        assert "athenut_payments_received_total 4" in text
        assert "# TYPE athenut_pending_waits gauge" in text
        assert "athenut_pending_waits 2" in text
        assert 'athenut_outgoing_payments_total{status="paid"} 1' in text
        assert 'athenut_outgoing_payments_total{status="failed"} 1' in text
        assert text.count("# TYPE athenut_outgoing_payments_total counter") == 1
        assert text.endswith("\n")

    def test_json_export(self):
        metrics = BridgeMetrics()
        metrics.reconciliation_failures.inc()
        metrics.record_outgoing("paid")

        data = json.loads(metrics.to_json())

        assert data["reconciliation_failures"]["value"] == 1
        assert data["outgoing_by_status"]["paid"]["value"] == 1
        assert "started_at" in data

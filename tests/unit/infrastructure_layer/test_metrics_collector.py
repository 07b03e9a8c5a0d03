"""
Unit Tests for MetricsCollector

Metrics live in the process-wide Prometheus registry, so assertions compare
sample values before and after instead of absolute counts.
"""

import pytest
from prometheus_client import REGISTRY

from possibility_engine.core.config.constants import CircuitState
from possibility_engine.infrastructure.monitoring.metrics_collector import (
    MetricsCollector,
    get_metrics_collector,
)


def _sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.fixture
def collector():
    return MetricsCollector()


@pytest.mark.unit
class TestMetricsCollector:
    def test_generation_counters(self, collector):
        started = _sample("possibility_generations_started_total")
        failed = _sample("possibility_generations_failed_total", error_type="circuit_open")

        collector.record_generation_started()
        collector.record_generation_failed("circuit_open")

        assert _sample("possibility_generations_started_total") == started + 1
        assert _sample("possibility_generations_failed_total",
                       error_type="circuit_open") == failed + 1

    def test_possibility_outcomes(self, collector):
        before = _sample("possibility_outcomes_total", provider="alpha", outcome="rejected")
        collector.record_possibility_outcome("alpha", "rejected")
        assert _sample("possibility_outcomes_total",
                       provider="alpha", outcome="rejected") == before + 1

    def test_breaker_state_gauge(self, collector):
        collector.record_breaker_state("alpha", CircuitState.OPEN, CircuitState.CLOSED)
        assert _sample("possibility_circuit_breaker_state", provider="alpha") == 2

        collector.record_breaker_state("alpha", "half_open")
        assert _sample("possibility_circuit_breaker_state", provider="alpha") == 1

    def test_pool_gauges(self, collector):
        collector.record_pool_metrics({"active": 3, "queued": 7})
        assert _sample("possibility_pool_active") == 3
        assert _sample("possibility_pool_queued") == 7

    def test_operation_duration(self, collector):
        before = _sample("possibility_operation_duration_seconds_count",
                         operation="generate", success="true")
        collector.record_operation_duration("generate", 0.2)
        assert _sample("possibility_operation_duration_seconds_count",
                       operation="generate", success="true") == before + 1

    def test_parse_errors(self, collector):
        before = _sample("possibility_parse_errors_total", provider="beta")
        collector.record_parse_error("beta")
        assert _sample("possibility_parse_errors_total", provider="beta") == before + 1

    def test_export(self, collector):
        output = collector.export()
        assert b"possibility_outcomes_total" in output
        assert b"possibility_engine_info" in output
        assert collector.get_content_type().startswith("text/plain")

    def test_global_collector_is_singleton(self):
        assert get_metrics_collector() is get_metrics_collector()

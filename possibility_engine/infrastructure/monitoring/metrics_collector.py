#!/usr/bin/env python3
"""
Metrics Collector with Prometheus Integration

This module is the engine's metrics sink:
- Generation start / failure counters
- Per-possibility outcome counters by provider
- Operation duration histograms
- Circuit breaker state gauges
- Pool in-flight and queued gauges
- Frame parse error counters

Architectural Decision: prometheus-client for industry-standard metrics
- Compatible with Grafana dashboards
- Histogram buckets for latency percentiles

Author: Senior Solution Architect
Date: 2025-12-05
"""

from typing import Any

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

from possibility_engine.core.config.constants import CircuitState
from possibility_engine.core.config.settings import get_settings
from possibility_engine.core.logging.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Metric Definitions
# ============================================================================

GENERATIONS_STARTED = Counter(
    'possibility_generations_started_total',
    'Total generation requests started'
)

GENERATIONS_FAILED = Counter(
    'possibility_generations_failed_total',
    'Total generation requests that failed',
    ['error_type']
)

POSSIBILITY_OUTCOMES = Counter(
    'possibility_outcomes_total',
    'Possibility executions by outcome',
    ['provider', 'outcome']  # completed, failed, rejected, cancelled
)

OPERATION_DURATION = Histogram(
    'possibility_operation_duration_seconds',
    'Engine operation duration in seconds',
    ['operation', 'success'],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0)
)

CIRCUIT_BREAKER_STATE = Gauge(
    'possibility_circuit_breaker_state',
    'Circuit breaker state (0=closed, 1=half_open, 2=open)',
    ['provider']
)

CIRCUIT_BREAKER_TRANSITIONS = Counter(
    'possibility_circuit_breaker_transitions_total',
    'Circuit breaker state transitions',
    ['provider', 'state']
)

POOL_ACTIVE = Gauge(
    'possibility_pool_active',
    'Possibilities currently executing'
)

POOL_QUEUED = Gauge(
    'possibility_pool_queued',
    'Possibilities waiting for a pool slot'
)

PARSE_ERRORS = Counter(
    'possibility_parse_errors_total',
    'Stream lines skipped by the frame parser',
    ['provider']
)

APP_INFO = Info(
    'possibility_engine',
    'Application information'
)

_STATE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class MetricsCollector:
    """
    Centralized metrics collector.

    STAGE-M: Metrics collection

    Usage:
        metrics = get_metrics_collector()
        metrics.record_generation_started()
        metrics.record_possibility_outcome("openai", "completed")
        output = metrics.export()
    """

    def __init__(self):
        self.settings = get_settings()

        APP_INFO.info({
            'version': self.settings.app.APP_VERSION,
            'environment': self.settings.app.ENVIRONMENT,
            'app_name': self.settings.app.APP_NAME
        })

        logger.info("Metrics collector initialized", stage="M.0")

    # =========================================================================
    # Generation Metrics
    # =========================================================================

    def record_generation_started(self) -> None:
        GENERATIONS_STARTED.inc()

    def record_generation_failed(self, error_type: str) -> None:
        GENERATIONS_FAILED.labels(error_type=error_type).inc()

    def record_operation_duration(
        self, operation: str, duration_seconds: float, success: bool = True
    ) -> None:
        OPERATION_DURATION.labels(
            operation=operation, success=str(success).lower()
        ).observe(duration_seconds)

    # =========================================================================
    # Possibility Metrics
    # =========================================================================

    def record_possibility_outcome(self, provider: str, outcome: str) -> None:
        POSSIBILITY_OUTCOMES.labels(provider=provider, outcome=outcome).inc()

    def record_parse_error(self, provider: str = "unknown") -> None:
        PARSE_ERRORS.labels(provider=provider).inc()

    # =========================================================================
    # Circuit Breaker Metrics
    # =========================================================================

    def record_breaker_state(
        self, provider: str, state: CircuitState, old_state: CircuitState | None = None
    ) -> None:
        """Matches the circuit breaker state-change listener signature."""
        state = CircuitState(state)
        CIRCUIT_BREAKER_STATE.labels(provider=provider).set(_STATE_VALUES[state])
        CIRCUIT_BREAKER_TRANSITIONS.labels(provider=provider, state=state.value).inc()

    # =========================================================================
    # Pool Metrics
    # =========================================================================

    def record_pool_metrics(self, metrics: dict[str, Any]) -> None:
        """Matches the connection pool metrics listener signature."""
        POOL_ACTIVE.set(metrics.get("active", 0))
        POOL_QUEUED.set(metrics.get("queued", 0))

    # =========================================================================
    # Export
    # =========================================================================

    def export(self) -> bytes:
        """Prometheus text format output."""
        return generate_latest(REGISTRY)

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


# Global metrics collector
_metrics: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics

"""
Unit tests for the shared observability helpers used by the Rights service.
"""

import pytest
from prometheus_client import CollectorRegistry

from shared import circuit_breaker
from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.metrics import MetricsCollector
from shared.observability import get_observability_manager
from shared.tracing import _build_otlp_exporter_kwargs


class TestOTLPExporterKwargs:

    def test_override_and_headers(self, monkeypatch):
        monkeypatch.setenv("OTEL_EXPORTER_OTLP_HEADERS", "x-tenant=rights, bad-segment,=skip")

        kwargs = _build_otlp_exporter_kwargs("http://collector:4317")

        assert kwargs == {
            "endpoint": "http://collector:4317",
            "headers": {"x-tenant": "rights"},
            "insecure": True,
        }

    def test_environment_endpoint(self, monkeypatch):
        monkeypatch.delenv("OTEL_EXPORTER_OTLP_HEADERS", raising=False)
        monkeypatch.delenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", raising=False)
        monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "https://otel.example.com:4317")

        assert _build_otlp_exporter_kwargs() == {"endpoint": "https://otel.example.com:4317"}


class TestObservabilityManager:

    def test_business_event_is_counted(self):
        registry = CollectorRegistry()
        observability = get_observability_manager("rights", MetricsCollector("rights", registry))

        observability.trace_request(account_id="acc-1", application_id="app-1")
        observability.log_business_event("rights_granted", right_id="right-1")

        assert registry.get_sample_value(
            "business_events_total",
            {"event_type": "rights_granted", "service": "rights"},
        ) == 1


class TestCircuitBreaker:

    @pytest.mark.asyncio
    async def test_half_open_recovers(self, monkeypatch):
        now = [1000.0]
        monkeypatch.setattr(circuit_breaker.time, "time", lambda: now[0])
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=30, name="test-recovery")

        async def fail():
            raise ConnectionError("down")

        async def succeed():
            return "up"

        with pytest.raises(ConnectionError):
            await breaker.call(fail)
        with pytest.raises(CircuitBreakerOpenException):
            await breaker.call(succeed)

        now[0] += 30
        assert await breaker.call(succeed) == "up"
        assert not breaker.is_open()

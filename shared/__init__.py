"""
Shared utilities for the Rights service.

This package aggregates the ambient building blocks used by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- tracing: OpenTelemetry tracing config
- observability: Business event and error reporting
- errors: Canonical error types and responses
- circuit_breaker: Resilient external call protection
- base_service: FastAPI service skeleton (health, metrics, error handlers)

Do not import from service_* packages into shared/.
"""

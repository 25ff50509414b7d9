"""
Shared utilities for the Access Layer services.

This package aggregates common building blocks consumed by the services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- tracing: OpenTelemetry tracing config
- observability: Business-event logging tying the above together
- errors: Canonical error types and responses
- retry: Retry helper for optimistic-concurrency conflicts
- base_service: FastAPI service skeleton

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service_* packages into shared/.
"""

"""
Shared utilities for the licensing backend.

This package aggregates common building blocks consumed by the services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Client errors, authorization denials and infrastructure faults
- retry: Backoff calculation and retry decorator
- base_service: FastAPI service skeleton (health, metrics, error mapping)
- test_helpers: Data factory for tests and local runs

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service_* packages into shared/.
"""

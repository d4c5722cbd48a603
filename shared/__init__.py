"""
Shared utilities for the FIWARE Access Gateway.

This package aggregates common building blocks consumed by the gateway:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI service skeleton (health, metrics, error handlers)
- test_helpers: factories and upstream doubles for the test suite

Any cross-service logic should live here to avoid import cycles across
service packages. Runtime modules here must not import from service_* packages;
test_helpers is the one exception.
"""

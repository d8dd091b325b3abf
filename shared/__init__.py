"""
Shared utilities for the Lendbook contract read proxy.

Building blocks used by the proxy service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorator for transient chain endpoint failures
- base_service: FastAPI application scaffolding

Do not import from service_* packages into shared/.
"""

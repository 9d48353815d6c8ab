"""Common utilities shared across services.

Includes:
- ``config``: Pydantic-based service configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics for model loading.

Import pattern:
- from modelhost.common.config import ModelHostConfig
- from modelhost.common.logging import configure_logging
"""

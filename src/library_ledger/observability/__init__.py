"""Logfire observability for the Library Ledger."""

import logging

import logfire

from .config import ObservabilityConfig
from .decorators import trace_resource, trace_tool
from .metrics import record_catalog_change, record_circulation_event

logger = logging.getLogger(__name__)

_config: ObservabilityConfig | None = None


def initialize_observability(config: ObservabilityConfig | None = None):
    """Configure Logfire; spans and metrics stay local unless sending is enabled."""
    global _config  # noqa: PLW0603
    _config = config or ObservabilityConfig()

    if not _config.enabled:
        logger.debug("Observability disabled via configuration")
        return

    logfire.configure(
        token=_config.token or None,
        service_name=_config.service_name,
        environment=_config.environment,
        send_to_logfire=_config.send_to_logfire,
        console=False if not _config.console_output else None,
    )

    if _config.is_production:
        logfire.instrument_system_metrics()

    logger.info(
        "Observability initialized (environment=%s, send_to_logfire=%s)",
        _config.environment,
        _config.send_to_logfire,
    )


def get_observability_config() -> ObservabilityConfig:
    """Get current observability configuration."""
    global _config  # noqa: PLW0603
    if _config is None:
        _config = ObservabilityConfig()
    return _config


__all__ = [
    "ObservabilityConfig",
    "get_observability_config",
    "initialize_observability",
    "logfire",
    "record_catalog_change",
    "record_circulation_event",
    "trace_resource",
    "trace_tool",
]

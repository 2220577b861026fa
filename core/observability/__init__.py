"""
Observability Module for the Line-Item Service

Provides:
- Structured logging with correlation IDs (job, operation, workflow)
- Telemetry counters for fallback and degraded code paths
"""

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
)

from core.observability.telemetry import (
    TelemetryCounters,
    TelemetryKey,
    get_telemetry,
)

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
    # Telemetry
    "TelemetryCounters",
    "TelemetryKey",
    "get_telemetry",
]

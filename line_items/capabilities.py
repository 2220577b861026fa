"""Capability flags for optional job_parts columns.

Deployments differ in which optional columns exist on the line-item table.
The registry records what is currently believed to exist. Flags start
enabled and only ever flip from enabled to disabled; a disable is triggered
by a classified "missing column" storage error and is reported to telemetry.
"""

from enum import Enum
from typing import Dict, Iterable, Optional

from core.observability.logging import get_logger
from core.observability.telemetry import TelemetryCounters, TelemetryKey


logger = get_logger(__name__)


class Capability(str, Enum):
    """Optional column families on job_parts."""
    VENDOR = "vendor"
    SCHEDULING_TIMES = "scheduling-times"


# Columns that belong to each family
CAPABILITY_COLUMNS: Dict[Capability, tuple] = {
    Capability.VENDOR: ("vendor_id",),
    Capability.SCHEDULING_TIMES: ("scheduled_start_time", "scheduled_end_time"),
}

FALLBACK_COUNTERS: Dict[Capability, TelemetryKey] = {
    Capability.VENDOR: TelemetryKey.VENDOR_ID_FALLBACK,
    Capability.SCHEDULING_TIMES: TelemetryKey.SCHEDULED_TIMES_FALLBACK,
}


class CapabilityRegistry:
    """Process-wide record of which optional columns are usable.

    No locking: disabling is idempotent, so concurrent disables of the same
    capability converge on the same state.
    """

    def __init__(
        self,
        telemetry: Optional[TelemetryCounters] = None,
        initially_disabled: Iterable[Capability] = (),
    ):
        """Initialize the registry.

        Args:
            telemetry: Counters notified on each disable (None disables reporting)
            initially_disabled: Capabilities known to be absent at startup
        """
        self.telemetry = telemetry
        self._initially_disabled = frozenset(Capability(c) for c in initially_disabled)
        self._flags: Dict[Capability, bool] = {}
        self.reset_all()

    @classmethod
    def from_settings(cls, settings=None, telemetry: Optional[TelemetryCounters] = None) -> "CapabilityRegistry":
        if settings is None:
            from core.config import get_settings
            settings = get_settings()
        disabled = []
        if not settings.vendor_column:
            disabled.append(Capability.VENDOR)
        if not settings.scheduled_times_column:
            disabled.append(Capability.SCHEDULING_TIMES)
        return cls(telemetry=telemetry, initially_disabled=disabled)

    def is_enabled(self, capability: Capability) -> bool:
        return self._flags[Capability(capability)]

    def disable(self, capability: Capability) -> bool:
        """Mark a capability as unavailable for the rest of the process.

        Returns:
            True if this call flipped the flag, False if it was already off
        """
        capability = Capability(capability)
        if not self._flags[capability]:
            return False

        self._flags[capability] = False
        logger.warning(
            f"Capability disabled: {capability.value}",
            extra_fields={"columns": ",".join(CAPABILITY_COLUMNS[capability])},
        )
        if self.telemetry is not None:
            self.telemetry.increment(FALLBACK_COUNTERS[capability])
        return True

    def reset_all(self) -> None:
        """Restore startup defaults. Intended for test isolation."""
        self._flags = {c: c not in self._initially_disabled for c in Capability}

    def snapshot(self) -> Dict[str, bool]:
        return {c.value: enabled for c, enabled in self._flags.items()}


_registry: Optional[CapabilityRegistry] = None


def get_capability_registry() -> CapabilityRegistry:
    """Get the shared registry used by production wiring."""
    global _registry
    if _registry is None:
        _registry = CapabilityRegistry.from_settings(telemetry=TelemetryCounters.instance())
    return _registry

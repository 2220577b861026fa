"""Line Item Payload Builder.

Turns caller-supplied line items into canonical, deduplicated job_parts rows:
1. Resolve each field through the alias table; drop items without a product
2. Coerce quantity / unit price (defaults 1 / 0 on bad input)
3. Infer requires_scheduling and apply the scheduling mutual exclusions
4. Normalize promised date and scheduled times
5. Build the composite key, with placeholders for null or excluded fields
6. Merge duplicates by key: first record wins, quantities are summed
7. Emit records in first-seen order

Building reads capability flags and nothing else; it performs no I/O.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel

from line_items.capabilities import Capability, CapabilityRegistry
from line_items.models import CanonicalLineItemRecord
from line_items.normalize import (
    DEFAULT_QUANTITY,
    DEFAULT_UNIT_PRICE,
    clean_reference,
    is_blank,
    normalize_date,
    normalize_timestamp,
    resolve_field,
    to_flag,
    to_number,
)


VENDOR_PLACEHOLDER = "00000000-0000-0000-0000-000000000000"
DATE_PLACEHOLDER = "1970-01-01"
TIME_PLACEHOLDER = "1970-01-01 00:00:00+00"

CompositeKey = Tuple[str, str, str, str, str, str]


@dataclass
class BuildReport:
    """What happened while building one payload.

    Attributes:
        records: Canonical records, deduplicated, in first-seen order
        inputs_seen: Number of items supplied by the caller
        dropped: Items skipped for lacking a product reference
        merged: Items folded into an earlier record with the same key
        include_vendor: Whether vendor_id was included
        include_times: Whether scheduled times were included
    """
    records: List[CanonicalLineItemRecord] = field(default_factory=list)
    inputs_seen: int = 0
    dropped: int = 0
    merged: int = 0
    include_vendor: bool = True
    include_times: bool = True

    @property
    def rows(self) -> List[Dict[str, Any]]:
        return [record.to_row() for record in self.records]


def _as_mapping(item: Any) -> Optional[Mapping[str, Any]]:
    if item is None:
        return None
    if isinstance(item, BaseModel):
        return item.model_dump()
    if isinstance(item, Mapping):
        return item
    return None


def composite_key(record: CanonicalLineItemRecord) -> CompositeKey:
    """Dedupe key for a record.

    Fields that are null, empty or not carried by the record (capability
    disabled) collapse to the same placeholder.
    """
    return (
        record.job_id,
        record.product_id,
        (record.vendor_id if record.has_vendor else None) or VENDOR_PLACEHOLDER,
        record.promised_date or DATE_PLACEHOLDER,
        (record.scheduled_start_time if record.has_times else None) or TIME_PLACEHOLDER,
        (record.scheduled_end_time if record.has_times else None) or TIME_PLACEHOLDER,
    )


class PayloadBuilder:
    """Builds canonical job_parts payloads.

    Example:
        builder = PayloadBuilder(registry)
        records = builder.build("job-123", [
            {"productId": "prod-1", "quantity": 2, "unitPrice": 100},
            {"product_id": "prod-1", "quantity_used": 3, "unit_price": 100},
        ])
        # -> one record, quantity_used == 5
    """

    def __init__(self, registry: CapabilityRegistry):
        self.registry = registry

    def _included(
        self,
        capability: Capability,
        overrides: Optional[Mapping[Capability, bool]],
    ) -> bool:
        if overrides and capability in overrides:
            return bool(overrides[capability])
        return self.registry.is_enabled(capability)

    def build(
        self,
        job_id: str,
        inputs: Optional[Iterable[Any]],
        capability_overrides: Optional[Mapping[Capability, bool]] = None,
    ) -> List[CanonicalLineItemRecord]:
        """Build canonical records for ``job_id``.

        Args:
            job_id: Job the rows belong to
            inputs: Dicts or LineItemInput models, either naming convention
            capability_overrides: Per-capability inclusion overriding the registry

        Returns:
            Deduplicated records in first-seen order
        """
        return self.build_report(job_id, inputs, capability_overrides).records

    def build_report(
        self,
        job_id: str,
        inputs: Optional[Iterable[Any]],
        capability_overrides: Optional[Mapping[Capability, bool]] = None,
    ) -> BuildReport:
        """Same as ``build`` but also reports dropped and merged counts."""
        report = BuildReport(
            include_vendor=self._included(Capability.VENDOR, capability_overrides),
            include_times=self._included(Capability.SCHEDULING_TIMES, capability_overrides),
        )

        by_key: Dict[CompositeKey, CanonicalLineItemRecord] = {}

        for item in inputs or []:
            report.inputs_seen += 1
            record = self._to_record(job_id, item, report.include_vendor, report.include_times)
            if record is None:
                report.dropped += 1
                continue

            key = composite_key(record)
            existing = by_key.get(key)
            if existing is None:
                by_key[key] = record
                continue

            existing.quantity_used = to_number(
                existing.quantity_used + record.quantity_used, DEFAULT_QUANTITY
            )
            report.merged += 1

        # dicts preserve insertion order
        report.records = list(by_key.values())
        return report

    def _to_record(
        self,
        job_id: str,
        item: Any,
        include_vendor: bool,
        include_times: bool,
    ) -> Optional[CanonicalLineItemRecord]:
        data = _as_mapping(item)
        if data is None:
            return None

        product_id = clean_reference(resolve_field(data, "product_id"))
        if product_id is None:
            return None

        raw_start = resolve_field(data, "scheduled_start_time")
        raw_end = resolve_field(data, "scheduled_end_time")
        requires_scheduling = (
            to_flag(resolve_field(data, "requires_scheduling"))
            or not is_blank(raw_start)
            or not is_blank(raw_end)
        )

        no_schedule_reason = None
        if not requires_scheduling:
            reason = resolve_field(data, "no_schedule_reason")
            no_schedule_reason = None if is_blank(reason) else str(reason).strip()

        fields: Dict[str, Any] = {
            "job_id": job_id,
            "product_id": product_id,
            "quantity_used": to_number(resolve_field(data, "quantity_used"), DEFAULT_QUANTITY),
            "unit_price": to_number(resolve_field(data, "unit_price"), DEFAULT_UNIT_PRICE),
            "promised_date": normalize_date(resolve_field(data, "promised_date")),
            "requires_scheduling": requires_scheduling,
            "no_schedule_reason": no_schedule_reason,
            "is_off_site": to_flag(resolve_field(data, "is_off_site")),
        }

        if include_vendor:
            fields["vendor_id"] = clean_reference(resolve_field(data, "vendor_id"))

        if include_times:
            fields["scheduled_start_time"] = normalize_timestamp(raw_start) if requires_scheduling else None
            fields["scheduled_end_time"] = normalize_timestamp(raw_end) if requires_scheduling else None

        return CanonicalLineItemRecord(**fields)

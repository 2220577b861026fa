"""Line Item Data Models.

This module defines the Pydantic models for line-item synchronization:
- LineItemInput: Untrusted caller shape, accepts snake_case and camelCase
- CanonicalLineItemRecord: Storage-ready row built by the payload builder
- LineItemInsert: Strict schema for the typed creation path
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from line_items.normalize import FIELD_ALIASES


def _aliases(field: str) -> AliasChoices:
    return AliasChoices(*FIELD_ALIASES[field])


class LineItemInput(BaseModel):
    """A desired line item as supplied by a form or API caller.

    Every field is optional and untyped: coercion and the silent-drop policy
    belong to the payload builder, so one odd value never rejects a batch.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    product_id: Optional[Any] = Field(default=None, validation_alias=_aliases("product_id"))
    vendor_id: Optional[Any] = Field(default=None, validation_alias=_aliases("vendor_id"))
    quantity_used: Optional[Any] = Field(default=None, validation_alias=_aliases("quantity_used"))
    unit_price: Optional[Any] = Field(default=None, validation_alias=_aliases("unit_price"))
    promised_date: Optional[Any] = Field(default=None, validation_alias=_aliases("promised_date"))
    requires_scheduling: Optional[Any] = Field(default=None, validation_alias=_aliases("requires_scheduling"))
    no_schedule_reason: Optional[Any] = Field(default=None, validation_alias=_aliases("no_schedule_reason"))
    is_off_site: Optional[Any] = Field(default=None, validation_alias=_aliases("is_off_site"))
    scheduled_start_time: Optional[Any] = Field(
        default=None, validation_alias=_aliases("scheduled_start_time")
    )
    scheduled_end_time: Optional[Any] = Field(
        default=None, validation_alias=_aliases("scheduled_end_time")
    )


class CanonicalLineItemRecord(BaseModel):
    """Normalized job_parts row.

    ``vendor_id`` and the scheduled time fields are only *set* when their
    capability is enabled; ``to_row()`` dumps set fields only, so a row never
    names a column the store is believed to lack.
    """
    model_config = ConfigDict(frozen=False)

    job_id: str
    product_id: str
    vendor_id: Optional[str] = None
    quantity_used: Union[int, float] = 1
    unit_price: Union[int, float] = 0
    promised_date: Optional[str] = None
    requires_scheduling: bool = False
    no_schedule_reason: Optional[str] = None
    is_off_site: bool = False
    scheduled_start_time: Optional[str] = None
    scheduled_end_time: Optional[str] = None

    @property
    def has_vendor(self) -> bool:
        return "vendor_id" in self.model_fields_set

    @property
    def has_times(self) -> bool:
        return "scheduled_start_time" in self.model_fields_set

    def to_row(self) -> Dict[str, Any]:
        """Storage row containing only the columns this record carries."""
        return self.model_dump(exclude_unset=True)


class LineItemInsert(BaseModel):
    """Strict schema for the typed creation path.

    Rejects a batch up front, before any write is attempted.
    """
    model_config = ConfigDict(populate_by_name=True)

    job_id: UUID = Field(validation_alias=AliasChoices("job_id", "jobId"))
    product_id: UUID = Field(validation_alias=_aliases("product_id"))
    vendor_id: Optional[UUID] = Field(default=None, validation_alias=_aliases("vendor_id"))
    quantity_used: int = Field(default=1, validation_alias=_aliases("quantity_used"))
    unit_price: float = Field(default=0, validation_alias=_aliases("unit_price"))
    promised_date: Optional[date] = Field(default=None, validation_alias=_aliases("promised_date"))
    requires_scheduling: bool = Field(default=False, validation_alias=_aliases("requires_scheduling"))
    no_schedule_reason: Optional[str] = Field(default=None, validation_alias=_aliases("no_schedule_reason"))
    is_off_site: bool = Field(default=False, validation_alias=_aliases("is_off_site"))

    @field_validator("quantity_used")
    @classmethod
    def _quantity_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Quantity must be at least 1")
        return value

    @field_validator("unit_price")
    @classmethod
    def _price_not_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("Unit price must be zero or greater")
        return value

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class SyncLineItemsRequest(BaseModel):
    """Request body for replacing a job's line items."""
    line_items: List[LineItemInput] = Field(
        default_factory=list, validation_alias=AliasChoices("line_items", "lineItems")
    )

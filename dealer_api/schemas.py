from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


# Caps keep price × qty sums finite and JSON-safe
MAX_PRICE = 100_000_000.0
MAX_QTY = 10_000
MAX_ITEMS = 500


class _Payload(BaseModel):
    # Wire format is camelCase; unknown keys are dropped, not rejected
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class DealerStockIn(_Payload):
    dealer_id: str = Field(alias="dealerId", min_length=1)
    qty: int = Field(ge=0, le=1_000_000)


class VehicleIn(_Payload):
    sku: str = Field(min_length=1)
    model: str = ""
    version: str = ""
    color: str = ""
    specs: dict[str, Any] = Field(default_factory=dict)
    msrp: float = Field(default=0.0, ge=0, le=MAX_PRICE, allow_inf_nan=False)
    stock_total: int = Field(default=0, alias="stockTotal", ge=0)
    stock_by_dealer: list[DealerStockIn] = Field(default_factory=list, alias="stockByDealer")


class CustomerIn(_Payload):
    name: str = Field(min_length=1)
    phone: str | None = ""
    email: EmailStr | None = None
    address: str | None = ""
    notes: str | None = ""

    @field_validator("email", mode="before")
    @classmethod
    def _blank_email(cls, v):
        return v or None


class ItemIn(_Payload):
    vehicle_sku: str = Field(alias="vehicleSku", min_length=1)
    price: float = Field(ge=0, le=MAX_PRICE, allow_inf_nan=False)
    qty: int = Field(ge=1, le=MAX_QTY)


class QuoteIn(_Payload):
    """Client-supplied `total` is ignored; the server prices the items."""
    dealer_id: str = Field(alias="dealerId", min_length=1)
    customer_id: str = Field(alias="customerId", min_length=1)
    items: list[ItemIn] = Field(max_length=MAX_ITEMS)
    discounts: Any = None


class PaymentIn(BaseModel):
    # Fixed shape: anything besides method/status/plan is an error
    model_config = ConfigDict(extra="forbid")

    method: str | None = Field(default=None, max_length=40)
    status: str | None = Field(default=None, max_length=40)
    plan: dict[str, Any] | None = None


class DeliveryIn(_Payload):
    status: str | None = Field(default=None, max_length=40)
    eta: datetime | None = None
    tracking: str | None = Field(default=None, max_length=120)

    @field_validator("eta")
    @classmethod
    def _naive_utc(cls, v: datetime | None):
        if v is not None and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


class OrderIn(_Payload):
    dealer_id: str = Field(alias="dealerId", min_length=1)
    customer_id: str = Field(alias="customerId", min_length=1)
    quote_id: str | None = Field(default=None, alias="quoteId")
    items: list[ItemIn] = Field(max_length=MAX_ITEMS)
    payment: PaymentIn | None = None
    delivery: DeliveryIn | None = None


class StatusIn(_Payload):
    status: str | None = None


class PaymentUpdateIn(_Payload):
    payment: PaymentIn

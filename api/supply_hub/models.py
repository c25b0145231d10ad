from decimal import Decimal
from typing import Optional, List, Literal
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    # wire format is camelCase, python side snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---- orders ----

class OrderItemIn(CamelModel):
    product_id: int
    qty_ordered: Decimal

class OrderCreateIn(CamelModel):
    delivery_date: str
    items: List[OrderItemIn] = Field(default_factory=list)
    customer_id: Optional[int] = None

class OrderCreateOut(CamelModel):
    order_id: int
    total_amount: float
    merged: bool

class StatusIn(CamelModel):
    status: str

class TripIn(CamelModel):
    trip_number: Optional[str] = None

class AddItemIn(CamelModel):
    product_id: int
    qty_ordered: Decimal
    unit_price: Optional[Decimal] = None

class EditItemIn(CamelModel):
    qty_ordered: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None

class PickingIn(CamelModel):
    picked: Optional[bool] = None
    out_of_stock: Optional[bool] = None
    qty_picked: Optional[Decimal] = None


# ---- receiving ----

class BatchItemIn(CamelModel):
    product_id: int
    quantity: Decimal

class BatchCreateIn(CamelModel):
    supplier_id: int
    received_date: str
    notes: Optional[str] = None
    items: List[BatchItemIn] = Field(default_factory=list)


# ---- invoices ----

class InvoiceItemPatchIn(CamelModel):
    match_status: Optional[Literal["auto_confirmed", "manual_confirmed", "need_review", "unmatched", "ignored"]] = None
    product_id: Optional[int] = None
    discrepancy_notes: Optional[str] = None


# ---- inventory ledger ----

class InboundIn(CamelModel):
    product_id: int
    quantity: Decimal
    log_date: Optional[str] = None
    remark: Optional[str] = None

class ReturnIn(CamelModel):
    product_id: int
    quantity: Decimal
    partner_name: Optional[str] = None
    reason: Optional[str] = None
    log_date: Optional[str] = None

class DamageIn(CamelModel):
    product_id: int
    quantity: Decimal
    reason: Optional[str] = None
    log_date: Optional[str] = None


# ---- catalog ----

class ProductIn(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    unit: str = Field(min_length=1, max_length=20)
    warehouse_type: Literal["dry", "fresh", "frozen"] = "dry"
    price: Decimal = Field(default=Decimal("0"), ge=0)
    is_available: bool = True
    notes: Optional[str] = None

class ProductPatch(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    unit: Optional[str] = Field(default=None, min_length=1, max_length=20)
    warehouse_type: Optional[Literal["dry", "fresh", "frozen"]] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    is_available: Optional[bool] = None
    notes: Optional[str] = None

class SupplierIn(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    contact: Optional[str] = None
    notes: Optional[str] = None

class SupplierPatch(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    contact: Optional[str] = None
    notes: Optional[str] = None

from __future__ import annotations

import datetime as dt
import enum
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .ids import ITEM_PREFIX, NOTIFICATION_PREFIX, generate_id


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def ensure_utc(value: dt.datetime | None) -> dt.datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""

    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value


class OrderStatus(str, enum.Enum):
    """Fulfillment pipeline, in order."""

    DRAFTING = "en_armado"
    PICKING_DONE = "armado"
    PICKING_VERIFIED = "armado_controlado"
    INVOICED = "facturado"
    INVOICE_VERIFIED = "factura_controlada"
    SHIPPING = "en_transito"
    DELIVERED = "entregado"
    PAID = "pagado"


class Role(str, enum.Enum):
    COORDINATOR = "vale"
    OPERATOR = "armador"


class PaymentMethod(str, enum.Enum):
    CASH = "efectivo"
    TRANSFER = "transferencia"


class User(BaseModel):
    id: str
    name: str
    role: Role


class LineItem(BaseModel):
    id: str = Field(default_factory=lambda: generate_id(ITEM_PREFIX))
    code: Optional[str] = None
    name: str
    quantity: float = Field(ge=0)
    original_quantity: Optional[float] = Field(default=None, ge=0)
    is_checked: bool = False
    unit_price: Optional[Decimal] = Field(default=None, max_digits=14, decimal_places=2)
    subtotal: Optional[Decimal] = Field(default=None, max_digits=14, decimal_places=2)

    @property
    def shortage(self) -> float:
        if self.original_quantity is None:
            return 0
        return max(self.original_quantity - self.quantity, 0)


class MissingItem(BaseModel):
    product_id: str
    product_name: str
    code: Optional[str] = None
    quantity: float = Field(gt=0)


class ReturnedItem(BaseModel):
    product_id: str
    product_name: str
    code: Optional[str] = None
    quantity: float = Field(gt=0)
    reason: Optional[str] = None


class HistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    action: str
    user: str
    timestamp: dt.datetime
    notes: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: dt.datetime) -> dt.datetime:
        return ensure_utc(value)


class Order(BaseModel):
    """Order aggregate with its four owned collections."""

    id: str
    client_name: str = Field(min_length=1)
    client_address: str = ""
    items: list[LineItem] = Field(default_factory=list)
    status: OrderStatus = OrderStatus.DRAFTING
    missing_items: list[MissingItem] = Field(default_factory=list)
    returned_items: list[ReturnedItem] = Field(default_factory=list)
    payment_method: Optional[PaymentMethod] = None
    is_paid: bool = False
    created_at: dt.datetime = Field(default_factory=utcnow)
    history: list[HistoryEntry] = Field(default_factory=list)
    armed_by: Optional[str] = None
    controlled_by: Optional[str] = None
    awaiting_payment_verification: bool = False
    initial_notes: Optional[str] = None
    currently_working_by: Optional[str] = None
    working_start_time: Optional[dt.datetime] = None
    total_amount: Optional[Decimal] = Field(default=None, max_digits=14, decimal_places=2)

    @field_validator("created_at", "working_start_time")
    @classmethod
    def normalize_datetimes(cls, value: Optional[dt.datetime]) -> Optional[dt.datetime]:
        return ensure_utc(value)

    @model_validator(mode="after")
    def check_claim(self) -> "Order":
        if self.currently_working_by is None:
            self.working_start_time = None
        elif self.working_start_time is None:
            raise ValueError("working_start_time es obligatorio cuando el pedido está tomado")
        self.history.sort(key=lambda entry: entry.timestamp)
        return self

    def find_item(self, item_id: str) -> LineItem | None:
        return next((item for item in self.items if item.id == item_id), None)

    @property
    def last_history(self) -> HistoryEntry | None:
        return self.history[-1] if self.history else None


class OrderDraft(BaseModel):
    """Input for creating an order; status, history and claims are assigned on creation."""

    client_name: str = Field(min_length=1)
    client_address: str = ""
    items: list[LineItem] = Field(default_factory=list)
    initial_notes: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    total_amount: Optional[Decimal] = Field(default=None, max_digits=14, decimal_places=2)


class Notification(BaseModel):
    id: str = Field(default_factory=lambda: generate_id(NOTIFICATION_PREFIX))
    kind: Literal["success", "error", "info", "warning"] = "info"
    title: str
    message: str
    exclude_user: Optional[str] = None
    timestamp: dt.datetime = Field(default_factory=utcnow)


class ChangeEvent(BaseModel):
    """Row-level change emitted by the order store. Only used as a trigger."""

    table: str
    type: Literal["INSERT", "UPDATE", "DELETE"]
    record_id: Optional[str] = None
    ts: dt.datetime = Field(default_factory=utcnow)


class WorkingRequest(BaseModel):
    user_name: str = Field(min_length=1)
    started_at: dt.datetime = Field(default_factory=utcnow)

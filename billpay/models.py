import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

import sqlalchemy as sa
from sqlmodel import SQLModel, Field

from .errors import InvalidTransition, StateConflictError


def _enum_column(enum_cls):
    # persist the lowercase values, not the member names
    return sa.Enum(
        enum_cls,
        values_callable=lambda e: [m.value for m in e],
        native_enum=False,
        length=32,
    )


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp():
    return Field(default_factory=utcnow, sa_type=sa.DateTime(timezone=True))


class OrderStatus(str, Enum):
    NEW = "new"
    SHIPPING = "shipping"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderPaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    VERIFYING = "verifying"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    PAYMENT_GATEWAY = "payment_gateway"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"


class ChannelType(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    PAYMENT_GATEWAY = "payment_gateway"
    CARD_TERMINAL = "card_terminal"


class PaymentRecordStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"    # confirmed paid by the gateway or an admin
    REJECTED = "rejected"    # confirmed failed
    CANCELLED = "cancelled"  # superseded by a newer attempt

    def can_transition(self, target: "PaymentRecordStatus") -> bool:
        return target in _RECORD_TRANSITIONS[self]

    def transition(self, target: "PaymentRecordStatus") -> "PaymentRecordStatus":
        if not self.can_transition(target):
            raise InvalidTransition(self, target)
        return target


_RECORD_TRANSITIONS = {
    PaymentRecordStatus.PENDING: frozenset({
        PaymentRecordStatus.CANCELLED,
        PaymentRecordStatus.VERIFIED,
        PaymentRecordStatus.REJECTED,
    }),
    PaymentRecordStatus.VERIFIED: frozenset(),
    # links stay live at the gateway after a local cancel or reject, and
    # money confirmed as received always wins
    PaymentRecordStatus.REJECTED: frozenset({PaymentRecordStatus.VERIFIED}),
    PaymentRecordStatus.CANCELLED: frozenset({PaymentRecordStatus.VERIFIED}),
}


class Customer(SQLModel, table=True):
    __tablename__ = "customers"

    id: str = Field(default_factory=_new_id, primary_key=True)
    name: str = ""
    customer_type_new: Optional[str] = None  # retail, wholesale, distributor


class Order(SQLModel, table=True):
    __tablename__ = "orders"

    id: str = Field(default_factory=_new_id, primary_key=True)
    order_number: str = Field(index=True)
    total_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    payment_status: OrderPaymentStatus = Field(
        default=OrderPaymentStatus.PENDING, sa_type=_enum_column(OrderPaymentStatus)
    )
    order_status: OrderStatus = Field(default=OrderStatus.NEW, sa_type=_enum_column(OrderStatus))
    customer_id: Optional[str] = Field(default=None, foreign_key="customers.id")
    created_at: datetime = _timestamp()
    updated_at: datetime = _timestamp()

    def ensure_payable(self) -> None:
        """Raise unless a new payment link may be minted for this order."""
        if self.order_status == OrderStatus.CANCELLED:
            raise StateConflictError("Order has been cancelled")
        if self.payment_status != OrderPaymentStatus.PENDING:
            raise StateConflictError("Order is not in pending payment state")


class PaymentChannel(SQLModel, table=True):
    __tablename__ = "payment_channels"

    id: str = Field(default_factory=_new_id, primary_key=True)
    channel_group: str = Field(default="bill_online", index=True)  # bill_online, pos
    type: ChannelType = Field(sa_type=_enum_column(ChannelType))
    name: str
    is_active: bool = True
    sort_order: int = 0
    config: dict = Field(default_factory=dict, sa_column=sa.Column(sa.JSON, nullable=False))
    created_at: datetime = _timestamp()
    updated_at: datetime = _timestamp()


class PaymentRecord(SQLModel, table=True):
    __tablename__ = "payment_records"
    __table_args__ = (
        # at most one pending attempt per order and method
        sa.Index(
            "uq_payment_records_one_pending",
            "order_id",
            "payment_method",
            unique=True,
            sqlite_where=sa.text("status = 'pending'"),
            postgresql_where=sa.text("status = 'pending'"),
        ),
    )

    id: str = Field(default_factory=_new_id, primary_key=True)
    order_id: str = Field(foreign_key="orders.id", index=True)
    payment_method: PaymentMethod = Field(sa_type=_enum_column(PaymentMethod))
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    status: PaymentRecordStatus = Field(
        default=PaymentRecordStatus.PENDING, sa_type=_enum_column(PaymentRecordStatus)
    )
    gateway_provider: Optional[str] = None
    gateway_payment_link_id: Optional[str] = Field(default=None, index=True)
    gateway_charge_id: Optional[str] = None
    gateway_status: Optional[str] = None
    gateway_raw_response: Optional[dict] = Field(default=None, sa_column=sa.Column(sa.JSON))
    created_at: datetime = _timestamp()
    updated_at: datetime = _timestamp()

    def move_to(self, target: PaymentRecordStatus) -> None:
        self.status = PaymentRecordStatus(self.status).transition(target)
        self.updated_at = utcnow()

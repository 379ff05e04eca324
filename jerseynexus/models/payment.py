from typing import Optional
from datetime import datetime
from enum import Enum
from uuid import uuid4
from sqlmodel import Field, Relationship, SQLModel, Column
from sqlalchemy import JSON
from jerseynexus.models.order import Order, PaymentMethod


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


def new_payment_id() -> str:
    return str(uuid4())


class Payment(SQLModel, table=True):
    # Also sent to the gateways as the transaction reference
    id: str = Field(default_factory=new_payment_id, primary_key=True)

    # References (no order yet in the order-after-payment flow)
    order_id: Optional[int] = Field(default=None, foreign_key="order.id", index=True)
    user_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)

    # Payment Details
    amount: float
    currency: str = Field(default="NPR")
    method: PaymentMethod
    status: TransactionStatus = Field(default=TransactionStatus.PENDING, index=True)

    # Gateway Info
    external_id: Optional[str] = Field(default=None, index=True)  # Khalti pidx / eSewa uuid
    transaction_id: Optional[str] = None
    details: dict = Field(default={}, sa_column=Column(JSON))
    gateway_response: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    failure_reason: Optional[str] = None

    # Timestamps
    initiated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    order: Optional[Order] = Relationship(back_populates="payments")

from typing import List, Optional
from datetime import datetime
from enum import Enum
from sqlmodel import Field, Relationship, SQLModel, Column
from sqlalchemy import JSON, Text
from jerseynexus.models.product import Product
from jerseynexus.models.user import User


class PaymentMethod(str, Enum):
    COD = "COD"
    KHALTI = "KHALTI"
    ESEWA = "ESEWA"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class OrderStatus(str, Enum):
    PROCESSING = "PROCESSING"
    CONFIRMED = "CONFIRMED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class OrderItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="order.id", index=True)
    # Cleared when the product is deleted
    product_id: Optional[int] = Field(default=None, foreign_key="product.id")
    quantity: int
    price: float
    size: Optional[str] = None
    color: Optional[str] = None

    product: Optional[Product] = Relationship()


class Order(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)

    # Amounts
    total_amount: float
    shipping_cost: float = Field(default=0.0)
    discount_amount: float = Field(default=0.0)

    # Shipping
    shipping_address: dict = Field(default={}, sa_column=Column(JSON))
    tracking_number: Optional[str] = None

    # Payment Info
    payment_method: PaymentMethod = Field(default=PaymentMethod.COD)
    payment_status: PaymentStatus = Field(default=PaymentStatus.PENDING, index=True)
    payment_id: Optional[str] = None

    # Order Status
    status: OrderStatus = Field(default=OrderStatus.PROCESSING, index=True)

    notes: Optional[str] = Field(default=None, sa_column=Column(Text))
    admin_notes: Optional[str] = Field(default=None, sa_column=Column(Text))

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    user: Optional[User] = Relationship()
    items: List[OrderItem] = Relationship(sa_relationship_kwargs={"cascade": "all, delete-orphan"})
    payments: List["Payment"] = Relationship(
        back_populates="order",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "order_by": "Payment.created_at"},
    )

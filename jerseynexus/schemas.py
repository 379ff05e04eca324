from typing import ClassVar, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

from jerseynexus.models.order import PaymentMethod


class CamelModel(BaseModel):
    """Request body that accepts the storefront's camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PartialUpdate(CamelModel):
    """PUT body: omitted fields are left alone, and only ``nullable_fields`` may be cleared with null."""

    nullable_fields: ClassVar[FrozenSet[str]] = frozenset()

    @field_validator("*")
    @classmethod
    def reject_null(cls, value, info: ValidationInfo):
        if value is None and info.field_name not in cls.nullable_fields:
            raise ValueError("Field cannot be null")
        return value


class ShippingAddress(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: str = Field(min_length=2)
    phone: str = Field(min_length=7)
    address: str = Field(min_length=3)
    city: str
    postal_code: Optional[str] = None
    country: str = "Nepal"


class OrderItemIn(CamelModel):
    product_id: int
    quantity: int = Field(gt=0)
    size: Optional[str] = None
    color: Optional[str] = None


class OrderCreate(CamelModel):
    items: List[OrderItemIn] = Field(min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = PaymentMethod.COD
    shipping_cost: float = Field(default=0.0, ge=0)
    discount_amount: float = Field(default=0.0, ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)

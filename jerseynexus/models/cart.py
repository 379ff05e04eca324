from typing import Optional
from datetime import datetime
from sqlmodel import Field, Relationship, SQLModel
from jerseynexus.models.product import Product


class CartItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # References
    user_id: int = Field(foreign_key="user.id", index=True)
    product_id: int = Field(foreign_key="product.id")

    # Cart Details, one line per (product, size, color)
    quantity: int = Field(default=1, ge=1)
    size: Optional[str] = None
    color: Optional[str] = None

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    product: Optional[Product] = Relationship()

    @property
    def key(self) -> str:
        return f"{self.product_id}-{self.size or 'default'}-{self.color or 'default'}"

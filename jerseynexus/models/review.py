from typing import Optional
from datetime import datetime
from sqlmodel import Field, Relationship, SQLModel
from sqlalchemy import UniqueConstraint
from jerseynexus.models.product import Product
from jerseynexus.models.user import User


class Review(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "product_id", name="uq_review_user_product"),)

    id: Optional[int] = Field(default=None, primary_key=True)

    # References
    product_id: int = Field(foreign_key="product.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)

    # Review Content
    rating: int = Field(ge=1, le=5)  # 1-5 stars
    comment: Optional[str] = None

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    user: Optional[User] = Relationship()
    product: Optional[Product] = Relationship()

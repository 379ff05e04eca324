from typing import Optional, List
from datetime import datetime
from enum import Enum
from sqlmodel import Field, Relationship, SQLModel, Column
from pydantic import computed_field
from sqlalchemy import JSON, Text
from jerseynexus.core.config import settings
from jerseynexus.models.category import Category


class ProductStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    OUT_OF_STOCK = "OUT_OF_STOCK"


class ProductImage(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="product.id", index=True)

    # S3 key or absolute URL
    url: str
    alt_text: Optional[str] = None
    is_primary: bool = Field(default=False)
    sort_order: int = Field(default=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    product: Optional["Product"] = Relationship(back_populates="images")

    @computed_field
    @property
    def image_url(self) -> str:
        if self.url.startswith(("http://", "https://", "/")):
            return self.url
        return f"{settings.S3_BASE_URL}/{self.url}"


class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # Basic Info
    name: str = Field(index=True)
    slug: str = Field(index=True, unique=True)
    description: Optional[str] = Field(default=None, sa_column=Column(Text))
    brand: Optional[str] = None

    # Pricing
    price: float
    sale_price: Optional[float] = None

    # Inventory
    stock: int = Field(default=0)

    # Catalog
    category_id: Optional[int] = Field(default=None, foreign_key="category.id", index=True)
    featured: bool = Field(default=False)
    status: ProductStatus = Field(default=ProductStatus.ACTIVE)

    # Variants
    sizes: List[str] = Field(default=[], sa_column=Column(JSON))
    colors: List[str] = Field(default=[], sa_column=Column(JSON))

    # SEO
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    category: Optional[Category] = Relationship()
    images: List[ProductImage] = Relationship(
        back_populates="product",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "order_by": "ProductImage.sort_order"},
    )

    @computed_field
    @property
    def unit_price(self) -> float:
        """Price a customer pays: sale price when set, otherwise the list price."""
        return self.sale_price if self.sale_price is not None else self.price

    @property
    def primary_image(self) -> Optional[ProductImage]:
        for image in self.images:
            if image.is_primary:
                return image
        return self.images[0] if self.images else None

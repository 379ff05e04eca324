from typing import Optional
from datetime import datetime
from enum import Enum
from sqlmodel import Field, SQLModel


class CategoryType(str, Enum):
    PRODUCT = "PRODUCT"
    BLOG = "BLOG"


class Category(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    slug: str = Field(unique=True, index=True)
    type: CategoryType = Field(default=CategoryType.PRODUCT, index=True)
    description: Optional[str] = None
    image: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

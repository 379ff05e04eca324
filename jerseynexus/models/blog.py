from typing import Optional, List
from datetime import datetime
from sqlmodel import Field, Relationship, SQLModel, Column
from sqlalchemy import JSON, Text
from jerseynexus.models.category import Category
from jerseynexus.models.user import User


class Blog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # Author
    author_id: int = Field(foreign_key="user.id", index=True)

    # Content
    title: str = Field(index=True)
    slug: str = Field(unique=True, index=True)  # URL-friendly title
    excerpt: Optional[str] = None
    content: str = Field(sa_column=Column(Text))  # Full blog content (markdown/HTML)
    featured_image: Optional[str] = None

    # Categorization
    category_id: Optional[int] = Field(default=None, foreign_key="category.id", index=True)
    tags: List[str] = Field(default=[], sa_column=Column(JSON))

    # Status
    published: bool = Field(default=False)
    published_at: Optional[datetime] = None

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    author: Optional[User] = Relationship()
    category: Optional[Category] = Relationship()

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import Field
from sqlalchemy import func
from sqlmodel import Session, select

from jerseynexus.core.errors import send_response
from jerseynexus.db.session import get_session
from jerseynexus.models import Blog, Category, CategoryType, Product, User
from jerseynexus.routers.auth import require_admin
from jerseynexus.schemas import CamelModel, PartialUpdate
from jerseynexus.serializers import serialize_category
from jerseynexus.services.slug import unique_slug

router = APIRouter()

UNCATEGORIZED_SLUG = "uncategorized"


class CategoryCreate(CamelModel):
    name: str = Field(min_length=2, max_length=100)
    type: CategoryType = CategoryType.PRODUCT
    description: Optional[str] = Field(default=None, max_length=500)
    image: Optional[str] = None


class CategoryUpdate(PartialUpdate):
    nullable_fields = frozenset({"description", "image"})

    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    type: Optional[CategoryType] = None
    description: Optional[str] = Field(default=None, max_length=500)
    image: Optional[str] = None


def _count_for(session: Session, category: Category) -> int:
    model = Blog if category.type == CategoryType.BLOG else Product
    return session.exec(select(func.count()).select_from(model).where(model.category_id == category.id)).one()


def get_uncategorized(session: Session) -> Category:
    category = session.exec(select(Category).where(Category.slug == UNCATEGORIZED_SLUG)).first()
    if not category:
        category = Category(name="Uncategorized", slug=UNCATEGORIZED_SLUG, type=CategoryType.PRODUCT,
                            description="Products whose category was removed")
        session.add(category)
        session.flush()
    return category


@router.get("/")
def read_categories(type: CategoryType = CategoryType.PRODUCT, session: Session = Depends(get_session)):
    categories = session.exec(select(Category).where(Category.type == type).order_by(Category.name)).all()
    data = [serialize_category(category, _count_for(session, category)) for category in categories]
    return send_response("Categories retrieved successfully", {"categories": data})


@router.get("/{category_id}")
def read_category(category_id: int, session: Session = Depends(get_session)):
    category = session.get(Category, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return send_response("Category retrieved successfully",
                         {"category": serialize_category(category, _count_for(session, category))})


@router.post("/")
def create_category(
    category_in: CategoryCreate,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    category = Category(**category_in.model_dump(), slug=unique_slug(session, Category, category_in.name))
    session.add(category)
    session.commit()
    session.refresh(category)
    return send_response("Category created successfully", {"category": serialize_category(category)}, 201)


@router.put("/{category_id}")
def update_category(
    category_id: int,
    category_in: CategoryUpdate,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    category = session.get(Category, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")

    fields = category_in.model_dump(exclude_unset=True)
    if fields.get("name") and fields["name"] != category.name:
        category.slug = unique_slug(session, Category, fields["name"], exclude_id=category.id)
    for key, value in fields.items():
        setattr(category, key, value)
    category.updated_at = datetime.utcnow()
    session.add(category)
    session.commit()
    session.refresh(category)
    return send_response("Category updated successfully", {"category": serialize_category(category)})


@router.delete("/{category_id}")
def delete_category(category_id: int, admin: User = Depends(require_admin), session: Session = Depends(get_session)):
    category = session.get(Category, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    if category.slug == UNCATEGORIZED_SLUG:
        raise HTTPException(status_code=400, detail="The uncategorized category cannot be deleted")

    moved = 0
    products = session.exec(select(Product).where(Product.category_id == category.id)).all()
    if products:
        fallback = get_uncategorized(session)
        for product in products:
            product.category_id = fallback.id
            session.add(product)
        moved = len(products)
    for blog in session.exec(select(Blog).where(Blog.category_id == category.id)).all():
        blog.category_id = None
        session.add(blog)

    session.delete(category)
    session.commit()
    message = "Category deleted successfully"
    if moved:
        message = f"Category deleted successfully. {moved} product(s) moved to Uncategorized"
    return send_response(message, {"movedProducts": moved})

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import Field
from sqlalchemy import or_
from sqlmodel import Session, select

from jerseynexus.core.errors import send_response
from jerseynexus.db.session import get_session
from jerseynexus.models import Blog, Category, CategoryType, User
from jerseynexus.routers.auth import get_current_user_optional, require_admin
from jerseynexus.schemas import CamelModel, PartialUpdate
from jerseynexus.serializers import paginate, serialize_blog
from jerseynexus.services.slug import unique_slug

router = APIRouter()


class BlogCreate(CamelModel):
    title: str = Field(min_length=5, max_length=200)
    content: str = Field(min_length=10)
    excerpt: Optional[str] = Field(default=None, max_length=500)
    featured_image: Optional[str] = None
    category_id: Optional[int] = None
    tags: List[str] = []
    published: bool = False


class BlogUpdate(PartialUpdate):
    nullable_fields = frozenset({"excerpt", "featured_image", "category_id"})

    title: Optional[str] = Field(default=None, min_length=5, max_length=200)
    content: Optional[str] = Field(default=None, min_length=10)
    excerpt: Optional[str] = Field(default=None, max_length=500)
    featured_image: Optional[str] = None
    category_id: Optional[int] = None
    tags: Optional[List[str]] = None
    published: Optional[bool] = None


def _blog_query(category: Optional[str], search: Optional[str]):
    statement = select(Blog)
    if category:
        statement = statement.join(Category, Category.id == Blog.category_id).where(Category.slug == category)
    if search:
        pattern = f"%{search}%"
        statement = statement.where(or_(Blog.title.ilike(pattern), Blog.excerpt.ilike(pattern)))
    return statement


def _check_category(session: Session, category_id: Optional[int]):
    if category_id is None:
        return
    category = session.get(Category, category_id)
    if not category or category.type != CategoryType.BLOG:
        raise HTTPException(status_code=400, detail="Blog category not found")


@router.get("/")
def read_blogs(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
    search: Optional[str] = None,
    session: Session = Depends(get_session),
):
    statement = _blog_query(category, search).where(Blog.published == True)  # noqa: E712
    statement = statement.order_by(Blog.published_at.desc(), Blog.id.desc())
    blogs, pagination = paginate(session, statement, page, limit)
    return send_response("Blogs retrieved successfully", {
        "blogs": [serialize_blog(blog, include_content=False) for blog in blogs],
        "pagination": pagination,
    })


@router.get("/admin")
def read_all_blogs(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
    search: Optional[str] = None,
    published: Optional[bool] = None,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    statement = _blog_query(category, search)
    if published is not None:
        statement = statement.where(Blog.published == published)
    blogs, pagination = paginate(session, statement.order_by(Blog.created_at.desc()), page, limit)
    return send_response("Blogs retrieved successfully", {
        "blogs": [serialize_blog(blog, include_content=False) for blog in blogs],
        "pagination": pagination,
    })


@router.get("/{slug}")
def read_blog(
    slug: str,
    current_user: Optional[User] = Depends(get_current_user_optional),
    session: Session = Depends(get_session),
):
    blog = session.exec(select(Blog).where(Blog.slug == slug)).first()
    # Drafts are only visible to admins
    if not blog or (not blog.published and not (current_user and current_user.is_admin)):
        raise HTTPException(status_code=404, detail="Blog not found")
    return send_response("Blog retrieved successfully", {"blog": serialize_blog(blog)})


@router.post("/")
def create_blog(blog_in: BlogCreate, admin: User = Depends(require_admin), session: Session = Depends(get_session)):
    _check_category(session, blog_in.category_id)
    blog = Blog(
        **blog_in.model_dump(),
        slug=unique_slug(session, Blog, blog_in.title),
        author_id=admin.id,
        published_at=datetime.utcnow() if blog_in.published else None,
    )
    session.add(blog)
    session.commit()
    session.refresh(blog)
    return send_response("Blog created successfully", {"blog": serialize_blog(blog)}, 201)


@router.put("/{blog_id}")
def update_blog(
    blog_id: int,
    blog_in: BlogUpdate,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    blog = session.get(Blog, blog_id)
    if not blog:
        raise HTTPException(status_code=404, detail="Blog not found")

    fields = blog_in.model_dump(exclude_unset=True)
    if "category_id" in fields:
        _check_category(session, fields["category_id"])
    if fields.get("title") and fields["title"] != blog.title:
        blog.slug = unique_slug(session, Blog, fields["title"], exclude_id=blog.id)
    for key, value in fields.items():
        setattr(blog, key, value)
    # First publication is stamped once
    if blog.published and blog.published_at is None:
        blog.published_at = datetime.utcnow()
    blog.updated_at = datetime.utcnow()
    session.add(blog)
    session.commit()
    session.refresh(blog)
    return send_response("Blog updated successfully", {"blog": serialize_blog(blog)})


@router.delete("/{blog_id}")
def delete_blog(blog_id: int, admin: User = Depends(require_admin), session: Session = Depends(get_session)):
    blog = session.get(Blog, blog_id)
    if not blog:
        raise HTTPException(status_code=404, detail="Blog not found")
    session.delete(blog)
    session.commit()
    return send_response("Blog deleted successfully")

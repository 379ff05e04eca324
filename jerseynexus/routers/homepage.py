from fastapi import APIRouter, Depends
from sqlmodel import Session, func, select

from jerseynexus.core.errors import send_response
from jerseynexus.db.session import get_session
from jerseynexus.models import Blog, Category, CategoryType, Product, ProductStatus, User
from jerseynexus.serializers import serialize_blog, serialize_category, serialize_product

router = APIRouter()


@router.get("/")
def get_homepage_data(session: Session = Depends(get_session)):
    """Get homepage data including featured products, categories, and blogs"""
    featured_products = session.exec(
        select(Product)
        .where(Product.status == ProductStatus.ACTIVE, Product.featured == True)  # noqa: E712
        .order_by(Product.created_at.desc())
        .limit(8)
    ).all()

    categories = session.exec(
        select(Category).where(Category.type == CategoryType.PRODUCT).order_by(Category.name)
    ).all()

    recent_blogs = session.exec(
        select(Blog).where(Blog.published == True).order_by(Blog.published_at.desc()).limit(3)  # noqa: E712
    ).all()

    stats = {
        "totalProducts": session.exec(
            select(func.count(Product.id)).where(Product.status == ProductStatus.ACTIVE)
        ).one(),
        "totalUsers": session.exec(select(func.count(User.id))).one(),
        "totalBlogs": session.exec(select(func.count(Blog.id)).where(Blog.published == True)).one(),  # noqa: E712
    }

    return send_response("Homepage data retrieved successfully", {
        "featuredProducts": [serialize_product(product) for product in featured_products],
        "categories": [serialize_category(category) for category in categories],
        "recentBlogs": [serialize_blog(blog, include_content=False) for blog in recent_blogs],
        "stats": stats,
    })

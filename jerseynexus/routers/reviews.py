from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import Field
from sqlmodel import Session, select

from jerseynexus.core.errors import send_response
from jerseynexus.db.session import get_session
from jerseynexus.models import Product, Review, User
from jerseynexus.routers.auth import get_current_user, require_admin
from jerseynexus.schemas import CamelModel
from jerseynexus.serializers import paginate, serialize_review

router = APIRouter()


class ReviewCreate(CamelModel):
    product_id: int
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)


@router.get("/product/{product_id}")
def read_product_reviews(product_id: int, session: Session = Depends(get_session)):
    if not session.get(Product, product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    reviews = session.exec(
        select(Review).where(Review.product_id == product_id).order_by(Review.created_at.desc())
    ).all()
    average = round(sum(review.rating for review in reviews) / len(reviews), 1) if reviews else 0
    return send_response("Reviews retrieved successfully", {
        "reviews": [serialize_review(review) for review in reviews],
        "averageRating": average,
        "reviewCount": len(reviews),
    })


@router.get("/")
def read_reviews(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    product_id: Optional[int] = Query(None, alias="productId"),
    rating: Optional[int] = Query(None, ge=1, le=5),
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
):
    statement = select(Review)
    if product_id is not None:
        statement = statement.where(Review.product_id == product_id)
    if rating is not None:
        statement = statement.where(Review.rating == rating)
    statement = statement.order_by(Review.created_at.desc())

    reviews, pagination = paginate(session, statement, page, limit)
    data = []
    for review in reviews:
        item = serialize_review(review)
        item["product"] = {"id": review.product.id, "name": review.product.name, "slug": review.product.slug}
        data.append(item)
    return send_response("Reviews retrieved successfully", {"reviews": data, "pagination": pagination})


@router.post("/")
def create_review(
    review_in: ReviewCreate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    if not session.get(Product, review_in.product_id):
        raise HTTPException(status_code=404, detail="Product not found")

    existing = session.exec(
        select(Review).where(Review.user_id == current_user.id, Review.product_id == review_in.product_id)
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="You have already reviewed this product")

    review = Review(user_id=current_user.id, **review_in.model_dump())
    session.add(review)
    session.commit()
    session.refresh(review)
    return send_response("Review created successfully", {"review": serialize_review(review)}, 201)


@router.delete("/{review_id}")
def delete_review(review_id: int, current_user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    review = session.get(Review, review_id)
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    if review.user_id != current_user.id and not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Not authorized to delete this review")
    session.delete(review)
    session.commit()
    return send_response("Review deleted successfully")

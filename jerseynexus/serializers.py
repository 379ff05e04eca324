"""Turn ORM records into the camelCase payloads the storefront and back office read."""
from math import ceil
from typing import List, Optional

from pydantic.alias_generators import to_camel
from sqlalchemy import func
from sqlmodel import Session, select

from jerseynexus.models import Blog, CartItem, Category, Order, OrderItem, Payment, Product, ProductImage, Review, User

REMOVED_PRODUCT = {"id": None, "name": "Product no longer available", "slug": None, "image": None}


def camelize(data: dict) -> dict:
    return {to_camel(key): value for key, value in data.items()}


def paginate(session: Session, statement, page: int, limit: int):
    """Run a select with offset/limit. Returns (rows, pagination)."""
    page = max(page, 1)
    limit = max(limit, 1)
    total = session.exec(select(func.count()).select_from(statement.order_by(None).subquery())).one()
    rows = session.exec(statement.offset((page - 1) * limit).limit(limit)).all()
    pagination = {
        "page": page,
        "limit": limit,
        "totalItems": total,
        "totalPages": ceil(total / limit) if total else 0,
    }
    return rows, pagination


def serialize_user(user: User, **extra) -> dict:
    data = camelize(user.model_dump(exclude={"password_hash"}))
    data.update(extra)
    return data


def user_summary(user: Optional[User]) -> Optional[dict]:
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "email": user.email, "avatar": user.avatar_url}


def serialize_category(category: Category, product_count: Optional[int] = None) -> dict:
    data = camelize(category.model_dump())
    if product_count is not None:
        data["productCount"] = product_count
    return data


def serialize_image(image: ProductImage) -> dict:
    return camelize(image.model_dump())


def serialize_review(review: Review) -> dict:
    data = camelize(review.model_dump())
    data["user"] = {"id": review.user.id, "name": review.user.name, "avatar": review.user.avatar_url} if review.user else None
    return data


def serialize_product(product: Product, reviews: Optional[List[Review]] = None) -> dict:
    data = camelize(product.model_dump())
    data["category"] = (
        {"id": product.category.id, "name": product.category.name, "slug": product.category.slug}
        if product.category else None
    )
    data["images"] = [serialize_image(image) for image in product.images]
    primary = product.primary_image
    data["image"] = primary.image_url if primary else None
    if reviews is not None:
        data["reviews"] = [serialize_review(review) for review in reviews]
        data["reviewCount"] = len(reviews)
        data["averageRating"] = (
            round(sum(review.rating for review in reviews) / len(reviews), 1) if reviews else 0
        )
    return data


def product_summary(product: Optional[Product]) -> dict:
    if product is None:
        return dict(REMOVED_PRODUCT)
    primary = product.primary_image
    return {
        "id": product.id,
        "name": product.name,
        "slug": product.slug,
        "image": primary.image_url if primary else None,
    }


def serialize_order_item(item: OrderItem) -> dict:
    data = camelize(item.model_dump())
    data["product"] = product_summary(item.product)
    data["total"] = round(item.price * item.quantity, 2)
    return data


def serialize_payment(payment: Payment) -> dict:
    return camelize(payment.model_dump())


def serialize_order(order: Order, include_payments: bool = False) -> dict:
    data = camelize(order.model_dump())
    data["items"] = [serialize_order_item(item) for item in order.items]
    data["user"] = user_summary(order.user)
    if include_payments:
        data["payments"] = [serialize_payment(payment) for payment in order.payments]
    return data


def order_event_payload(order: Order) -> dict:
    """Snapshot sent over the websocket; built before the session closes."""
    return {
        "orderId": order.id,
        "userId": order.user_id,
        "status": order.status,
        "paymentStatus": order.payment_status,
        "paymentMethod": order.payment_method,
        "totalAmount": order.total_amount,
        "trackingNumber": order.tracking_number,
        "updatedAt": order.updated_at,
    }


def serialize_cart_item(item: CartItem) -> dict:
    product = item.product
    primary = product.primary_image
    return {
        "id": item.id,
        "key": item.key,
        "productId": product.id,
        "name": product.name,
        "slug": product.slug,
        "image": primary.image_url if primary else None,
        "price": product.unit_price,
        "originalPrice": product.price,
        "stock": product.stock,
        "quantity": item.quantity,
        "size": item.size,
        "color": item.color,
        "total": round(product.unit_price * item.quantity, 2),
    }


def serialize_blog(blog: Blog, include_content: bool = True) -> dict:
    data = camelize(blog.model_dump(exclude=None if include_content else {"content"}))
    data["author"] = {"id": blog.author.id, "name": blog.author.name, "avatar": blog.author.avatar_url} if blog.author else None
    data["category"] = (
        {"id": blog.category.id, "name": blog.category.name, "slug": blog.category.slug}
        if blog.category else None
    )
    return data


def payment_event_payload(payment: Payment) -> dict:
    return {
        "paymentId": payment.id,
        "orderId": payment.order_id,
        "userId": payment.user_id,
        "method": payment.method,
        "status": payment.status,
        "amount": payment.amount,
        "transactionId": payment.transaction_id,
        "failureReason": payment.failure_reason,
    }

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import Field
from sqlmodel import Session, delete, select

from jerseynexus.core.errors import send_response
from jerseynexus.db.session import get_session
from jerseynexus.models import CartItem, Order, PaymentMethod, Product, ProductStatus, User
from jerseynexus.routers.auth import get_current_user
from jerseynexus.schemas import CamelModel, OrderCreate, OrderItemIn, ShippingAddress
from jerseynexus.serializers import order_event_payload, serialize_cart_item, serialize_order
from jerseynexus.services.notifier import manager
from jerseynexus.services.order import OrderService

router = APIRouter()


class CartItemCreate(CamelModel):
    product_id: int
    quantity: int = Field(default=1, gt=0)
    size: Optional[str] = None
    color: Optional[str] = None


class CartItemUpdate(CamelModel):
    quantity: int


class CartCheckout(CamelModel):
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = PaymentMethod.COD
    shipping_cost: float = Field(default=0.0, ge=0)
    discount_amount: float = Field(default=0.0, ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)


class CartService:
    def __init__(self, session: Session):
        self.session = session

    def _items(self, user_id: int):
        return self.session.exec(
            select(CartItem).where(CartItem.user_id == user_id).order_by(CartItem.created_at, CartItem.id)
        ).all()

    def _available_items(self, user_id: int):
        """Lines whose product is still sold."""
        return [
            item for item in self._items(user_id)
            if item.product and item.product.status != ProductStatus.INACTIVE
        ]

    def get_cart(self, user_id: int) -> dict:
        """Cart lines with totals; lines for products no longer sold are skipped."""
        items = [serialize_cart_item(item) for item in self._available_items(user_id)]
        return {
            "items": items,
            "totalItems": sum(item["quantity"] for item in items),
            "totalAmount": round(sum(item["total"] for item in items), 2),
        }

    def add_to_cart(self, user_id: int, product_id: int, quantity: int = 1,
                    size: Optional[str] = None, color: Optional[str] = None) -> dict:
        """Add item to cart or increase quantity of the matching (product, size, color) line"""
        product = self.session.get(Product, product_id)
        if not product or product.status == ProductStatus.INACTIVE:
            raise HTTPException(status_code=404, detail="Product not found")

        existing = self.session.exec(
            select(CartItem).where(
                CartItem.user_id == user_id,
                CartItem.product_id == product_id,
                CartItem.size == size,
                CartItem.color == color,
            )
        ).first()
        new_quantity = quantity + (existing.quantity if existing else 0)
        if new_quantity > product.stock:
            raise HTTPException(
                status_code=400,
                detail=f"Insufficient stock for {product.name}. Available: {product.stock}",
            )

        if existing:
            existing.quantity = new_quantity
            existing.updated_at = datetime.utcnow()
            self.session.add(existing)
        else:
            self.session.add(CartItem(user_id=user_id, product_id=product_id, quantity=quantity,
                                      size=size, color=color))
        self.session.commit()
        return self.get_cart(user_id)

    def get_item(self, user_id: int, cart_item_id: int) -> CartItem:
        item = self.session.get(CartItem, cart_item_id)
        if not item or item.user_id != user_id:
            raise HTTPException(status_code=404, detail="Cart item not found")
        return item

    def update_quantity(self, user_id: int, cart_item_id: int, quantity: int) -> dict:
        item = self.get_item(user_id, cart_item_id)
        # Out-of-range quantities leave the cart as it is
        if 0 < quantity <= item.product.stock:
            item.quantity = quantity
            item.updated_at = datetime.utcnow()
            self.session.add(item)
            self.session.commit()
        return self.get_cart(user_id)

    def remove_item(self, user_id: int, cart_item_id: int) -> dict:
        item = self.get_item(user_id, cart_item_id)
        self.session.delete(item)
        self.session.commit()
        return self.get_cart(user_id)

    def clear_cart(self, user_id: int, commit: bool = True):
        self.session.exec(delete(CartItem).where(CartItem.user_id == user_id))
        if commit:
            self.session.commit()

    def checkout(self, user_id: int, checkout: CartCheckout) -> Order:
        # Hidden lines are not ordered and go away with the rest of the cart
        items = self._available_items(user_id)
        if not items:
            raise HTTPException(status_code=400, detail="Cart is empty")

        order_in = OrderCreate(
            items=[
                OrderItemIn(product_id=item.product_id, quantity=item.quantity, size=item.size, color=item.color)
                for item in items
            ],
            **checkout.model_dump(),
        )
        order = OrderService(self.session).create_order(user_id, order_in, commit=False)
        self.clear_cart(user_id, commit=False)
        self.session.commit()
        self.session.refresh(order)
        return order


def get_cart_service(session: Session = Depends(get_session)) -> CartService:
    return CartService(session)


@router.get("/")
def get_cart(current_user: User = Depends(get_current_user), service: CartService = Depends(get_cart_service)):
    """Get user's cart items"""
    return send_response("Cart retrieved successfully", service.get_cart(current_user.id))


@router.post("/")
def add_to_cart(
    item: CartItemCreate,
    current_user: User = Depends(get_current_user),
    service: CartService = Depends(get_cart_service),
):
    cart = service.add_to_cart(current_user.id, item.product_id, item.quantity, item.size, item.color)
    return send_response("Item added to cart", cart)


@router.post("/checkout")
def checkout(
    checkout_in: CartCheckout,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: CartService = Depends(get_cart_service),
):
    order = service.checkout(current_user.id, checkout_in)
    background_tasks.add_task(manager.new_order, order_event_payload(order))
    return send_response("Order placed successfully", {"order": serialize_order(order)}, 201)


@router.put("/{cart_item_id}")
def update_cart_item(
    cart_item_id: int,
    update: CartItemUpdate,
    current_user: User = Depends(get_current_user),
    service: CartService = Depends(get_cart_service),
):
    return send_response("Cart updated", service.update_quantity(current_user.id, cart_item_id, update.quantity))


@router.delete("/")
def clear_cart(current_user: User = Depends(get_current_user), service: CartService = Depends(get_cart_service)):
    service.clear_cart(current_user.id)
    return send_response("Cart cleared", service.get_cart(current_user.id))


@router.delete("/{cart_item_id}")
def remove_from_cart(
    cart_item_id: int,
    current_user: User = Depends(get_current_user),
    service: CartService = Depends(get_cart_service),
):
    return send_response("Item removed from cart", service.remove_item(current_user.id, cart_item_id))

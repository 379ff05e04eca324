from collections import defaultdict
from datetime import datetime
from typing import List, Optional

from fastapi import HTTPException
from sqlalchemy import func
from sqlmodel import Session, select

from jerseynexus.core.log import log_order_event
from jerseynexus.models import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Product,
    ProductStatus,
    User,
)
from jerseynexus.schemas import OrderCreate, OrderItemIn
from jerseynexus.serializers import paginate, serialize_order


class OrderService:
    def __init__(self, session: Session):
        self.session = session

    def price_items(self, items: List[OrderItemIn]) -> tuple[float, List[OrderItem]]:
        """Price order lines from the catalogue. Returns (subtotal, unsaved order items)."""
        # Calculate actual total from products (prevent frontend amount injection)
        requested = defaultdict(int)
        for item in items:
            requested[item.product_id] += item.quantity

        products = {}
        for product_id, quantity in requested.items():
            product = self.session.get(Product, product_id)
            if not product or product.status == ProductStatus.INACTIVE:
                raise HTTPException(status_code=404, detail=f"Product {product_id} not found")
            if quantity > product.stock:
                raise HTTPException(
                    status_code=400,
                    detail=f"Insufficient stock for {product.name}. Available: {product.stock}",
                )
            products[product_id] = product

        subtotal = 0.0
        order_items = []
        for item in items:
            product = products[item.product_id]
            unit_price = product.unit_price
            subtotal += unit_price * item.quantity
            order_items.append(OrderItem(
                product_id=product.id,
                quantity=item.quantity,
                price=unit_price,
                size=item.size,
                color=item.color,
            ))
        return round(subtotal, 2), order_items

    def quote(self, order_in: OrderCreate) -> float:
        subtotal, _ = self.price_items(order_in.items)
        return self.order_total(subtotal, order_in)

    @staticmethod
    def order_total(subtotal: float, order_in: OrderCreate) -> float:
        return round(max(subtotal + order_in.shipping_cost - order_in.discount_amount, 0.0), 2)

    def create_order(self, user_id: int, order_in: OrderCreate,
                     payment_status: PaymentStatus = PaymentStatus.PENDING,
                     status: OrderStatus = OrderStatus.PROCESSING,
                     payment_id: Optional[str] = None, commit: bool = True) -> Order:
        subtotal, order_items = self.price_items(order_in.items)

        order = Order(
            user_id=user_id,
            total_amount=self.order_total(subtotal, order_in),
            shipping_cost=order_in.shipping_cost,
            discount_amount=order_in.discount_amount,
            shipping_address=order_in.shipping_address.model_dump(by_alias=True),
            payment_method=order_in.payment_method,
            payment_status=payment_status,
            payment_id=payment_id,
            status=status,
            notes=order_in.notes,
        )
        order.items = order_items

        # Update product stock
        for order_item in order_items:
            product = self.session.get(Product, order_item.product_id)
            product.stock -= order_item.quantity
            if product.stock <= 0:
                product.stock = 0
                product.status = ProductStatus.OUT_OF_STOCK
            product.updated_at = datetime.utcnow()
            self.session.add(product)

        # Remember the phone for the next checkout
        user = self.session.get(User, user_id)
        if user and not user.phone:
            user.phone = order_in.shipping_address.phone
            self.session.add(user)

        self.session.add(order)
        if commit:
            self.session.commit()
            self.session.refresh(order)
        else:
            self.session.flush()
        log_order_event("created", order.id, user_id=user_id, total=order.total_amount,
                        payment_method=order.payment_method.value)
        return order

    def get_order(self, order_id: int) -> Order:
        order = self.session.get(Order, order_id)
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")
        return order

    def get_order_for_user(self, order_id: int, user: User) -> Order:
        order = self.get_order(order_id)
        if order.user_id != user.id and not user.is_admin:
            raise HTTPException(status_code=403, detail="Not authorized to access this order")
        return order

    def get_owned_order(self, order_id: int, user: User) -> Order:
        """Order the caller placed; admins get no exemption (payments are made by the owner)."""
        order = self.get_order(order_id)
        if order.user_id != user.id:
            raise HTTPException(status_code=403, detail="Not authorized to access this order")
        return order

    def list_orders(self, user: User, page: int = 1, limit: int = 10, user_id: Optional[int] = None,
                    status: Optional[OrderStatus] = None, payment_status: Optional[PaymentStatus] = None,
                    payment_method: Optional[PaymentMethod] = None):
        statement = select(Order)
        if user.is_admin:
            if user_id is not None:
                statement = statement.where(Order.user_id == user_id)
        else:
            statement = statement.where(Order.user_id == user.id)
        if status is not None:
            statement = statement.where(Order.status == status)
        if payment_status is not None:
            statement = statement.where(Order.payment_status == payment_status)
        if payment_method is not None:
            statement = statement.where(Order.payment_method == payment_method)
        statement = statement.order_by(Order.created_at.desc(), Order.id.desc())

        orders, pagination = paginate(self.session, statement, page, limit)
        return [serialize_order(order) for order in orders], pagination

    def get_stats(self) -> dict:
        total_orders = self.session.exec(select(func.count()).select_from(Order)).one()
        by_status = dict(self.session.exec(select(Order.status, func.count()).group_by(Order.status)).all())
        revenue = self.session.exec(
            select(func.coalesce(func.sum(Order.total_amount), 0.0)).where(Order.payment_status == PaymentStatus.PAID)
        ).one()
        pending_payments = self.session.exec(
            select(func.count()).select_from(Order).where(Order.payment_status == PaymentStatus.PENDING)
        ).one()
        return {
            "totalOrders": total_orders,
            "statusCounts": {status.value: by_status.get(status, 0) for status in OrderStatus},
            "totalRevenue": round(float(revenue), 2),
            "pendingPayments": pending_payments,
        }

    def restock(self, order: Order) -> None:
        for item in order.items:
            if item.product is None:
                continue
            product = item.product
            product.stock += item.quantity
            if product.status == ProductStatus.OUT_OF_STOCK and product.stock > 0:
                product.status = ProductStatus.ACTIVE
            self.session.add(product)

    def set_status(self, order: Order, status: OrderStatus) -> None:
        if order.status == status:
            return
        if order.status == OrderStatus.CANCELLED:
            raise HTTPException(status_code=400, detail="Cancelled orders cannot be reopened")
        # Stock goes back exactly once, on the transition into CANCELLED
        if status == OrderStatus.CANCELLED:
            self.restock(order)
        order.status = status

    def apply_payment_status(self, order: Order, payment_status: PaymentStatus) -> None:
        """Keep order status consistent with its payment status."""
        order.payment_status = payment_status
        if payment_status == PaymentStatus.PAID and order.status == OrderStatus.PROCESSING:
            order.status = OrderStatus.CONFIRMED
        elif payment_status == PaymentStatus.REFUNDED:
            self.set_status(order, OrderStatus.CANCELLED)
        order.updated_at = datetime.utcnow()
        self.session.add(order)

    def update_order(self, order_id: int, status: Optional[OrderStatus] = None,
                     payment_status: Optional[PaymentStatus] = None,
                     tracking_number: Optional[str] = None, admin_notes: Optional[str] = None) -> Order:
        order = self.get_order(order_id)
        if status is not None:
            self.set_status(order, status)
        if payment_status is not None:
            self.apply_payment_status(order, payment_status)
        if tracking_number is not None:
            order.tracking_number = tracking_number
        if admin_notes is not None:
            order.admin_notes = admin_notes
        order.updated_at = datetime.utcnow()
        self.session.add(order)
        self.session.commit()
        self.session.refresh(order)
        log_order_event("updated", order.id, status=order.status.value, payment_status=order.payment_status.value)
        return order

    def delete_order(self, order_id: int, user: User) -> None:
        order = self.get_order(order_id)
        if order.user_id != user.id:
            raise HTTPException(status_code=403, detail="Not authorized to delete this order")
        if order.payment_status != PaymentStatus.PENDING:
            raise HTTPException(status_code=400, detail="Only orders with pending payment can be deleted")
        if order.status != OrderStatus.CANCELLED:
            self.restock(order)
        self.session.delete(order)
        self.session.commit()
        log_order_event("deleted", order_id, user_id=user.id)

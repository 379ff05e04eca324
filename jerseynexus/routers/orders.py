from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import Field
from sqlmodel import Session

from jerseynexus.core.errors import send_response
from jerseynexus.db.session import get_session
from jerseynexus.models import OrderStatus, PaymentMethod, PaymentStatus, User
from jerseynexus.routers.auth import get_current_user, require_admin
from jerseynexus.schemas import CamelModel, OrderCreate
from jerseynexus.serializers import order_event_payload, serialize_order
from jerseynexus.services.notifier import manager
from jerseynexus.services.order import OrderService

router = APIRouter()


class OrderUpdate(CamelModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    tracking_number: Optional[str] = Field(default=None, max_length=100)
    admin_notes: Optional[str] = Field(default=None, max_length=1000)


def get_order_service(session: Session = Depends(get_session)) -> OrderService:
    return OrderService(session)


@router.get("/")
def read_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: Optional[int] = Query(None, alias="userId"),
    status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = Query(None, alias="paymentStatus"),
    payment_method: Optional[PaymentMethod] = Query(None, alias="paymentMethod"),
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    orders, pagination = service.list_orders(
        current_user, page, limit, user_id, status, payment_status, payment_method,
    )
    return send_response("Orders retrieved successfully", {"orders": orders, "pagination": pagination})


@router.post("/")
def create_order(
    order_in: OrderCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    order = service.create_order(current_user.id, order_in)
    background_tasks.add_task(manager.new_order, order_event_payload(order))
    return send_response("Order created successfully", {"order": serialize_order(order)}, 201)


@router.get("/stats")
def order_stats(admin: User = Depends(require_admin), service: OrderService = Depends(get_order_service)):
    return send_response("Order statistics retrieved successfully", service.get_stats())


@router.get("/{order_id}")
def read_order(
    order_id: int,
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    order = service.get_order_for_user(order_id, current_user)
    return send_response("Order retrieved successfully", {"order": serialize_order(order, include_payments=True)})


@router.put("/{order_id}")
def update_order(
    order_id: int,
    order_in: OrderUpdate,
    background_tasks: BackgroundTasks,
    admin: User = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    order = service.update_order(order_id, **order_in.model_dump(exclude_unset=True))
    background_tasks.add_task(manager.order_updated, order_event_payload(order))
    return send_response("Order updated successfully", {"order": serialize_order(order, include_payments=True)})


@router.delete("/{order_id}")
def delete_order(
    order_id: int,
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    service.delete_order(order_id, current_user)
    return send_response("Order deleted successfully")

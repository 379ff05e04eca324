from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse
from loguru import logger
from pydantic import Field
from sqlmodel import Session

from jerseynexus.core.config import settings
from jerseynexus.core.errors import PaymentCallbackError, PaymentGatewayError, send_response
from jerseynexus.db.session import get_session
from jerseynexus.models import Order, Payment, PaymentMethod, TransactionStatus, User
from jerseynexus.routers.auth import get_current_user, require_admin
from jerseynexus.schemas import CamelModel, OrderCreate
from jerseynexus.serializers import order_event_payload, payment_event_payload, serialize_order, serialize_payment
from jerseynexus.services.notifier import manager
from jerseynexus.services.payment import PaymentService

router = APIRouter()


class OrderPaymentRequest(CamelModel):
    order_id: int
    product_name: Optional[str] = None


class CheckoutPaymentRequest(CamelModel):
    order_data: OrderCreate
    product_name: Optional[str] = Field(default=None, max_length=200)


class EsewaVerifyRequest(CamelModel):
    transaction_uuid: str


class KhaltiVerifyRequest(CamelModel):
    pidx: str


class KhaltiReturn(CamelModel):
    pidx: str
    status: Optional[str] = None
    purchase_order_id: Optional[str] = None


class CodCompleteRequest(CamelModel):
    collected_amount: float = Field(ge=0)


class RefundRequest(CamelModel):
    amount: Optional[float] = Field(default=None, gt=0)
    reason: Optional[str] = Field(default=None, max_length=500)


def get_payment_service(session: Session = Depends(get_session)) -> PaymentService:
    return PaymentService(session)


def frontend_redirect(path: str, **params) -> RedirectResponse:
    query = urlencode({key: value for key, value in params.items() if value is not None})
    url = f"{settings.FRONTEND_URL}{path}"
    return RedirectResponse(f"{url}?{query}" if query else url, status_code=302)


def failure_redirect(error: str, order_id: Optional[int] = None) -> RedirectResponse:
    return frontend_redirect("/payment/failed", error=error, orderId=order_id)


def notify(background_tasks: BackgroundTasks, payment: Payment, order: Optional[Order] = None, created: bool = False):
    """Schedule websocket events for a payment change; payloads are built now, sent after the response."""
    background_tasks.add_task(manager.payment_updated, payment_event_payload(payment))
    if order is not None:
        payload = order_event_payload(order)
        if created:
            background_tasks.add_task(manager.new_order, payload)
        background_tasks.add_task(manager.order_updated, payload)


# eSewa

@router.post("/esewa/initiate")
def esewa_initiate(
    request_in: OrderPaymentRequest,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    data = service.initiate_esewa(current_user, request_in.order_id)
    return send_response("eSewa payment initiated", data)


@router.post("/esewa/initiate-with-order")
def esewa_initiate_with_order(
    request_in: CheckoutPaymentRequest,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    data = service.initiate_esewa_with_order(current_user, request_in.order_data, request_in.product_name)
    return send_response("eSewa payment initiated", data)


@router.get("/esewa/success")
def esewa_success(
    background_tasks: BackgroundTasks,
    data: Optional[str] = None,
    service: PaymentService = Depends(get_payment_service),
):
    """eSewa redirects the browser here with a base64 JSON ``data`` parameter."""
    try:
        payment, order, created = service.complete_esewa_callback(data)
    except PaymentCallbackError as exc:
        logger.warning(f"eSewa callback rejected: {exc.reason}")
        return failure_redirect(exc.reason, exc.order_id)

    notify(background_tasks, payment, order, created=created)
    return frontend_redirect("/order-success", orderId=order.id, transactionId=payment.transaction_id)


@router.post("/esewa/verify")
def esewa_verify(
    request_in: EsewaVerifyRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    payment, order, status, created = service.verify_esewa(request_in.transaction_uuid, current_user)
    notify(background_tasks, payment, order, created=created)
    return send_response(
        f"eSewa payment status: {status.get('status')}",
        {
            "status": status.get("status"),
            "payment": serialize_payment(payment),
            "order": serialize_order(order) if order else None,
            "gatewayResponse": status,
        },
    )


@router.get("/esewa/status/{transaction_uuid}")
def esewa_status(
    transaction_uuid: str,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    payment, order, status, created = service.verify_esewa(transaction_uuid, current_user)
    notify(background_tasks, payment, order, created=created)
    return send_response("eSewa payment status retrieved", {
        "status": status.get("status"),
        "paymentStatus": payment.status,
        "orderId": payment.order_id,
        "gatewayResponse": status,
    })


# Khalti

@router.post("/khalti/initiate")
def khalti_initiate(
    request_in: OrderPaymentRequest,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    data = service.initiate_khalti(current_user, request_in.order_id)
    return send_response("Khalti payment initiated", data)


@router.post("/khalti/initiate-with-order")
def khalti_initiate_with_order(
    request_in: CheckoutPaymentRequest,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    data = service.initiate_khalti_with_order(current_user, request_in.order_data, request_in.product_name)
    return send_response("Khalti payment initiated", data)


def _khalti_json(service: PaymentService, background_tasks: BackgroundTasks, user: User, pidx: str,
                 purchase_order_id: Optional[str] = None):
    payment = service.find_khalti_payment(pidx, purchase_order_id)
    if payment is not None and payment.user_id != user.id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Not authorized to access this payment")
    try:
        payment, order, lookup, created = service.confirm_khalti(pidx, purchase_order_id)
    except PaymentCallbackError as exc:
        status_code = 404 if exc.reason == "payment_not_found" else 400
        raise HTTPException(status_code=status_code, detail=f"Payment verification failed: {exc.reason}")

    notify(background_tasks, payment, order, created=created)
    if lookup.get("status") != "Completed":
        raise HTTPException(status_code=400, detail=f"Payment not completed. Status: {lookup.get('status')}")
    return send_response("Payment verified successfully", {
        "payment": serialize_payment(payment),
        "order": serialize_order(order) if order else None,
        "status": lookup.get("status"),
    })


@router.post("/khalti/verify")
def khalti_verify(
    request_in: KhaltiVerifyRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return _khalti_json(service, background_tasks, current_user, request_in.pidx)


@router.get("/khalti/callback")
def khalti_callback(
    background_tasks: BackgroundTasks,
    pidx: Optional[str] = None,
    status: Optional[str] = None,
    transaction_id: Optional[str] = None,
    purchase_order_id: Optional[str] = None,
    service: PaymentService = Depends(get_payment_service),
):
    """Khalti redirects the browser here after the customer finishes on Khalti."""
    logger.info(f"Khalti callback pidx={pidx} status={status} transaction_id={transaction_id}")
    if not pidx and not purchase_order_id:
        return failure_redirect("missing_pidx")
    try:
        payment, order, lookup, created = service.confirm_khalti(pidx, purchase_order_id)
    except PaymentCallbackError as exc:
        return failure_redirect(exc.reason, exc.order_id)
    except PaymentGatewayError as exc:
        logger.error(f"Khalti lookup failed during callback: {exc.message}")
        return failure_redirect("verification_failed")

    notify(background_tasks, payment, order, created=created)
    if payment.status == TransactionStatus.SUCCESS and order is not None:
        return frontend_redirect("/order-success", orderId=order.id, transactionId=payment.transaction_id)
    reason = "payment_pending" if payment.status == TransactionStatus.PENDING else "payment_failed"
    return frontend_redirect("/payment/failed", orderId=payment.order_id, reason=reason)


@router.post("/khalti/frontend-return")
def khalti_frontend_return(
    request_in: KhaltiReturn,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return _khalti_json(service, background_tasks, current_user, request_in.pidx, request_in.purchase_order_id)


# Cash on delivery

@router.post("/cod/process")
def cod_process(
    request_in: OrderPaymentRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    order, payment = service.process_cod(current_user, request_in.order_id)
    notify(background_tasks, payment, order)
    return send_response("Cash on delivery order confirmed", {
        "order": serialize_order(order),
        "payment": serialize_payment(payment),
    })


# Admin

@router.get("/")
def read_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[TransactionStatus] = None,
    method: Optional[PaymentMethod] = None,
    order_id: Optional[int] = Query(None, alias="orderId"),
    admin: User = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    payments, pagination = service.list_payments(page, limit, status, method, order_id)
    return send_response("Payments retrieved successfully", {"payments": payments, "pagination": pagination})


@router.get("/order/{order_id}")
def read_order_payments(
    order_id: int,
    admin: User = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    payments = service.payments_for_order(order_id)
    return send_response("Payments retrieved successfully",
                         {"payments": [serialize_payment(payment) for payment in payments]})


@router.post("/{payment_id}/cod-complete")
def cod_complete(
    payment_id: str,
    request_in: CodCompleteRequest,
    background_tasks: BackgroundTasks,
    admin: User = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    payment, order = service.complete_cod(payment_id, request_in.collected_amount, admin)
    notify(background_tasks, payment, order)
    return send_response("Cash on delivery payment completed",
                         {"payment": serialize_payment(payment), "order": serialize_order(order)})


@router.post("/{payment_id}/refund")
def refund_payment(
    payment_id: str,
    request_in: RefundRequest,
    background_tasks: BackgroundTasks,
    admin: User = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    payment, order = service.refund(payment_id, request_in.amount, request_in.reason, admin)
    notify(background_tasks, payment, order)
    return send_response("Payment refunded", {
        "payment": serialize_payment(payment),
        "order": serialize_order(order) if order else None,
    })

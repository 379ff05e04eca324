from datetime import datetime
from typing import Optional

from fastapi import HTTPException
from loguru import logger
from sqlmodel import Session, select

from jerseynexus.core.config import settings
from jerseynexus.core.errors import PaymentCallbackError
from jerseynexus.core.log import log_payment_event
from jerseynexus.models import (
    Order,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    TransactionStatus,
    User,
)
from jerseynexus.schemas import OrderCreate
from jerseynexus.serializers import paginate, serialize_payment
from jerseynexus.services.esewa import EsewaGateway, esewa_gateway, format_amount
from jerseynexus.services.khalti import KhaltiClient, khalti_client, to_paisa
from jerseynexus.services.order import OrderService

# eSewa status API values that end a transaction without payment
ESEWA_FAILED_STATUSES = {"NOT_FOUND", "CANCELED"}
# Khalti lookup values that end a transaction without payment
KHALTI_FAILED_STATUSES = {"User canceled", "Expired", "Failed"}


class PaymentService:
    def __init__(self, session: Session, esewa: Optional[EsewaGateway] = None,
                 khalti: Optional[KhaltiClient] = None):
        self.session = session
        self.esewa = esewa or esewa_gateway
        self.khalti = khalti or khalti_client
        self.orders = OrderService(session)

    # Lookup

    def get_payment(self, payment_id: str) -> Payment:
        payment = self.session.get(Payment, payment_id)
        if not payment:
            raise HTTPException(status_code=404, detail="Payment not found")
        return payment

    def get_payment_for_user(self, payment_id: str, user: User) -> Payment:
        payment = self.get_payment(payment_id)
        if payment.user_id != user.id and not user.is_admin:
            raise HTTPException(status_code=403, detail="Not authorized to access this payment")
        return payment

    def find_khalti_payment(self, pidx: Optional[str], purchase_order_id: Optional[str] = None) -> Optional[Payment]:
        payment = None
        if pidx:
            payment = self.session.exec(
                select(Payment).where(Payment.external_id == pidx, Payment.method == PaymentMethod.KHALTI)
            ).first()
        if payment is None and purchase_order_id:
            payment = self.session.get(Payment, purchase_order_id)
        return payment

    # Initiation

    def _payable_order(self, order_id: int, user: User) -> Order:
        order = self.orders.get_owned_order(order_id, user)
        if order.payment_status == PaymentStatus.PAID:
            raise HTTPException(status_code=400, detail="Order already paid")
        if order.status == OrderStatus.CANCELLED:
            raise HTTPException(status_code=400, detail="Order has been cancelled")
        return order

    def _new_payment(self, method: PaymentMethod, amount: float, user: User,
                     order: Optional[Order] = None, details: Optional[dict] = None) -> Payment:
        payment = Payment(
            order_id=order.id if order else None,
            user_id=user.id,
            amount=amount,
            method=method,
            details=details or {},
        )
        self.session.add(payment)
        self.session.flush()
        return payment

    def _checkout_details(self, user: User, order_in: OrderCreate, method: PaymentMethod) -> tuple[float, dict]:
        """Price and stock-check a checkout whose order is created after payment."""
        order_in = order_in.model_copy(update={"payment_method": method})
        amount = self.orders.quote(order_in)
        details = {
            "flow": "order_after_payment",
            "userId": user.id,
            "orderData": order_in.model_dump(mode="json", by_alias=True),
        }
        return amount, details

    def initiate_esewa(self, user: User, order_id: int) -> dict:
        order = self._payable_order(order_id, user)
        payment = self._new_payment(PaymentMethod.ESEWA, order.total_amount, user, order)
        order.payment_method = PaymentMethod.ESEWA
        order.payment_id = payment.id
        order.updated_at = datetime.utcnow()
        self.session.add(order)
        return self._start_esewa(payment)

    def initiate_esewa_with_order(self, user: User, order_in: OrderCreate, product_name: Optional[str] = None) -> dict:
        amount, details = self._checkout_details(user, order_in, PaymentMethod.ESEWA)
        details["productName"] = product_name
        payment = self._new_payment(PaymentMethod.ESEWA, amount, user, details=details)
        return self._start_esewa(payment)

    def _start_esewa(self, payment: Payment) -> dict:
        params = self.esewa.build_form(
            transaction_uuid=payment.id,
            amount=payment.amount,
            success_url=f"{settings.BACKEND_URL}/api/payments/esewa/success",
            failure_url=f"{settings.FRONTEND_URL}/payment/failed",
        )
        payment.external_id = payment.id
        payment.details = {**payment.details, "esewaParams": params}
        self.session.add(payment)
        self.session.commit()
        log_payment_event("initiated", payment.id, method="ESEWA", amount=payment.amount)
        return {"payment_url": self.esewa.form_url, "paymentId": payment.id, "esewaParams": params}

    def initiate_khalti(self, user: User, order_id: int) -> dict:
        order = self._payable_order(order_id, user)
        payment = self._new_payment(PaymentMethod.KHALTI, order.total_amount, user, order)
        data = self._start_khalti(payment, user, f"JerseyNexus Order #{order.id}")
        order.payment_method = PaymentMethod.KHALTI
        order.payment_id = data["pidx"]
        order.updated_at = datetime.utcnow()
        self.session.add(order)
        self.session.commit()
        return data

    def initiate_khalti_with_order(self, user: User, order_in: OrderCreate, product_name: Optional[str] = None) -> dict:
        amount, details = self._checkout_details(user, order_in, PaymentMethod.KHALTI)
        details["productName"] = product_name
        payment = self._new_payment(PaymentMethod.KHALTI, amount, user, details=details)
        data = self._start_khalti(payment, user, product_name or "JerseyNexus Order")
        self.session.commit()
        return data

    def _start_khalti(self, payment: Payment, user: User, purchase_order_name: str) -> dict:
        response = self.khalti.initiate(
            purchase_order_id=payment.id,
            purchase_order_name=purchase_order_name,
            amount=payment.amount,
            return_url=settings.KHALTI_RETURN_URL,
            website_url=settings.FRONTEND_URL,
            customer_name=user.name,
            customer_email=user.email,
            customer_phone=user.phone,
        )
        payment.external_id = response.get("pidx")
        payment.details = {**payment.details, "khalti": response}
        self.session.add(payment)
        log_payment_event("initiated", payment.id, method="KHALTI", amount=payment.amount, pidx=payment.external_id)
        return {
            "payment_url": response.get("payment_url"),
            "pidx": response.get("pidx"),
            "expires_at": response.get("expires_at"),
            "paymentId": payment.id,
        }

    # Settlement

    def settle(self, payment: Payment, transaction_id: Optional[str], gateway_response: dict) -> tuple[Order, bool]:
        """
        Mark ``payment`` SUCCESS and its order PAID/CONFIRMED.

        Returns (order, created). A payment that is already SUCCESS is left as
        it is and its existing order returned, so repeated callbacks never
        create a second order. In the order-after-payment flow the order is
        created here from the checkout stored on the payment; if that fails
        the payment is marked FAILED and PaymentCallbackError is raised.
        """
        if payment.status == TransactionStatus.SUCCESS and payment.order_id is not None:
            return self.orders.get_order(payment.order_id), False
        if payment.status == TransactionStatus.REFUNDED:
            raise PaymentCallbackError("payment_refunded", payment.order_id)

        created = False
        order = self.session.get(Order, payment.order_id) if payment.order_id else None
        if order is None:
            order_data = payment.details.get("orderData")
            user_id = payment.details.get("userId") or payment.user_id
            if not order_data or user_id is None:
                self.fail(payment, "order_data_missing", gateway_response)
                raise PaymentCallbackError("order_creation_failed")
            try:
                order = self.orders.create_order(
                    user_id,
                    OrderCreate.model_validate(order_data),
                    payment_status=PaymentStatus.PAID,
                    status=OrderStatus.CONFIRMED,
                    payment_id=transaction_id,
                    commit=False,
                )
            except HTTPException as exc:
                self.session.rollback()
                # Money was taken but no order exists; needs a manual refund
                logger.error(f"order creation after payment {payment.id} failed: {exc.detail}")
                self.fail(payment, f"order_creation_failed: {exc.detail}", gateway_response)
                raise PaymentCallbackError("order_creation_failed")
            created = True

        now = datetime.utcnow()
        order.payment_method = payment.method
        order.payment_id = transaction_id or order.payment_id
        self.orders.apply_payment_status(order, PaymentStatus.PAID)

        payment.order_id = order.id
        payment.status = TransactionStatus.SUCCESS
        payment.transaction_id = transaction_id
        payment.completed_at = now
        payment.failure_reason = None
        payment.gateway_response = gateway_response
        payment.details = {**payment.details, "verifiedAt": now.isoformat()}
        payment.updated_at = now
        self.session.add(payment)
        self.session.commit()
        self.session.refresh(order)
        log_payment_event("settled", payment.id, order_id=order.id, transaction_id=transaction_id,
                          order_created=created)
        return order, created

    def fail(self, payment: Payment, reason: str, gateway_response: Optional[dict] = None) -> Optional[Order]:
        if payment.status == TransactionStatus.SUCCESS:
            return self.session.get(Order, payment.order_id)
        now = datetime.utcnow()
        payment.status = TransactionStatus.FAILED
        payment.failure_reason = reason
        payment.failed_at = now
        payment.updated_at = now
        if gateway_response is not None:
            payment.gateway_response = gateway_response
        self.session.add(payment)

        order = self.session.get(Order, payment.order_id) if payment.order_id else None
        if order is not None and order.payment_status != PaymentStatus.PAID:
            # The order stays; the customer can try again
            self.orders.apply_payment_status(order, PaymentStatus.FAILED)
        self.session.commit()
        log_payment_event("failed", payment.id, reason=reason)
        return order

    # eSewa completion

    def complete_esewa_callback(self, data: Optional[str]) -> tuple[Payment, Order, bool]:
        """Handle eSewa's success redirect. Raises PaymentCallbackError with the failure reason."""
        if not data:
            raise PaymentCallbackError("missing_data")
        try:
            payload = self.esewa.decode_callback(data)
        except ValueError:
            raise PaymentCallbackError("invalid_data")

        payment = self.session.get(Payment, str(payload.get("transaction_uuid", "")))
        if payment is None or payment.method != PaymentMethod.ESEWA:
            logger.warning(f"eSewa callback for unknown transaction {payload.get('transaction_uuid')}")
            raise PaymentCallbackError("payment_not_found")

        if not self.esewa.verify_callback(payload):
            logger.warning(f"eSewa callback signature mismatch for {payment.id}")
            self.fail(payment, "invalid_signature", payload)
            raise PaymentCallbackError("invalid_signature", payment.order_id)

        if payload.get("status") != "COMPLETE":
            self.fail(payment, f"esewa_status_{payload.get('status')}", payload)
            raise PaymentCallbackError("payment_not_complete", payment.order_id)

        if not self._esewa_amount_matches(payment, payload.get("total_amount")):
            self.fail(payment, "amount_mismatch", payload)
            raise PaymentCallbackError("amount_mismatch", payment.order_id)

        order, created = self.settle(payment, str(payload.get("transaction_code") or ""), payload)
        return payment, order, created

    @staticmethod
    def _esewa_amount_matches(payment: Payment, total_amount) -> bool:
        try:
            paid = float(str(total_amount).replace(",", ""))
        except (TypeError, ValueError):
            return False
        return round(paid, 2) == round(payment.amount, 2)

    def verify_esewa(self, transaction_uuid: str, user: User) -> tuple[Payment, Optional[Order], dict, bool]:
        payment = self.get_payment_for_user(transaction_uuid, user)
        if payment.method != PaymentMethod.ESEWA:
            raise HTTPException(status_code=400, detail="Not an eSewa payment")
        total_amount = payment.details.get("esewaParams", {}).get("total_amount") or format_amount(payment.amount)
        status = self.esewa.check_status(payment.id, total_amount)

        order = self.session.get(Order, payment.order_id) if payment.order_id else None
        state = status.get("status")
        created = False
        if state == "COMPLETE":
            try:
                order, created = self.settle(payment, status.get("ref_id"), status)
            except PaymentCallbackError as exc:
                raise HTTPException(status_code=400, detail=f"Payment verified but {exc.reason}")
        elif state in ESEWA_FAILED_STATUSES:
            order = self.fail(payment, f"esewa_status_{state}", status)
        return payment, order, status, created

    # Khalti completion

    def confirm_khalti(self, pidx: Optional[str], purchase_order_id: Optional[str] = None) -> tuple[Payment, Optional[Order], dict, bool]:
        """
        Look the payment up with Khalti and settle or fail it. Pending states
        leave the payment untouched. Raises PaymentCallbackError when the
        payment is unknown or cannot be settled.
        """
        payment = self.find_khalti_payment(pidx, purchase_order_id)
        if payment is None:
            raise PaymentCallbackError("payment_not_found")

        lookup = self.khalti.lookup(payment.external_id or pidx)
        state = lookup.get("status")
        order = self.session.get(Order, payment.order_id) if payment.order_id else None
        created = False

        if state == "Completed":
            if to_paisa(payment.amount) != int(lookup.get("total_amount") or 0):
                self.fail(payment, "amount_mismatch", lookup)
                raise PaymentCallbackError("amount_mismatch", payment.order_id)
            order, created = self.settle(payment, lookup.get("transaction_id"), lookup)
        elif state in KHALTI_FAILED_STATUSES:
            order = self.fail(payment, f"khalti_status_{state}", lookup)
        return payment, order, lookup, created

    # Cash on delivery and admin operations

    def process_cod(self, user: User, order_id: int) -> tuple[Order, Payment]:
        order = self._payable_order(order_id, user)
        payment = self.session.exec(
            select(Payment).where(
                Payment.order_id == order.id,
                Payment.method == PaymentMethod.COD,
                Payment.status == TransactionStatus.PENDING,
            )
        ).first()
        if payment is None:
            payment = self._new_payment(
                PaymentMethod.COD, order.total_amount, user, order,
                details={"type": "cash_on_delivery", "note": "Collected on delivery"},
            )

        order.payment_method = PaymentMethod.COD
        order.payment_id = payment.id
        self.orders.apply_payment_status(order, PaymentStatus.PENDING)
        if order.status == OrderStatus.PROCESSING:
            order.status = OrderStatus.CONFIRMED
        self.session.commit()
        self.session.refresh(order)
        log_payment_event("cod", payment.id, order_id=order.id)
        return order, payment

    def list_payments(self, page: int = 1, limit: int = 10, status: Optional[TransactionStatus] = None,
                      method: Optional[PaymentMethod] = None, order_id: Optional[int] = None):
        statement = select(Payment)
        if status is not None:
            statement = statement.where(Payment.status == status)
        if method is not None:
            statement = statement.where(Payment.method == method)
        if order_id is not None:
            statement = statement.where(Payment.order_id == order_id)
        statement = statement.order_by(Payment.created_at.desc())
        payments, pagination = paginate(self.session, statement, page, limit)
        return [serialize_payment(payment) for payment in payments], pagination

    def payments_for_order(self, order_id: int):
        self.orders.get_order(order_id)
        return self.session.exec(
            select(Payment).where(Payment.order_id == order_id).order_by(Payment.created_at.desc())
        ).all()

    def complete_cod(self, payment_id: str, collected_amount: float, admin: User) -> tuple[Payment, Order]:
        payment = self.get_payment(payment_id)
        if payment.method != PaymentMethod.COD:
            raise HTTPException(status_code=400, detail="Not a cash on delivery payment")
        if payment.status != TransactionStatus.PENDING:
            raise HTTPException(status_code=400, detail=f"Payment is already {payment.status.value}")

        payment.amount = collected_amount
        payment.details = {**payment.details, "collectedBy": admin.id, "collectedAmount": collected_amount}
        order, _ = self.settle(payment, f"COD-{payment.id[:8].upper()}", {"collectedAmount": collected_amount})
        return payment, order

    def refund(self, payment_id: str, amount: Optional[float], reason: Optional[str], admin: User) -> tuple[Payment, Optional[Order]]:
        payment = self.get_payment(payment_id)
        if payment.status != TransactionStatus.SUCCESS:
            raise HTTPException(status_code=400, detail="Only successful payments can be refunded")
        refund_amount = payment.amount if amount is None else amount
        if refund_amount <= 0 or refund_amount > payment.amount:
            raise HTTPException(status_code=400, detail="Refund amount must be between 0 and the amount paid")

        now = datetime.utcnow()
        payment.status = TransactionStatus.REFUNDED
        payment.details = {
            **payment.details,
            "refund": {
                "amount": refund_amount,
                "reason": reason,
                "refundedAt": now.isoformat(),
                "refundedBy": admin.id,
            },
        }
        payment.updated_at = now
        self.session.add(payment)

        order = self.session.get(Order, payment.order_id) if payment.order_id else None
        if order is not None:
            self.orders.apply_payment_status(order, PaymentStatus.REFUNDED)
        self.session.commit()
        if order is not None:
            self.session.refresh(order)
        log_payment_event("refunded", payment.id, amount=refund_amount, reason=reason)
        return payment, order

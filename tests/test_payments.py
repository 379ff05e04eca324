import base64
import json
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from sqlmodel import select

from conftest import auth_headers, order_payload
from jerseynexus.core.config import settings
from jerseynexus.core.errors import PaymentGatewayError
from jerseynexus.models import Order, Payment, PaymentMethod, PaymentStatus, TransactionStatus
from jerseynexus.services.esewa import RESPONSE_SIGNED_FIELDS, generate_signature
from jerseynexus.services.khalti import khalti_client


def esewa_callback_data(payment_id: str, total_amount: str, status: str = "COMPLETE", tamper: bool = False) -> str:
    payload = {
        "transaction_code": "000AWEO",
        "status": status,
        "total_amount": total_amount,
        "transaction_uuid": payment_id,
        "product_code": settings.ESEWA_MERCHANT_CODE,
        "signed_field_names": ",".join(RESPONSE_SIGNED_FIELDS),
    }
    payload["signature"] = generate_signature(settings.ESEWA_SECRET_KEY, payload, RESPONSE_SIGNED_FIELDS)
    if tamper:
        payload["total_amount"] = "1.0"
    return base64.b64encode(json.dumps(payload).encode()).decode()


def redirect_target(response):
    location = urlparse(response.headers["location"])
    return location.path, {key: values[0] for key, values in parse_qs(location.query).items()}


@pytest.fixture
def esewa_checkout(client, user_headers, product):
    """Order-after-payment eSewa checkout for two of ``product``."""
    response = client.post("/api/payments/esewa/initiate-with-order", json={
        "orderData": order_payload(product.id, quantity=2, paymentMethod="ESEWA"),
        "productName": "Nepal Home Jersey",
    }, headers=user_headers)
    assert response.status_code == 200
    return response.json()["data"]


def khalti_initiated(pidx: str = "HT6o6PEZRWFJ5ygavzHWd5"):
    return {
        "pidx": pidx,
        "payment_url": f"https://test-pay.khalti.com/?pidx={pidx}",
        "expires_at": "2025-06-10T17:24:13+05:45",
        "expires_in": 1800,
    }


def khalti_lookup(status: str, total_amount: int, pidx: str = "HT6o6PEZRWFJ5ygavzHWd5"):
    return {
        "pidx": pidx,
        "total_amount": total_amount,
        "status": status,
        "transaction_id": "GFq9PFS7b2iYvL8Lir9oXe" if status == "Completed" else None,
        "fee": 0,
        "refunded": False,
    }


class TestEsewaInitiate:
    def test_initiate_for_existing_order(self, client, session, placed_order, user_headers):
        response = client.post("/api/payments/esewa/initiate", json={"orderId": placed_order["id"]},
                               headers=user_headers)
        assert response.status_code == 200
        data = response.json()["data"]
        params = data["esewaParams"]
        assert data["payment_url"] == settings.ESEWA_FORM_URL
        assert params["transaction_uuid"] == data["paymentId"]
        assert params["total_amount"] == "5000"
        assert params["success_url"] == f"{settings.BACKEND_URL}/api/payments/esewa/success"
        assert params["failure_url"] == f"{settings.FRONTEND_URL}/payment/failed"
        assert params["signature"] == generate_signature(
            settings.ESEWA_SECRET_KEY, params, ("total_amount", "transaction_uuid", "product_code"))

        order = session.get(Order, placed_order["id"])
        assert order.payment_method == PaymentMethod.ESEWA
        assert order.payment_id == data["paymentId"]
        payment = session.get(Payment, data["paymentId"])
        assert payment.status == TransactionStatus.PENDING
        assert payment.order_id == order.id

    def test_initiate_requires_order_owner(self, client, placed_order, other_user):
        response = client.post("/api/payments/esewa/initiate", json={"orderId": placed_order["id"]},
                               headers=auth_headers(other_user))
        assert response.status_code == 403

    def test_paid_order_cannot_be_paid_again(self, client, placed_order, user_headers, admin_headers):
        client.put(f"/api/orders/{placed_order['id']}", json={"paymentStatus": "PAID"}, headers=admin_headers)
        response = client.post("/api/payments/esewa/initiate", json={"orderId": placed_order["id"]},
                               headers=user_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Order already paid"

    def test_initiate_with_order_prices_from_database(self, client, session, esewa_checkout):
        assert esewa_checkout["esewaParams"]["total_amount"] == "5000"
        payment = session.get(Payment, esewa_checkout["paymentId"])
        assert payment.order_id is None
        assert payment.details["flow"] == "order_after_payment"
        assert session.exec(select(Order)).all() == []


class TestEsewaCallback:
    def test_valid_callback_creates_order_and_redirects(self, client, session, esewa_checkout, product):
        data = esewa_callback_data(esewa_checkout["paymentId"], "5000.0")
        response = client.get("/api/payments/esewa/success", params={"data": data}, follow_redirects=False)

        assert response.status_code == 302
        path, query = redirect_target(response)
        assert path == "/order-success"
        assert query["transactionId"] == "000AWEO"

        order = session.get(Order, int(query["orderId"]))
        assert order.payment_status == PaymentStatus.PAID
        assert order.status.value == "CONFIRMED"
        assert order.payment_method == PaymentMethod.ESEWA
        assert order.total_amount == 5000.0

        payment = session.get(Payment, esewa_checkout["paymentId"])
        assert payment.status == TransactionStatus.SUCCESS
        assert payment.order_id == order.id
        assert payment.completed_at is not None

        session.refresh(product)
        assert product.stock == 8

    def test_repeated_callback_creates_one_order(self, client, session, esewa_checkout):
        data = esewa_callback_data(esewa_checkout["paymentId"], "5000.0")
        first = client.get("/api/payments/esewa/success", params={"data": data}, follow_redirects=False)
        second = client.get("/api/payments/esewa/success", params={"data": data}, follow_redirects=False)
        assert redirect_target(first) == redirect_target(second)
        assert len(session.exec(select(Order)).all()) == 1

    def test_repeated_callback_announces_order_once(self, client, esewa_checkout):
        data = esewa_callback_data(esewa_checkout["paymentId"], "5000.0")
        with patch("jerseynexus.routers.payments.manager.new_order", new_callable=AsyncMock) as new_order:
            for _ in range(2):
                client.get("/api/payments/esewa/success", params={"data": data}, follow_redirects=False)
        new_order.assert_called_once()

    def test_tampered_signature_redirects_to_failure(self, client, session, esewa_checkout):
        data = esewa_callback_data(esewa_checkout["paymentId"], "5000.0", tamper=True)
        response = client.get("/api/payments/esewa/success", params={"data": data}, follow_redirects=False)

        assert response.status_code == 302
        path, query = redirect_target(response)
        assert path == "/payment/failed"
        assert query["error"] == "invalid_signature"

        payment = session.get(Payment, esewa_checkout["paymentId"])
        assert payment.status == TransactionStatus.FAILED
        assert session.exec(select(Order)).all() == []

    def test_amount_mismatch_is_rejected(self, client, session, esewa_checkout):
        data = esewa_callback_data(esewa_checkout["paymentId"], "10.0")
        response = client.get("/api/payments/esewa/success", params={"data": data}, follow_redirects=False)
        assert redirect_target(response)[1]["error"] == "amount_mismatch"
        assert session.exec(select(Order)).all() == []

    def test_missing_data(self, client):
        response = client.get("/api/payments/esewa/success", follow_redirects=False)
        assert redirect_target(response) == ("/payment/failed", {"error": "missing_data"})

    def test_unknown_payment(self, client):
        data = esewa_callback_data("no-such-payment", "100.0")
        response = client.get("/api/payments/esewa/success", params={"data": data}, follow_redirects=False)
        assert redirect_target(response)[1]["error"] == "payment_not_found"

    def test_sold_out_during_payment(self, client, session, esewa_checkout, product):
        product.stock = 1
        session.add(product)
        session.commit()
        data = esewa_callback_data(esewa_checkout["paymentId"], "5000.0")
        response = client.get("/api/payments/esewa/success", params={"data": data}, follow_redirects=False)

        assert redirect_target(response)[1]["error"] == "order_creation_failed"
        payment = session.get(Payment, esewa_checkout["paymentId"])
        assert payment.status == TransactionStatus.FAILED
        assert payment.failure_reason.startswith("order_creation_failed")

    def test_existing_order_is_settled(self, client, session, placed_order, user_headers):
        initiated = client.post("/api/payments/esewa/initiate", json={"orderId": placed_order["id"]},
                                headers=user_headers).json()["data"]
        data = esewa_callback_data(initiated["paymentId"], "5000.0")
        response = client.get("/api/payments/esewa/success", params={"data": data}, follow_redirects=False)

        assert redirect_target(response)[1]["orderId"] == str(placed_order["id"])
        order = session.get(Order, placed_order["id"])
        assert order.payment_status == PaymentStatus.PAID
        assert order.payment_id == "000AWEO"


class TestEsewaVerify:
    def test_complete_status_settles(self, client, session, esewa_checkout, user_headers):
        status = {"product_code": "EPAYTEST", "transaction_uuid": esewa_checkout["paymentId"],
                  "total_amount": 5000.0, "status": "COMPLETE", "ref_id": "0001TS9"}
        with patch("jerseynexus.services.esewa.esewa_gateway.check_status", return_value=status) as check:
            response = client.post("/api/payments/esewa/verify",
                                   json={"transactionUuid": esewa_checkout["paymentId"]}, headers=user_headers)
        check.assert_called_once_with(esewa_checkout["paymentId"], "5000")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "COMPLETE"
        assert data["payment"]["status"] == "SUCCESS"
        assert data["order"]["paymentStatus"] == "PAID"

    def test_not_found_marks_payment_failed(self, client, session, esewa_checkout, user_headers):
        status = {"transaction_uuid": esewa_checkout["paymentId"], "status": "NOT_FOUND", "ref_id": None}
        with patch("jerseynexus.services.esewa.esewa_gateway.check_status", return_value=status):
            response = client.get(f"/api/payments/esewa/status/{esewa_checkout['paymentId']}", headers=user_headers)
        assert response.json()["data"]["paymentStatus"] == "FAILED"

    def test_pending_status_is_reported(self, client, session, esewa_checkout, user_headers):
        status = {"transaction_uuid": esewa_checkout["paymentId"], "status": "PENDING", "ref_id": None}
        with patch("jerseynexus.services.esewa.esewa_gateway.check_status", return_value=status):
            response = client.get(f"/api/payments/esewa/status/{esewa_checkout['paymentId']}", headers=user_headers)
        assert response.json()["data"]["status"] == "PENDING"
        assert response.json()["data"]["paymentStatus"] == "PENDING"

    def test_gateway_outage_is_bad_gateway(self, client, esewa_checkout, user_headers):
        with patch("jerseynexus.services.esewa.esewa_gateway.check_status",
                   side_effect=PaymentGatewayError("Could not reach eSewa")):
            response = client.post("/api/payments/esewa/verify",
                                   json={"transactionUuid": esewa_checkout["paymentId"]}, headers=user_headers)
        assert response.status_code == 502
        assert response.json()["error"] == "Could not reach eSewa"

    def test_other_users_cannot_verify(self, client, esewa_checkout, other_user):
        response = client.post("/api/payments/esewa/verify",
                               json={"transactionUuid": esewa_checkout["paymentId"]},
                               headers=auth_headers(other_user))
        assert response.status_code == 403


class TestKhalti:
    @pytest.fixture
    def khalti_payment(self, client, placed_order, user_headers):
        with patch.object(khalti_client, "initiate", return_value=khalti_initiated()) as initiate:
            response = client.post("/api/payments/khalti/initiate", json={"orderId": placed_order["id"]},
                                   headers=user_headers)
        assert response.status_code == 200
        kwargs = initiate.call_args.kwargs
        assert kwargs["amount"] == 5000.0
        assert kwargs["purchase_order_name"] == f"JerseyNexus Order #{placed_order['id']}"
        assert kwargs["return_url"] == settings.KHALTI_RETURN_URL
        return response.json()["data"]

    def test_initiate_returns_payment_url(self, session, khalti_payment, placed_order):
        assert khalti_payment["pidx"] == "HT6o6PEZRWFJ5ygavzHWd5"
        assert khalti_payment["payment_url"].startswith("https://test-pay.khalti.com/")
        payment = session.get(Payment, khalti_payment["paymentId"])
        assert payment.external_id == "HT6o6PEZRWFJ5ygavzHWd5"
        assert session.get(Order, placed_order["id"]).payment_method == PaymentMethod.KHALTI

    def test_callback_completed_settles(self, client, session, khalti_payment, placed_order):
        with patch.object(khalti_client, "lookup", return_value=khalti_lookup("Completed", 500000)):
            response = client.get("/api/payments/khalti/callback", params={
                "pidx": khalti_payment["pidx"],
                "status": "Completed",
                "transaction_id": "GFq9PFS7b2iYvL8Lir9oXe",
                "purchase_order_id": khalti_payment["paymentId"],
            }, follow_redirects=False)

        path, query = redirect_target(response)
        assert path == "/order-success"
        assert query["orderId"] == str(placed_order["id"])
        order = session.get(Order, placed_order["id"])
        assert order.payment_status == PaymentStatus.PAID
        assert order.status.value == "CONFIRMED"
        payment = session.get(Payment, khalti_payment["paymentId"])
        assert payment.status == TransactionStatus.SUCCESS
        assert payment.transaction_id == "GFq9PFS7b2iYvL8Lir9oXe"

    def test_callback_canceled_fails(self, client, session, khalti_payment, placed_order):
        with patch.object(khalti_client, "lookup", return_value=khalti_lookup("User canceled", 500000)):
            response = client.get("/api/payments/khalti/callback", params={
                "pidx": khalti_payment["pidx"],
                "status": "User canceled",
            }, follow_redirects=False)

        assert redirect_target(response) == (
            "/payment/failed", {"orderId": str(placed_order["id"]), "reason": "payment_failed"})
        assert session.get(Payment, khalti_payment["paymentId"]).status == TransactionStatus.FAILED
        assert session.get(Order, placed_order["id"]).payment_status == PaymentStatus.FAILED

    def test_callback_pending_leaves_payment_pending(self, client, session, khalti_payment):
        with patch.object(khalti_client, "lookup", return_value=khalti_lookup("Pending", 500000)):
            response = client.get("/api/payments/khalti/callback", params={"pidx": khalti_payment["pidx"]},
                                  follow_redirects=False)
        assert redirect_target(response)[1]["reason"] == "payment_pending"
        assert session.get(Payment, khalti_payment["paymentId"]).status == TransactionStatus.PENDING

    def test_callback_amount_mismatch(self, client, session, khalti_payment):
        with patch.object(khalti_client, "lookup", return_value=khalti_lookup("Completed", 100)):
            response = client.get("/api/payments/khalti/callback", params={"pidx": khalti_payment["pidx"]},
                                  follow_redirects=False)
        assert redirect_target(response)[1]["error"] == "amount_mismatch"
        assert session.get(Payment, khalti_payment["paymentId"]).status == TransactionStatus.FAILED

    def test_callback_falls_back_to_purchase_order_id(self, client, khalti_payment):
        with patch.object(khalti_client, "lookup", return_value=khalti_lookup("Completed", 500000)) as lookup:
            response = client.get("/api/payments/khalti/callback", params={
                "pidx": "unknown-pidx",
                "purchase_order_id": khalti_payment["paymentId"],
            }, follow_redirects=False)
        lookup.assert_called_once_with(khalti_payment["pidx"])
        assert redirect_target(response)[0] == "/order-success"

    def test_callback_unknown_payment(self, client):
        response = client.get("/api/payments/khalti/callback", params={"pidx": "nope"}, follow_redirects=False)
        assert redirect_target(response)[1]["error"] == "payment_not_found"

    def test_callback_gateway_outage(self, client, khalti_payment):
        with patch.object(khalti_client, "lookup", side_effect=PaymentGatewayError("Could not reach Khalti")):
            response = client.get("/api/payments/khalti/callback", params={"pidx": khalti_payment["pidx"]},
                                  follow_redirects=False)
        assert redirect_target(response)[1]["error"] == "verification_failed"

    def test_verify_completed(self, client, khalti_payment, user_headers):
        with patch.object(khalti_client, "lookup", return_value=khalti_lookup("Completed", 500000)):
            response = client.post("/api/payments/khalti/verify", json={"pidx": khalti_payment["pidx"]},
                                   headers=user_headers)
        assert response.status_code == 200
        assert response.json()["data"]["order"]["paymentStatus"] == "PAID"

    def test_verify_not_completed(self, client, khalti_payment, user_headers):
        with patch.object(khalti_client, "lookup", return_value=khalti_lookup("Initiated", 500000)):
            response = client.post("/api/payments/khalti/verify", json={"pidx": khalti_payment["pidx"]},
                                   headers=user_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Payment not completed. Status: Initiated"

    def test_frontend_return_is_idempotent(self, client, session, khalti_payment, user_headers):
        with patch.object(khalti_client, "lookup", return_value=khalti_lookup("Completed", 500000)):
            for _ in range(2):
                response = client.post("/api/payments/khalti/frontend-return",
                                       json={"pidx": khalti_payment["pidx"], "status": "Completed"},
                                       headers=user_headers)
                assert response.status_code == 200
        assert len(session.exec(select(Order)).all()) == 1

    def test_frontend_return_is_owner_only(self, client, session, khalti_payment, other_user):
        with patch.object(khalti_client, "lookup", return_value=khalti_lookup("Completed", 500000)) as lookup:
            response = client.post("/api/payments/khalti/frontend-return",
                                   json={"pidx": khalti_payment["pidx"], "status": "Completed"},
                                   headers=auth_headers(other_user))
        assert response.status_code == 403
        assert "shippingAddress" not in response.text
        lookup.assert_not_called()
        assert session.get(Payment, khalti_payment["paymentId"]).status == TransactionStatus.PENDING

    def test_initiate_with_order_creates_order_on_completion(self, client, session, user_headers, product):
        with patch.object(khalti_client, "initiate", return_value=khalti_initiated("pidx-checkout")):
            initiated = client.post("/api/payments/khalti/initiate-with-order", json={
                "orderData": order_payload(product.id, quantity=1, paymentMethod="KHALTI"),
            }, headers=user_headers).json()["data"]
        assert session.exec(select(Order)).all() == []

        with patch.object(khalti_client, "lookup", return_value=khalti_lookup("Completed", 250000, "pidx-checkout")):
            response = client.get("/api/payments/khalti/callback", params={"pidx": "pidx-checkout"},
                                  follow_redirects=False)
        path, query = redirect_target(response)
        assert path == "/order-success"
        order = session.get(Order, int(query["orderId"]))
        assert order.payment_method == PaymentMethod.KHALTI
        assert order.total_amount == 2500.0
        assert session.get(Payment, initiated["paymentId"]).order_id == order.id


class TestKhaltiClient:
    def test_initiate_payload(self):
        response = type("Response", (), {"status_code": 200, "json": lambda self: khalti_initiated()})()
        with patch("jerseynexus.services.khalti.requests.post", return_value=response) as post:
            khalti_client.initiate(
                purchase_order_id="payment-1",
                purchase_order_name="JerseyNexus Order #1",
                amount=2500.5,
                return_url="http://localhost:5000/api/payments/khalti/callback",
                website_url="http://localhost:3000",
                customer_name="Sita",
                customer_email="sita@example.com",
            )
        url = post.call_args.args[0]
        kwargs = post.call_args.kwargs
        assert url.endswith("/epayment/initiate/")
        assert kwargs["headers"]["Authorization"] == f"Key {settings.KHALTI_SECRET_KEY}"
        assert kwargs["json"]["amount"] == 250050
        assert kwargs["json"]["customer_info"]["phone"] == "9800000000"

    def test_rejection_raises_gateway_error(self):
        response = type("Response", (), {"status_code": 401, "text": "",
                                         "json": lambda self: {"detail": "Invalid token."}})()
        with patch("jerseynexus.services.khalti.requests.post", return_value=response):
            with pytest.raises(PaymentGatewayError) as exc:
                khalti_client.lookup("pidx")
        assert exc.value.message == "Invalid token."


class TestCashOnDelivery:
    def test_process_confirms_order(self, client, session, placed_order, user_headers):
        response = client.post("/api/payments/cod/process", json={"orderId": placed_order["id"]},
                               headers=user_headers)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["order"]["status"] == "CONFIRMED"
        assert data["order"]["paymentStatus"] == "PENDING"
        assert data["payment"]["method"] == "COD"
        assert data["payment"]["amount"] == 5000.0

    def test_collect_then_refund(self, client, session, placed_order, product, user_headers, admin_headers):
        payment_id = client.post("/api/payments/cod/process", json={"orderId": placed_order["id"]},
                                 headers=user_headers).json()["data"]["payment"]["id"]

        collected = client.post(f"/api/payments/{payment_id}/cod-complete", json={"collectedAmount": 5000},
                                headers=admin_headers)
        assert collected.status_code == 200
        assert collected.json()["data"]["payment"]["status"] == "SUCCESS"
        assert collected.json()["data"]["payment"]["transactionId"].startswith("COD-")
        assert collected.json()["data"]["order"]["paymentStatus"] == "PAID"

        refunded = client.post(f"/api/payments/{payment_id}/refund", json={"reason": "Wrong size"},
                               headers=admin_headers)
        assert refunded.status_code == 200
        assert refunded.json()["data"]["payment"]["status"] == "REFUNDED"
        assert refunded.json()["data"]["order"]["paymentStatus"] == "REFUNDED"
        assert refunded.json()["data"]["order"]["status"] == "CANCELLED"
        session.refresh(product)
        assert product.stock == 10

    def test_refund_requires_successful_payment(self, client, placed_order, user_headers, admin_headers):
        payment_id = client.post("/api/payments/cod/process", json={"orderId": placed_order["id"]},
                                 headers=user_headers).json()["data"]["payment"]["id"]
        response = client.post(f"/api/payments/{payment_id}/refund", json={}, headers=admin_headers)
        assert response.status_code == 400

    def test_refund_cannot_exceed_amount(self, client, placed_order, user_headers, admin_headers):
        payment_id = client.post("/api/payments/cod/process", json={"orderId": placed_order["id"]},
                                 headers=user_headers).json()["data"]["payment"]["id"]
        client.post(f"/api/payments/{payment_id}/cod-complete", json={"collectedAmount": 5000}, headers=admin_headers)
        response = client.post(f"/api/payments/{payment_id}/refund", json={"amount": 9000}, headers=admin_headers)
        assert response.status_code == 400


class TestAdminPayments:
    def test_list_and_filter(self, client, placed_order, user_headers, admin_headers):
        client.post("/api/payments/cod/process", json={"orderId": placed_order["id"]}, headers=user_headers)
        data = client.get("/api/payments/?method=COD", headers=admin_headers).json()["data"]
        assert data["pagination"]["totalItems"] == 1
        assert data["payments"][0]["orderId"] == placed_order["id"]
        empty = client.get("/api/payments/?method=KHALTI", headers=admin_headers).json()["data"]
        assert empty["payments"] == []

    def test_payments_for_order(self, client, placed_order, user_headers, admin_headers):
        client.post("/api/payments/cod/process", json={"orderId": placed_order["id"]}, headers=user_headers)
        response = client.get(f"/api/payments/order/{placed_order['id']}", headers=admin_headers)
        assert len(response.json()["data"]["payments"]) == 1

    def test_customers_cannot_list(self, client, user_headers):
        assert client.get("/api/payments/", headers=user_headers).status_code == 403

from unittest.mock import AsyncMock, patch

from sqlmodel import select

from conftest import auth_headers, order_payload
from jerseynexus.models import Order, ProductStatus


class TestCreateOrder:
    def test_prices_come_from_database(self, client, session, user_headers, product):
        payload = order_payload(product.id, quantity=2, shippingCost=100)
        # A client-side price is ignored
        payload["items"][0]["price"] = 1
        payload["totalAmount"] = 1
        response = client.post("/api/orders/", json=payload, headers=user_headers)
        assert response.status_code == 201
        order = response.json()["data"]["order"]
        assert order["items"][0]["price"] == 2500.0
        assert order["totalAmount"] == 5100.0
        assert order["status"] == "PROCESSING"
        assert order["paymentStatus"] == "PENDING"

    def test_sale_price_and_discount(self, client, user_headers, sale_product):
        payload = order_payload(sale_product.id, quantity=1, discountAmount=500)
        order = client.post("/api/orders/", json=payload, headers=user_headers).json()["data"]["order"]
        assert order["items"][0]["price"] == 3000.0
        assert order["totalAmount"] == 2500.0

    def test_stock_is_decremented(self, client, session, user_headers, product):
        client.post("/api/orders/", json=order_payload(product.id, quantity=3), headers=user_headers)
        session.refresh(product)
        assert product.stock == 7

    def test_selling_out_marks_product_out_of_stock(self, client, session, user_headers, product):
        client.post("/api/orders/", json=order_payload(product.id, quantity=10), headers=user_headers)
        session.refresh(product)
        assert product.stock == 0
        assert product.status == ProductStatus.OUT_OF_STOCK

    def test_insufficient_stock(self, client, session, user_headers, product):
        response = client.post("/api/orders/", json=order_payload(product.id, quantity=11), headers=user_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Insufficient stock for Nepal Home Jersey. Available: 10"
        assert session.exec(select(Order)).all() == []

    def test_unknown_product(self, client, user_headers):
        response = client.post("/api/orders/", json=order_payload(12345), headers=user_headers)
        assert response.status_code == 404

    def test_empty_items_fail_validation(self, client, user_headers, product):
        payload = order_payload(product.id)
        payload["items"] = []
        assert client.post("/api/orders/", json=payload, headers=user_headers).status_code == 400

    def test_phone_is_remembered(self, client, session, user, user_headers, product):
        client.post("/api/orders/", json=order_payload(product.id), headers=user_headers)
        session.refresh(user)
        assert user.phone == "9812345678"

    def test_new_order_is_announced_to_admins(self, client, user_headers, product):
        with patch("jerseynexus.routers.orders.manager.new_order", new_callable=AsyncMock) as new_order:
            client.post("/api/orders/", json=order_payload(product.id), headers=user_headers)
        new_order.assert_called_once()
        assert new_order.call_args.args[0]["status"] == "PROCESSING"


class TestReadOrders:
    def test_customers_see_only_their_orders(self, client, placed_order, other_user):
        response = client.get("/api/orders/", headers=auth_headers(other_user))
        assert response.json()["data"]["orders"] == []
        assert response.json()["data"]["pagination"]["totalItems"] == 0

    def test_admin_sees_all_orders(self, client, placed_order, admin_headers):
        data = client.get("/api/orders/", headers=admin_headers).json()["data"]
        assert [order["id"] for order in data["orders"]] == [placed_order["id"]]
        assert data["pagination"] == {"page": 1, "limit": 10, "totalItems": 1, "totalPages": 1}

    def test_admin_filters(self, client, placed_order, admin_headers):
        response = client.get("/api/orders/?status=SHIPPED", headers=admin_headers)
        assert response.json()["data"]["orders"] == []

    def test_order_detail_for_owner(self, client, placed_order, user_headers):
        response = client.get(f"/api/orders/{placed_order['id']}", headers=user_headers)
        assert response.status_code == 200
        order = response.json()["data"]["order"]
        assert order["items"][0]["product"]["name"] == "Nepal Home Jersey"
        assert order["items"][0]["product"]["image"] == "https://cdn.example.com/nepal.jpg"
        assert order["payments"] == []

    def test_order_detail_forbidden_for_others(self, client, placed_order, other_user):
        response = client.get(f"/api/orders/{placed_order['id']}", headers=auth_headers(other_user))
        assert response.status_code == 403

    def test_removed_product_placeholder(self, client, placed_order, product, user_headers, admin_headers):
        assert client.delete(f"/api/products/{product.id}", headers=admin_headers).status_code == 200
        order = client.get(f"/api/orders/{placed_order['id']}", headers=user_headers).json()["data"]["order"]
        assert order["items"][0]["product"]["name"] == "Product no longer available"
        assert order["items"][0]["price"] == 2500.0

    def test_stats(self, client, placed_order, admin_headers):
        stats = client.get("/api/orders/stats", headers=admin_headers).json()["data"]
        assert stats["totalOrders"] == 1
        assert stats["statusCounts"]["PROCESSING"] == 1
        assert stats["totalRevenue"] == 0
        assert stats["pendingPayments"] == 1


class TestUpdateOrder:
    def test_admin_ships_with_tracking_number(self, client, placed_order, admin_headers):
        response = client.put(f"/api/orders/{placed_order['id']}", json={
            "status": "SHIPPED",
            "trackingNumber": "NP-123",
        }, headers=admin_headers)
        assert response.status_code == 200
        order = response.json()["data"]["order"]
        assert order["status"] == "SHIPPED"
        assert order["trackingNumber"] == "NP-123"

    def test_customers_cannot_update(self, client, placed_order, user_headers):
        response = client.put(f"/api/orders/{placed_order['id']}", json={"status": "DELIVERED"}, headers=user_headers)
        assert response.status_code == 403

    def test_cancelling_restores_stock_once(self, client, session, placed_order, product, admin_headers):
        url = f"/api/orders/{placed_order['id']}"
        client.put(url, json={"status": "CANCELLED"}, headers=admin_headers)
        client.put(url, json={"status": "CANCELLED"}, headers=admin_headers)
        session.refresh(product)
        assert product.stock == 10

    def test_cancelled_orders_cannot_be_reopened(self, client, placed_order, admin_headers):
        url = f"/api/orders/{placed_order['id']}"
        client.put(url, json={"status": "CANCELLED"}, headers=admin_headers)
        response = client.put(url, json={"status": "PROCESSING"}, headers=admin_headers)
        assert response.status_code == 400

    def test_paid_confirms_processing_order(self, client, placed_order, admin_headers):
        response = client.put(f"/api/orders/{placed_order['id']}", json={"paymentStatus": "PAID"}, headers=admin_headers)
        order = response.json()["data"]["order"]
        assert order["paymentStatus"] == "PAID"
        assert order["status"] == "CONFIRMED"

    def test_update_emits_order_event(self, client, placed_order, admin_headers):
        with patch("jerseynexus.routers.orders.manager.order_updated", new_callable=AsyncMock) as order_updated:
            client.put(f"/api/orders/{placed_order['id']}", json={"status": "SHIPPED"}, headers=admin_headers)
        payload = order_updated.call_args.args[0]
        assert payload["orderId"] == placed_order["id"]
        assert payload["status"] == "SHIPPED"


class TestDeleteOrder:
    def test_owner_deletes_pending_order(self, client, session, placed_order, product, user_headers):
        response = client.delete(f"/api/orders/{placed_order['id']}", headers=user_headers)
        assert response.status_code == 200
        assert session.get(Order, placed_order["id"]) is None
        session.refresh(product)
        assert product.stock == 10

    def test_paid_orders_cannot_be_deleted(self, client, placed_order, user_headers, admin_headers):
        client.put(f"/api/orders/{placed_order['id']}", json={"paymentStatus": "PAID"}, headers=admin_headers)
        response = client.delete(f"/api/orders/{placed_order['id']}", headers=user_headers)
        assert response.status_code == 400

    def test_only_owner_can_delete(self, client, placed_order, admin_headers):
        response = client.delete(f"/api/orders/{placed_order['id']}", headers=admin_headers)
        assert response.status_code == 403

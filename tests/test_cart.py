from sqlmodel import select

from conftest import auth_headers, shipping_address
from jerseynexus.models import CartItem, Order, ProductStatus


def add(client, headers, product_id, quantity=1, **fields):
    return client.post("/api/cart/", json={"productId": product_id, "quantity": quantity, **fields}, headers=headers)


class TestCart:
    def test_empty_cart(self, client, user_headers):
        response = client.get("/api/cart/", headers=user_headers)
        assert response.status_code == 200
        assert response.json()["data"] == {"items": [], "totalItems": 0, "totalAmount": 0}

    def test_adding_increases_total_items_by_quantity(self, client, user_headers, product):
        before = client.get("/api/cart/", headers=user_headers).json()["data"]["totalItems"]
        response = add(client, user_headers, product.id, quantity=3, size="M")
        assert response.status_code == 200
        cart = response.json()["data"]
        assert cart["totalItems"] == before + 3
        assert cart["totalAmount"] == 7500.0
        assert cart["items"][0]["key"] == f"{product.id}-M-default"

    def test_same_variant_merges_into_one_line(self, client, user_headers, product):
        add(client, user_headers, product.id, quantity=1, size="M")
        cart = add(client, user_headers, product.id, quantity=2, size="M").json()["data"]
        assert len(cart["items"]) == 1
        assert cart["items"][0]["quantity"] == 3

    def test_different_size_is_a_separate_line(self, client, user_headers, product):
        add(client, user_headers, product.id, size="M")
        cart = add(client, user_headers, product.id, size="L").json()["data"]
        assert len(cart["items"]) == 2
        assert cart["totalItems"] == 2

    def test_sale_price_is_used(self, client, user_headers, sale_product):
        cart = add(client, user_headers, sale_product.id, quantity=2).json()["data"]
        assert cart["items"][0]["price"] == 3000.0
        assert cart["items"][0]["originalPrice"] == 3500.0
        assert cart["totalAmount"] == 6000.0

    def test_adding_beyond_stock_is_rejected(self, client, user_headers, product):
        response = add(client, user_headers, product.id, quantity=11)
        assert response.status_code == 400
        assert response.json()["error"] == "Insufficient stock for Nepal Home Jersey. Available: 10"

    def test_unknown_product(self, client, user_headers):
        assert add(client, user_headers, 999).status_code == 404

    def test_update_within_stock(self, client, user_headers, product):
        item_id = add(client, user_headers, product.id).json()["data"]["items"][0]["id"]
        cart = client.put(f"/api/cart/{item_id}", json={"quantity": 4}, headers=user_headers).json()["data"]
        assert cart["totalItems"] == 4

    def test_update_out_of_range_leaves_cart_unchanged(self, client, user_headers, product):
        item_id = add(client, user_headers, product.id, quantity=2).json()["data"]["items"][0]["id"]
        for quantity in (0, -1, 11):
            cart = client.put(f"/api/cart/{item_id}", json={"quantity": quantity}, headers=user_headers).json()["data"]
            assert cart["totalItems"] == 2

    def test_cannot_touch_another_users_cart(self, client, user_headers, product, other_user):
        item_id = add(client, user_headers, product.id).json()["data"]["items"][0]["id"]
        response = client.delete(f"/api/cart/{item_id}", headers=auth_headers(other_user))
        assert response.status_code == 404

    def test_remove_and_clear(self, client, user_headers, product, sale_product):
        item_id = add(client, user_headers, product.id).json()["data"]["items"][0]["id"]
        add(client, user_headers, sale_product.id)
        cart = client.delete(f"/api/cart/{item_id}", headers=user_headers).json()["data"]
        assert len(cart["items"]) == 1
        cart = client.delete("/api/cart/", headers=user_headers).json()["data"]
        assert cart["items"] == []

    def test_inactive_products_are_hidden(self, client, session, user_headers, product):
        add(client, user_headers, product.id)
        product.status = ProductStatus.INACTIVE
        session.add(product)
        session.commit()
        cart = client.get("/api/cart/", headers=user_headers).json()["data"]
        assert cart["totalItems"] == 0


class TestCheckout:
    def test_checkout_creates_order_and_clears_cart(self, client, session, user, user_headers, product):
        add(client, user_headers, product.id, quantity=2, size="M")
        response = client.post("/api/cart/checkout", json={
            "shippingAddress": shipping_address(),
            "shippingCost": 150,
        }, headers=user_headers)
        assert response.status_code == 201
        order = response.json()["data"]["order"]
        assert order["totalAmount"] == 5150.0
        assert order["status"] == "PROCESSING"
        assert order["paymentStatus"] == "PENDING"
        assert order["items"][0]["size"] == "M"

        assert session.exec(select(CartItem).where(CartItem.user_id == user.id)).all() == []
        session.refresh(product)
        assert product.stock == 8

    def test_checkout_with_empty_cart(self, client, session, user_headers):
        response = client.post("/api/cart/checkout", json={"shippingAddress": shipping_address()},
                               headers=user_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Cart is empty"
        assert session.exec(select(Order)).all() == []

    def test_checkout_skips_hidden_lines(self, client, session, user, user_headers, product, sale_product):
        add(client, user_headers, product.id, quantity=1)
        add(client, user_headers, sale_product.id, quantity=1)
        sale_product.status = ProductStatus.INACTIVE
        session.add(sale_product)
        session.commit()

        response = client.post("/api/cart/checkout", json={"shippingAddress": shipping_address()},
                               headers=user_headers)
        assert response.status_code == 201
        order = response.json()["data"]["order"]
        assert [item["productId"] for item in order["items"]] == [product.id]
        assert order["totalAmount"] == 2500.0
        assert session.exec(select(CartItem).where(CartItem.user_id == user.id)).all() == []

    def test_checkout_with_only_hidden_lines(self, client, session, user_headers, product):
        add(client, user_headers, product.id)
        product.status = ProductStatus.INACTIVE
        session.add(product)
        session.commit()
        response = client.post("/api/cart/checkout", json={"shippingAddress": shipping_address()},
                               headers=user_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Cart is empty"

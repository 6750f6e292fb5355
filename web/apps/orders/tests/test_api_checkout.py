"""API tests for the checkout endpoint.

These tests exercise ``POST /api/orders/`` for the main scenarios: successful
creation, stock conflicts, validation errors and infrastructure failures.
The catalog is the in-memory store wired through ``providers``; carts,
coupons and orders live in the test database.
"""
from decimal import Decimal

import pytest

from apps.orders.models import CartItemModel, CouponModel, OrderModel

from order_factories import SHIPPING, coupon_window, make_product

CREATE_URL = "/api/orders/"
USER = {"HTTP_X_USER_ID": "u1"}


def checkout(client, payload=None, **headers):
    body = payload if payload is not None else {"shipping_info": SHIPPING, "shipping_fee": 30}
    return client.post(CREATE_URL, data=body, content_type="application/json", **{**USER, **headers})


@pytest.mark.django_db
def test_checkout_creates_order_and_clears_cart(client, catalog):
    catalog.put(make_product("p1", price="900", old_price="1000", stock=5, variants=[("Black", 5)]))
    CartItemModel.objects.create(user_id="u1", product_id="p1", quantity=2, selected_variant="Black")

    r = checkout(client)

    assert r.status_code == 201
    body = r.json()
    assert body["code"].startswith("MS")
    assert body["status"] == "pending"
    assert body["payment_status"] == "unpaid"
    assert Decimal(body["sub_total"]) == 2000
    assert Decimal(body["total"]) == 1800
    assert Decimal(body["savings"]) == 200
    assert Decimal(body["grand_total"]) == 1830
    assert body["items"][0]["selected_variant"] == "Black"
    assert body["status_history"][0]["note"] == "Order placed successfully"
    assert r.headers["X-Request-ID"]

    assert OrderModel.objects.filter(id=body["id"]).exists()
    assert not CartItemModel.objects.filter(user_id="u1").exists()
    assert catalog.get("p1").stock == 3
    assert catalog.get("p1").variants[0].stock == 3


@pytest.mark.django_db
def test_checkout_requires_identity(client):
    r = client.post(CREATE_URL, data={"shipping_info": SHIPPING}, content_type="application/json")
    assert r.status_code == 401
    assert r.json()["detail"] == "UNAUTHENTICATED"


@pytest.mark.django_db
def test_checkout_rejects_incomplete_shipping(client, catalog):
    r = checkout(client, {"shipping_info": {"full_name": "A", "phone": " "}})
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_SHIPPING_INFO"
    assert "phone" in r.json()["message"]


@pytest.mark.django_db
def test_checkout_with_empty_cart(client, catalog):
    r = checkout(client)
    assert r.status_code == 400
    assert r.json()["detail"] == "EMPTY_CART"


@pytest.mark.django_db
def test_checkout_validation_error(client, catalog):
    r = checkout(client, {"shipping_info": SHIPPING, "shipping_fee": -5})
    assert r.status_code == 400
    assert r.json()["detail"] == "VALIDATION_ERROR"


@pytest.mark.django_db
def test_checkout_insufficient_stock_creates_nothing(client, catalog):
    catalog.put(make_product("p1", name="Sneaker", stock=10, variants=[("Red", 1)]))
    CartItemModel.objects.create(user_id="u1", product_id="p1", quantity=2, selected_variant="Red")

    r = checkout(client)

    assert r.status_code == 422
    body = r.json()
    assert body["detail"] == "INSUFFICIENT_STOCK"
    assert "Sneaker" in body["message"] and "Red" in body["message"]
    assert OrderModel.objects.count() == 0
    assert CartItemModel.objects.filter(user_id="u1").count() == 1


@pytest.mark.django_db
def test_checkout_ignores_expired_coupon_and_applies_valid_one(client, catalog):
    start, end = coupon_window()
    CouponModel.objects.create(code="old", type="fixed", value=100, valid_from=start, valid_to=start)
    coupon = CouponModel.objects.create(code="save10", type="percent", value=10, valid_from=start, valid_to=end)
    catalog.put(make_product("p1", price="1000", old_price=None, stock=5))

    CartItemModel.objects.create(user_id="u1", product_id="p1", quantity=1)
    r1 = checkout(client, {"shipping_info": SHIPPING, "coupon_code": "OLD"})
    assert r1.status_code == 201
    assert Decimal(r1.json()["discount"]) == 0
    assert r1.json()["applied_coupon_id"] is None

    CartItemModel.objects.create(user_id="u1", product_id="p1", quantity=1)
    r2 = checkout(client, {"shipping_info": SHIPPING, "coupon_code": "save10"})
    assert r2.status_code == 201
    assert Decimal(r2.json()["discount"]) == 100
    assert r2.json()["applied_coupon_id"] == str(coupon.id)
    coupon.refresh_from_db()
    assert coupon.used_count == 1


@pytest.mark.django_db
def test_checkout_code_exhaustion_is_503(client, catalog, monkeypatch):
    monkeypatch.setattr("apps.orders.providers.next_order_code", lambda: "MS000001", raising=True)
    catalog.put(make_product("p1", stock=5))

    CartItemModel.objects.create(user_id="u1", product_id="p1", quantity=1)
    assert checkout(client).status_code == 201

    CartItemModel.objects.create(user_id="u1", product_id="p1", quantity=1)
    r = checkout(client)

    assert r.status_code == 503
    assert r.json()["detail"] == "ORDER_CODE_GENERATION_FAILED"
    assert OrderModel.objects.count() == 1


@pytest.mark.django_db
def test_checkout_upstream_failure_is_generic_503(client, catalog, monkeypatch):
    def boom(product_id):
        raise RuntimeError("catalog exploded")

    monkeypatch.setattr(catalog, "get", boom)
    CartItemModel.objects.create(user_id="u1", product_id="p1", quantity=1)

    r = checkout(client)

    assert r.status_code == 503
    assert r.json() == {
        "detail": "UPSTREAM_UNAVAILABLE",
        "message": "Service temporarily unavailable, please try again later.",
    }


@pytest.mark.django_db
def test_atomic_mode_through_the_api(client, catalog, settings):
    settings.STOCK_RESERVATION_MODE = "atomic"
    catalog.put(make_product("p1", stock=3, variants=[("Red", 3)]))
    CartItemModel.objects.create(user_id="u1", product_id="p1", quantity=3, selected_variant="Red")

    assert checkout(client).status_code == 201
    assert catalog.get("p1").stock == 0
    assert catalog.get("p1").in_stock is False

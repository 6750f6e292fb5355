"""API tests for coupon previews, MoMo pay URLs and MoMo IPN delivery."""
from decimal import Decimal

import pytest

from apps.orders.http_adapters import HttpMomoClient
from apps.orders.models import CartItemModel, CouponModel, OrderModel
from apps.orders.payments import IPN_SIGNED_FIELDS, decode_payload, encode_payload, raw_signature, sign

from order_factories import SHIPPING, coupon_window, make_product

IPN_URL = "/api/payments/momo/ipn/"
CREATE_URL = "/api/payments/momo/"
USER = {"HTTP_X_USER_ID": "u1"}


def signed_ipn(**overrides):
    body = {
        "partnerCode": "MOMOTEST",
        "orderId": "MOMOTEST1700000000000",
        "requestId": "MOMOTEST1700000000000",
        "amount": 1830,
        "orderInfo": "Storefront order payment",
        "orderType": "momo_wallet",
        "transId": 4088878653,
        "resultCode": 0,
        "message": "Successful.",
        "payType": "qr",
        "responseTime": 1700000001000,
        "extraData": encode_payload({"user_id": "u1", "shipping_info": SHIPPING, "shipping_fee": "30"}),
    }
    body.update(overrides)
    body["signature"] = sign(raw_signature(dict(body, accessKey="test-access"), IPN_SIGNED_FIELDS), "test-secret")
    return body


@pytest.fixture
def cart(catalog):
    catalog.put(make_product("p1", price="900", old_price="1000", stock=5))
    CartItemModel.objects.create(user_id="u1", product_id="p1", quantity=2)
    return catalog


@pytest.fixture
def momo_transport(monkeypatch):
    sent = []

    def fake_create(self, payload):
        sent.append(payload)
        return {"resultCode": 0, "payUrl": "https://momo.test/pay/abc"}

    monkeypatch.setattr(HttpMomoClient, "create", fake_create, raising=True)
    return sent


# ---- coupons ----
@pytest.mark.django_db
def test_coupon_validate_preview(client):
    start, end = coupon_window()
    CouponModel.objects.create(
        code="save10", type="percent", value=10, valid_from=start, valid_to=end, min_order_value=500
    )

    ok = client.post("/api/coupons/validate/", data={"code": " Save10 ", "order_total": "1999"}, content_type="application/json")
    assert ok.json() == {"valid": True, "outcome": "ok", "discount": "200", "code": "SAVE10"}

    low = client.post("/api/coupons/validate/", data={"code": "SAVE10", "order_total": "100"}, content_type="application/json")
    assert low.json()["valid"] is False
    assert low.json()["outcome"] == "below_minimum"

    missing = client.post("/api/coupons/validate/", data={"code": "NOPE", "order_total": "100"}, content_type="application/json")
    assert missing.json()["outcome"] == "not_found"

    bad = client.post("/api/coupons/validate/", data={"code": "", "order_total": "-1"}, content_type="application/json")
    assert bad.status_code == 400


# ---- create payment ----
@pytest.mark.django_db
def test_momo_pay_url_for_cart(client, cart, momo_transport):
    r = client.post(
        CREATE_URL,
        data={"shipping_info": SHIPPING, "shipping_fee": 30},
        content_type="application/json",
        **USER,
    )

    assert r.status_code == 200
    assert r.json() == {"pay_url": "https://momo.test/pay/abc"}
    [payload] = momo_transport
    assert payload["amount"] == 1830
    assert payload["partnerCode"] == "MOMOTEST"
    assert decode_payload(payload["extraData"])["user_id"] == "u1"
    # quoting writes nothing
    assert OrderModel.objects.count() == 0
    assert CartItemModel.objects.filter(user_id="u1").count() == 1
    assert cart.get("p1").stock == 5


@pytest.mark.django_db
def test_momo_pay_url_for_existing_order(client, cart, momo_transport):
    placed = client.post(
        "/api/orders/",
        data={"shipping_info": SHIPPING, "payment_method": "momo"},
        content_type="application/json",
        **USER,
    ).json()

    r = client.post(CREATE_URL, data={"order_code": placed["code"]}, content_type="application/json", **USER)

    assert r.status_code == 200
    assert momo_transport[0]["orderId"] == placed["code"]
    assert momo_transport[0]["amount"] == int(Decimal(placed["grand_total"]))

    other = client.post(
        CREATE_URL, data={"order_code": placed["code"]}, content_type="application/json", HTTP_X_USER_ID="u2"
    )
    assert other.status_code == 403


@pytest.mark.django_db
def test_momo_pay_url_needs_shipping_or_order(client, cart, momo_transport):
    r = client.post(CREATE_URL, data={}, content_type="application/json", **USER)
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_SHIPPING_INFO"
    assert momo_transport == []


@pytest.mark.django_db
def test_momo_refusal_is_503(client, cart, monkeypatch):
    monkeypatch.setattr(HttpMomoClient, "create", lambda self, payload: {"resultCode": 99, "message": "nope"})

    r = client.post(CREATE_URL, data={"shipping_info": SHIPPING}, content_type="application/json", **USER)

    assert r.status_code == 503
    assert r.json()["detail"] == "PAYMENT_GATEWAY_ERROR"


# ---- IPN ----
@pytest.mark.django_db
def test_ipn_creates_paid_order_once(client, cart):
    r1 = client.post(IPN_URL, data=signed_ipn(), content_type="application/json")
    assert r1.status_code == 200
    assert r1.json() == {"resultCode": 0, "message": "Success"}

    order = OrderModel.objects.get()
    assert order.payment_status == "paid"
    assert order.payment_method == "momo"
    assert order.payment_ref == "4088878653"
    assert order.grand_total == Decimal("1830")
    assert not CartItemModel.objects.filter(user_id="u1").exists()

    r2 = client.post(IPN_URL, data=signed_ipn(), content_type="application/json")
    assert r2.status_code == 200
    assert OrderModel.objects.count() == 1


@pytest.mark.django_db
def test_ipn_bad_signature_or_body_is_400(client, cart):
    tampered = signed_ipn()
    tampered["amount"] = 1

    r = client.post(IPN_URL, data=tampered, content_type="application/json")
    assert r.status_code == 400
    assert r.json()["resultCode"] == -1

    assert client.post(IPN_URL, data={"orderId": "x"}, content_type="application/json").status_code == 400
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_ipn_failed_payment_is_acknowledged_without_order(client, cart):
    r = client.post(IPN_URL, data=signed_ipn(resultCode=1006, message="Declined"), content_type="application/json")
    assert r.status_code == 200
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_ipn_settles_order_placed_earlier(client, cart):
    placed = client.post(
        "/api/orders/",
        data={"shipping_info": SHIPPING, "payment_method": "momo", "shipping_fee": 30},
        content_type="application/json",
        **USER,
    ).json()

    r = client.post(IPN_URL, data=signed_ipn(orderId=placed["code"]), content_type="application/json")

    assert r.status_code == 200
    order = OrderModel.objects.get(id=placed["id"])
    assert order.payment_status == "paid"
    assert order.payment_ref == "4088878653"
    assert order.history.last().note.startswith("MoMo payment received")
    assert OrderModel.objects.count() == 1


@pytest.mark.django_db
def test_ipn_internal_failure_still_gets_the_fixed_ack(client, monkeypatch, caplog):
    def broken():
        raise RuntimeError("db down")

    monkeypatch.setattr("apps.orders.providers.get_ipn_handler", broken)

    r = client.post(IPN_URL, data=signed_ipn(), content_type="application/json")

    assert r.status_code == 200
    assert r.json() == {"resultCode": 0, "message": "Success"}
    assert "momo ipn handling failed" in caplog.text
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_ipn_for_a_cart_changed_after_payment_is_acknowledged_without_order(client, cart):
    CartItemModel.objects.create(user_id="u1", product_id="p1", quantity=1)

    r = client.post(IPN_URL, data=signed_ipn(amount=1830), content_type="application/json")

    assert r.status_code == 200
    assert r.json()["resultCode"] == 0
    assert OrderModel.objects.count() == 0
    assert CartItemModel.objects.filter(user_id="u1").count() == 2

"""Unit tests for the HTTP adapters to the catalog service and MoMo.

These tests verify that the HTTP clients map downstream statuses to port
results correctly by monkeypatching ``httpx.Client.request`` and asserting
the adapter behavior.
"""
from decimal import Decimal

import httpx
import pytest

from apps.orders import http_adapters
from apps.orders.domain import FieldNotFound, PaymentGatewayError
from apps.orders.http_adapters import HttpCatalogClient, HttpMomoClient


class DummyResp:
    """Minimal httpx-like response stub for adapter tests."""

    def __init__(self, status_code=200, json_data=None):
        self.status_code = status_code
        self._json = json_data or {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise httpx.HTTPStatusError("err", request=None, response=None)

    def json(self):
        return self._json


@pytest.fixture(autouse=True)
def closed_circuits():
    http_adapters._catalog_cb.on_success()
    http_adapters._momo_cb.on_success()


def respond(monkeypatch, resp, calls=None):
    def fake_request(self, method, url, headers=None, **kw):
        if calls is not None:
            calls.append((method, url, kw.get("json"), headers))
        return resp

    monkeypatch.setattr(httpx.Client, "request", fake_request, raising=True)


PRODUCT = {
    "id": "p1",
    "name": "Sneaker",
    "price": "900.00",
    "old_price": "1000.00",
    "image": "https://img/p1.jpg",
    "in_stock": True,
    "stock": 7,
    "is_active": True,
    "color_stocks": [{"name": "Red", "stock": 3}, {"name": "Blue", "stock": 4}],
}


def test_get_product_maps_json(monkeypatch):
    calls = []
    respond(monkeypatch, DummyResp(200, PRODUCT), calls)

    p = HttpCatalogClient(base_url="http://catalog:9001/").get("p1")

    assert calls[0][:2] == ("GET", "http://catalog:9001/products/p1")
    assert p.price == Decimal("900.00")
    assert p.pre_sale_price == Decimal("1000.00")
    assert [(v.name, v.stock) for v in p.variants] == [("Red", 3), ("Blue", 4)]


def test_get_missing_product_is_none(monkeypatch):
    respond(monkeypatch, DummyResp(404, {"detail": "NOT_FOUND"}))
    assert HttpCatalogClient(base_url="http://x").get("nope") is None


def test_increment_field_returns_new_value(monkeypatch):
    calls = []
    respond(monkeypatch, DummyResp(200, {"value": 5}), calls)

    assert HttpCatalogClient(base_url="http://x").increment_field("p1", "color_stocks.1.stock", -2) == 5
    assert calls[0][2] == {"field": "color_stocks.1.stock", "delta": -2}


def test_increment_unknown_path_raises_field_not_found(monkeypatch):
    respond(monkeypatch, DummyResp(404, {"detail": "FIELD_NOT_FOUND"}))
    with pytest.raises(FieldNotFound):
        HttpCatalogClient(base_url="http://x").increment_field("p1", "color_stocks.9.stock", 1)


def test_reserve_ok_and_insufficient(monkeypatch):
    respond(monkeypatch, DummyResp(200, {"reserved": True}))
    assert HttpCatalogClient(base_url="http://x").decrement_if_available("p1", "Red", 1) is True

    respond(monkeypatch, DummyResp(422, {"detail": "INSUFFICIENT_STOCK"}))
    assert HttpCatalogClient(base_url="http://x").decrement_if_available("p1", "Red", 99) is False


def test_request_id_is_propagated(monkeypatch):
    from gateway.middleware import REQUEST_ID_CTX

    calls = []
    respond(monkeypatch, DummyResp(200, PRODUCT), calls)
    token = REQUEST_ID_CTX.set("rid-123")
    try:
        HttpCatalogClient(base_url="http://x").get("p1")
    finally:
        REQUEST_ID_CTX.reset(token)

    assert calls[0][3]["X-Request-ID"] == "rid-123"


def test_momo_create_returns_gateway_answer(monkeypatch):
    respond(monkeypatch, DummyResp(200, {"resultCode": 0, "payUrl": "https://pay"}))
    assert HttpMomoClient(endpoint="http://momo").create({"a": 1})["payUrl"] == "https://pay"


def test_momo_client_error_raises(monkeypatch):
    respond(monkeypatch, DummyResp(400, {"resultCode": 20}))
    with pytest.raises(PaymentGatewayError):
        HttpMomoClient(endpoint="http://momo").create({"a": 1})


def test_network_error_propagates(monkeypatch):
    def fake_request(self, method, url, headers=None, **kw):
        raise httpx.ConnectError("boom")

    monkeypatch.setattr(httpx.Client, "request", fake_request, raising=True)
    monkeypatch.setattr("time.sleep", lambda *a, **k: None, raising=True)

    with pytest.raises(httpx.ConnectError):
        HttpCatalogClient(base_url="http://x").get("p1")

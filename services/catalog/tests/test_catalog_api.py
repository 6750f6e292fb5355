def test_health(api):
    assert api.get("/health").json()["ok"] is True


def test_put_and_get_product(api, sneaker):
    assert sneaker["price"] == "900.00"

    r = api.get("/products/p1")

    assert r.status_code == 200
    assert r.json()["color_stocks"] == [{"name": "Red", "stock": 3}, {"name": "Blue", "stock": 4}]
    assert r.headers["X-Request-ID"]
    assert api.get("/products/missing").status_code == 404


def test_request_id_is_echoed(api, sneaker):
    r = api.get("/products/p1", headers={"X-Request-ID": "rid-7"})
    assert r.headers["X-Request-ID"] == "rid-7"


def test_patch_scalar_fields(api, sneaker):
    r = api.patch("/products/p1", json={"in_stock": False})

    assert r.status_code == 200
    assert r.json()["in_stock"] is False
    assert r.json()["stock"] == 7

    assert api.patch("/products/p1", json={"stock": 100}).status_code == 422
    assert api.patch("/products/ghost", json={"in_stock": True}).status_code == 404


def test_increment_counters(api, sneaker):
    r = api.post("/products/p1/increment", json={"field": "color_stocks.1.stock", "delta": 2})
    assert r.json() == {"value": 6}

    r = api.post("/products/p1/increment", json={"field": "stock", "delta": -3})
    assert r.json() == {"value": 4}


def test_increment_unknown_path_or_product(api, sneaker):
    assert api.post("/products/p1/increment", json={"field": "color_stocks.5.stock", "delta": 1}).status_code == 404
    assert api.post("/products/p1/increment", json={"field": "price", "delta": 1}).status_code == 404
    assert api.post("/products/ghost/increment", json={"field": "stock", "delta": 1}).status_code == 404


def test_reserve_takes_variant_and_aggregate(api, sneaker):
    r = api.post("/products/p1/reserve", json={"variant": "Red", "quantity": 2})

    assert r.status_code == 200
    assert r.json()["reserved"] is True
    p = api.get("/products/p1").json()
    assert p["stock"] == 5
    assert p["color_stocks"][0] == {"name": "Red", "stock": 1}


def test_reserve_insufficient_changes_nothing(api, sneaker):
    r = api.post("/products/p1/reserve", json={"variant": "Red", "quantity": 4})

    assert r.status_code == 422
    assert r.json()["detail"]["detail"] == "INSUFFICIENT_STOCK"
    p = api.get("/products/p1").json()
    assert p["stock"] == 7
    assert p["color_stocks"][0]["stock"] == 3


def test_reserve_unknown_variant_or_product(api, sneaker):
    assert api.post("/products/p1/reserve", json={"variant": "Green", "quantity": 1}).status_code == 422
    assert api.post("/products/ghost/reserve", json={"variant": "", "quantity": 1}).status_code == 404
    assert api.post("/products/p1/reserve", json={"variant": "Red", "quantity": 0}).status_code == 422


def test_reserve_inactive_product(api, sneaker):
    api.patch("/products/p1", json={"is_active": False})
    assert api.post("/products/p1/reserve", json={"variant": "Red", "quantity": 1}).status_code == 422


def test_reservations_stop_at_zero(api):
    api.put("/products/p2", json={"name": "Cap", "price": "10", "stock": 3})

    codes = [api.post("/products/p2/reserve", json={"quantity": 1}).status_code for _ in range(5)]

    assert codes == [200, 200, 200, 422, 422]
    assert api.get("/products/p2").json()["stock"] == 0

"""Unit tests for the order writer: code collisions, side effects, reservation modes."""

import threading
from decimal import Decimal

import pytest

from apps.orders.adapters import sequential_codes
from apps.orders.domain import InsufficientStock, OrderCodeGenerationFailed, OrderStatus, PaymentStatus
from apps.orders.writer import ATOMIC

from order_factories import World, make_coupon, make_product, shipping


def codes(*values):
    it = iter(values)
    return lambda: next(it)


def test_order_is_pending_with_seeded_history():
    w = World()
    w.catalog.put(make_product("p1", stock=5))
    w.add_to_cart("u1", "p1", 2)

    order = w.place("u1")

    assert order.id is not None
    assert order.code == "MS000001"
    assert order.status is OrderStatus.PENDING
    assert order.payment_status is PaymentStatus.UNPAID
    assert [(h.status, h.note) for h in order.status_history] == [(OrderStatus.PENDING, "Order placed successfully")]
    assert w.catalog.get("p1").stock == 3
    assert w.carts.get("u1") == []


def test_code_collision_is_retried_with_backoff():
    w = World(next_code=codes("MS000001", "MS000001", "MS000002"))
    w.catalog.put(make_product("p1", stock=5))
    w.add_to_cart("u1", "p1", 1)
    w.place("u1")
    w.add_to_cart("u1", "p1", 1)

    order = w.place("u1")

    assert order.code == "MS000002"
    assert w.sleeps == [0.2]


def test_code_generation_gives_up_after_max_attempts():
    w = World(next_code=lambda: "MS000001")
    w.catalog.put(make_product("p1", stock=5))
    w.add_to_cart("u1", "p1", 1)
    w.place("u1")
    w.add_to_cart("u1", "p1", 1)

    with pytest.raises(OrderCodeGenerationFailed):
        w.place("u1")

    assert len(w.orders.list_orders()) == 1
    assert len(w.sleeps) == 2
    # nothing decremented for the failed attempt
    assert w.catalog.get("p1").stock == 4


def test_concurrent_checkouts_never_share_a_code():
    w = World(next_code=sequential_codes())
    w.catalog.put(make_product("p1", stock=1000))
    users = [f"u{i}" for i in range(20)]
    for u in users:
        w.add_to_cart(u, "p1", 1)

    errors = []

    def run(user):
        try:
            w.place(user)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=run, args=(u,)) for u in users]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    orders = w.orders.list_orders()
    assert errors == []
    assert len(orders) == 20
    assert len({o.code for o in orders}) == 20


def test_decrement_failure_does_not_undo_the_order(monkeypatch, caplog):
    w = World()
    w.catalog.put(make_product("p1", stock=5))
    w.add_to_cart("u1", "p1", 1)

    def boom(*a, **k):
        raise RuntimeError("catalog down")

    monkeypatch.setattr(w.ledger, "decrement", boom)

    order = w.place("u1")

    assert w.orders.get(order.id) is not None
    assert w.carts.get("u1") == []
    assert "stock decrement failed" in caplog.text


def test_coupon_usage_is_committed_and_failures_are_tolerated(monkeypatch):
    w = World()
    w.catalog.put(make_product("p1", price="1000", old_price=None))
    w.coupon_store.put(make_coupon("SAVE50"))
    w.add_to_cart("u1", "p1", 1)

    order = w.place("u1", coupon_code="SAVE50")
    assert order.applied_coupon_id == "c-SAVE50"
    assert order.totals.discount == Decimal("50")
    assert w.coupon_store.get("c-SAVE50").used_count == 1

    def boom(coupon_id):
        raise RuntimeError("db down")

    monkeypatch.setattr(w.coupon_store, "increment_usage", boom)
    w.add_to_cart("u1", "p1", 1)
    assert w.place("u1", coupon_code="SAVE50").applied_coupon_id == "c-SAVE50"


def test_legacy_mode_oversells_under_a_race():
    w = World()
    w.catalog.put(make_product("p1", stock=1, variants=[("Red", 1)]))
    w.add_to_cart("u1", "p1", 1, "Red")
    w.add_to_cart("u2", "p1", 1, "Red")

    # both checkouts validate before either one decrements
    d1 = w.assembler.assemble("u1", shipping())
    d2 = w.assembler.assemble("u2", shipping())
    w.writer.create(d1)
    w.writer.create(d2)

    assert len(w.orders.list_orders()) == 2
    p = w.catalog.get("p1")
    assert p.stock == 0
    assert p.variants[0].stock == 0


def test_atomic_mode_rejects_the_second_order_of_a_race():
    w = World(mode=ATOMIC)
    w.catalog.put(make_product("p1", stock=1, variants=[("Red", 1)]))
    w.add_to_cart("u1", "p1", 1, "Red")
    w.add_to_cart("u2", "p1", 1, "Red")

    d1 = w.assembler.assemble("u1", shipping())
    d2 = w.assembler.assemble("u2", shipping())
    w.writer.create(d1)
    with pytest.raises(InsufficientStock):
        w.writer.create(d2)

    assert len(w.orders.list_orders()) == 1
    assert w.catalog.get("p1").stock == 0
    assert w.carts.get("u2") != []


def test_atomic_mode_releases_taken_lines_when_a_later_line_fails():
    w = World(mode=ATOMIC)
    w.catalog.put(make_product("p1", stock=5))
    w.catalog.put(make_product("p2", stock=5))
    w.add_to_cart("u1", "p1", 2)
    w.add_to_cart("u1", "p2", 2)

    draft = w.assembler.assemble("u1", shipping())
    w.catalog.increment_field("p2", "stock", -4)  # someone else bought p2 meanwhile

    with pytest.raises(InsufficientStock):
        w.writer.create(draft)

    assert w.catalog.get("p1").stock == 5
    assert w.catalog.get("p2").stock == 1
    assert w.orders.list_orders() == []


def test_atomic_mode_releases_reservations_when_insert_fails():
    w = World(mode=ATOMIC, next_code=lambda: "MS000001", max_attempts=1)
    w.catalog.put(make_product("p1", stock=5))
    w.add_to_cart("u1", "p1", 1)
    w.place("u1")
    w.add_to_cart("u1", "p1", 1)

    with pytest.raises(OrderCodeGenerationFailed):
        w.place("u1")

    assert w.catalog.get("p1").stock == 4


def test_legacy_race_logs_the_shortfall_against_the_losing_order(caplog):
    w = World()
    w.catalog.put(make_product("p1", stock=1, variants=[("Red", 1)]))
    w.add_to_cart("u1", "p1", 1, "Red")
    w.add_to_cart("u2", "p1", 1, "Red")

    d1 = w.assembler.assemble("u1", shipping())
    d2 = w.assembler.assemble("u2", shipping())
    w.writer.create(d1)
    second = w.writer.create(d2)

    clamped = [r for r in caplog.records if r.getMessage() == "stock decrement clamped"]
    assert {r.order_id for r in clamped} == {second.id}
    assert {r.shortfall for r in clamped} == {1}

"""Tests for the stock reservation engine against the in-memory store."""

import asyncio
from decimal import Decimal
from uuid import uuid4

import pytest
from helpers import line, run

from order_service.errors import InsufficientStock, ProductNotFound, ValidationFailed
from order_service.models import OrderLine
from order_service.reservation import place_order


def _place(store, lines, buyer_id="user-001"):
    return run(place_order(store.unit_of_work(), buyer_id, lines))


class TestPlaceOrder:
    def test_scenario_two_products(self, store):
        a = store.add_product("A", 100, 5)
        b = store.add_product("B", 50, 10)

        order = _place(store, [line(a, 2), line(b, 3)])

        assert order.total_price == Decimal("350")
        assert order.status == "pending"
        assert order.user_id == "user-001"
        assert store.stock_of(a.id) == 3
        assert store.stock_of(b.id) == 7

    def test_items_keep_request_order_and_capture_price(self, store):
        a = store.add_product("A", "19.99", 5)
        b = store.add_product("B", "5.25", 5)

        order = _place(store, [line(b, 1), line(a, 2)])

        assert [(i.product_id, i.quantity, i.price) for i in order.items] == [
            (b.id, 1, Decimal("5.25")),
            (a.id, 2, Decimal("19.99")),
        ]

    def test_total_reconciles_with_items(self, store):
        a = store.add_product("A", "19.99", 10)
        b = store.add_product("B", "0.10", 10)

        order = _place(store, [line(a, 3), line(b, 7)])

        assert order.total_price == sum(i.price * i.quantity for i in order.items)
        assert order.total_price == Decimal("60.67")

    def test_items_carry_product_summary(self, store):
        a = store.add_product("Laptop", 1000, 5, description="14 inch", category="Electronics")

        order = _place(store, [line(a, 1)])

        summary = order.items[0].product
        assert summary.id == a.id
        assert summary.name == "Laptop"
        assert summary.description == "14 inch"
        assert summary.category == "Electronics"

    def test_order_price_is_frozen_after_catalogue_change(self, store):
        a = store.add_product("A", 100, 5)
        order = _place(store, [line(a, 1)])

        store.products[a.id] = store.products[a.id].model_copy(update={"price": Decimal("999")})

        committed = store.orders[order.id]
        assert committed.total_price == Decimal("100")
        assert committed.items[0].price == Decimal("100")


class TestDuplicateLines:
    def test_duplicate_lines_exceeding_stock_fail(self, store):
        p = store.add_product("P", 10, 1)

        with pytest.raises(InsufficientStock) as exc_info:
            _place(store, [line(p, 1), line(p, 1)])

        assert exc_info.value.available == 1
        assert exc_info.value.requested == 2
        assert store.stock_of(p.id) == 1
        assert store.orders == {}

    def test_duplicate_lines_within_stock_succeed_as_separate_items(self, store):
        p = store.add_product("P", 10, 2)

        order = _place(store, [line(p, 1), line(p, 1)])

        assert len(order.items) == 2
        assert order.total_price == Decimal("20")
        assert store.stock_of(p.id) == 0


class TestMissingProducts:
    def test_missing_product_names_only_missing_ids(self, store):
        a = store.add_product("A", 100, 5)
        missing = str(uuid4())

        with pytest.raises(ProductNotFound) as exc_info:
            _place(store, [line(a, 1), OrderLine(productId=missing, quantity=1)])

        assert exc_info.value.missing_ids == [missing]
        assert missing in exc_info.value.message
        assert a.id not in exc_info.value.message
        assert store.stock_of(a.id) == 5
        assert store.orders == {}

    def test_every_missing_id_is_reported(self, store):
        first, second = str(uuid4()), str(uuid4())

        with pytest.raises(ProductNotFound) as exc_info:
            _place(
                store,
                [
                    OrderLine(productId=first, quantity=1),
                    OrderLine(productId=second, quantity=2),
                    OrderLine(productId=first, quantity=3),
                ],
            )

        assert exc_info.value.missing_ids == [first, second]


class TestInsufficientStock:
    def test_error_names_product_available_and_requested(self, store):
        a = store.add_product("A", 100, 5)
        b = store.add_product("Mouse", 50, 2)

        with pytest.raises(InsufficientStock) as exc_info:
            _place(store, [line(a, 1), line(b, 3)])

        error = exc_info.value
        assert error.product_id == b.id
        assert error.available == 2
        assert error.requested == 3
        assert "Mouse" in error.message
        assert store.stock_of(a.id) == 5
        assert store.stock_of(b.id) == 2

    def test_exact_stock_drains_to_zero(self, store):
        a = store.add_product("A", 1, 3)

        _place(store, [line(a, 3)])

        assert store.stock_of(a.id) == 0


class TestAtomicity:
    def test_failure_after_decrement_restores_stock(self, store, monkeypatch):
        a = store.add_product("A", 100, 5)
        b = store.add_product("B", 50, 5)
        uow = store.unit_of_work()

        async def broken_create(*args, **kwargs):
            raise RuntimeError("ledger offline")

        monkeypatch.setattr(uow.order_items, "create", broken_create)

        with pytest.raises(RuntimeError):
            run(place_order(uow, "user-001", [line(a, 2), line(b, 1)]))

        assert store.stock_of(a.id) == 5
        assert store.stock_of(b.id) == 5
        assert store.orders == {}

    def test_lost_decrement_aborts_whole_order(self, store, monkeypatch):
        a = store.add_product("A", 100, 5)
        b = store.add_product("B", 50, 5)
        uow = store.unit_of_work()
        original = uow.products.conditional_decrement

        async def racing_decrement(product_id, amount):
            if product_id == b.id:
                # a concurrent buyer takes the remaining B stock first
                store.products[b.id] = store.products[b.id].model_copy(update={"stock": 0})
            return await original(product_id, amount)

        monkeypatch.setattr(uow.products, "conditional_decrement", racing_decrement)

        with pytest.raises(InsufficientStock) as exc_info:
            run(place_order(uow, "user-001", [line(a, 1), line(b, 1)]))

        assert exc_info.value.product_id == b.id
        assert exc_info.value.available == 0
        assert store.stock_of(a.id) == 5
        assert store.orders == {}


class TestConcurrency:
    def test_two_buyers_race_for_last_unit(self, store):
        p = store.add_product("Last", 10, 1)

        async def race():
            return await asyncio.gather(
                place_order(store.unit_of_work(), "buyer-x", [line(p, 1)]),
                place_order(store.unit_of_work(), "buyer-y", [line(p, 1)]),
                return_exceptions=True,
            )

        results = run(race())

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], InsufficientStock)
        assert store.stock_of(p.id) == 0
        assert len(store.orders) == 1

    def test_many_buyers_never_oversell(self, store):
        p = store.add_product("Hot", 10, 5)
        q = store.add_product("Side", 1, 100)

        async def stampede():
            return await asyncio.gather(
                *[
                    place_order(store.unit_of_work(), f"buyer-{n}", [line(q, 1), line(p, 1)])
                    for n in range(20)
                ],
                return_exceptions=True,
            )

        results = run(stampede())

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 15
        assert all(isinstance(r, InsufficientStock) for r in failures)
        assert store.stock_of(p.id) == 0
        assert store.stock_of(q.id) == 95
        for order in store.orders.values():
            assert order.total_price == sum(i.price * i.quantity for i in order.items)


class TestDefensiveValidation:
    def test_empty_lines_rejected(self, store):
        with pytest.raises(ValidationFailed):
            _place(store, [])

    def test_unvalidated_lines_rejected(self, store):
        bad = OrderLine.model_construct(productId="not-a-uuid", quantity=0)

        with pytest.raises(ValidationFailed) as exc_info:
            _place(store, [bad])

        assert len(exc_info.value.errors) == 2

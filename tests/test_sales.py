from __future__ import annotations

import pytest

from conftest import batch, tracking
from perfume_pos.db import q
from perfume_pos.errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from perfume_pos.services import sales
from perfume_pos.services.bottles import mark_bottle_done
from perfume_pos.services.custom_inventory import add_stock_entry, available_quantity, create_item, deactivate_item
from perfume_pos.services.sales import DECANT, FULL_BOTTLE, SaleLineInput, create_sale, get_sale, list_sales


def _full(group_id, qty=1, price=150.0):
    return SaleLineInput(stock_group_id=group_id, sale_type=FULL_BOTTLE, quantity=qty, unit_price=price)


def _decant(group_id, container_id, qty=1, price=10.0):
    return SaleLineInput(
        stock_group_id=group_id, sale_type=DECANT, quantity=qty, unit_price=price, decant_bottle_item_id=container_id
    )


def test_full_bottle_sale_decrements_stock(conn, make_batch):
    _, gid = make_batch(quantity=5)
    res = create_sale(conn, payment_method="cash", sale_date="2024-02-01", items=[_full(gid, 2)])
    assert res.total_amount == 300.0
    assert res.amount_paid == 300.0
    assert res.debt_amount == 0.0
    assert batch(conn, gid)["remaining_quantity"] == 3
    assert tracking(conn, gid)["bottles_sold"] == 2
    detail = get_sale(conn, res.sale_id)
    assert detail["items"][0]["perfume_name"] == "Oud Wood"


def test_partial_payment_records_debt(conn, make_batch):
    _, gid = make_batch()
    res = create_sale(conn, payment_method="cash", sale_date="2024-02-01", items=[_full(gid, 1)], amount_paid=50)
    assert res.debt_amount == 100.0
    assert [int(s["id"]) for s in list_sales(conn, with_debt=True)] == [res.sale_id]


def test_overpayment_rejected(conn, make_batch):
    _, gid = make_batch()
    with pytest.raises(ValidationError):
        create_sale(conn, payment_method="cash", sale_date="2024-02-01", items=[_full(gid, 1)], amount_paid=151)
    assert q(conn, "SELECT COUNT(1) AS n FROM sales")[0]["n"] == 0


def test_full_bottle_exceeding_remaining(conn, make_batch):
    _, gid = make_batch(quantity=2)
    with pytest.raises(InsufficientStockError):
        create_sale(conn, payment_method="cash", sale_date="2024-02-01", items=[_full(gid, 1), _full(gid, 2)])
    assert batch(conn, gid)["remaining_quantity"] == 2


def test_full_bottle_blocked_after_decant_activity(conn, make_batch, containers):
    _, gid = make_batch()
    create_sale(conn, payment_method="cash", sale_date="2024-02-01", items=[_decant(gid, containers, 3)])
    with pytest.raises(ConflictError, match="decant activity"):
        create_sale(conn, payment_method="cash", sale_date="2024-02-02", items=[_full(gid, 1)])
    assert batch(conn, gid)["remaining_quantity"] == 5


def test_mixed_modes_on_one_batch_in_one_sale(conn, make_batch, containers):
    _, gid = make_batch()
    with pytest.raises(ConflictError):
        create_sale(
            conn, payment_method="cash", sale_date="2024-02-01", items=[_decant(gid, containers, 1), _full(gid, 1)]
        )


def test_decant_requires_container(conn, make_batch):
    _, gid = make_batch()
    line = SaleLineInput(stock_group_id=gid, sale_type=DECANT, quantity=1, unit_price=10)
    with pytest.raises(ValidationError):
        create_sale(conn, payment_method="cash", sale_date="2024-02-01", items=[line])


def test_decant_container_must_be_decant_bottle_category(conn, make_batch):
    _, gid = make_batch()
    poly = int(q(conn, "SELECT id FROM custom_inventory_items WHERE name='Polythene'")[0]["id"])
    add_stock_entry(conn, item_id=poly, quantity=10, unit_cost=1, purchase_date="2024-01-01")
    with pytest.raises(NotFoundError):
        create_sale(conn, payment_method="cash", sale_date="2024-02-01", items=[_decant(gid, poly, 1)])


def test_unknown_batch(conn):
    with pytest.raises(NotFoundError):
        create_sale(conn, payment_method="cash", sale_date="2024-02-01", items=[_full(999, 1)])


def test_invalid_lines(conn, make_batch):
    _, gid = make_batch()
    with pytest.raises(ValidationError):
        create_sale(conn, payment_method="cash", sale_date="2024-02-01", items=[])
    with pytest.raises(ValidationError):
        create_sale(conn, payment_method="cash", sale_date="2024-02-01", items=[_full(gid, 0)])
    with pytest.raises(ValidationError):
        create_sale(conn, payment_method="", sale_date="2024-02-01", items=[_full(gid, 1)])
    line = SaleLineInput(stock_group_id=gid, sale_type="sample", quantity=1, unit_price=1)
    with pytest.raises(ValidationError):
        create_sale(conn, payment_method="cash", sale_date="2024-02-01", items=[line])


def test_perfume_mismatch(conn, make_batch):
    _, gid = make_batch()
    line = _full(gid, 1)
    line.perfume_id = 999
    with pytest.raises(ValidationError):
        create_sale(conn, payment_method="cash", sale_date="2024-02-01", items=[line])


def test_containers_consumed_oldest_first(conn, make_batch, container_id):
    _, gid = make_batch()
    newer = add_stock_entry(conn, item_id=container_id, quantity=10, unit_cost=1, purchase_date="2024-03-01")
    older = add_stock_entry(conn, item_id=container_id, quantity=4, unit_cost=1, purchase_date="2024-01-01")
    same_day = add_stock_entry(conn, item_id=container_id, quantity=4, unit_cost=1, purchase_date="2024-01-01")

    create_sale(
        conn,
        payment_method="cash",
        sale_date="2024-04-01",
        items=[_decant(gid, container_id, 3), _decant(gid, container_id, 3)],
    )
    remaining = {
        int(r["id"]): int(r["remaining_quantity"]) for r in q(conn, "SELECT * FROM custom_inventory_stock_entries")
    }
    assert remaining == {older: 0, same_day: 2, newer: 10}
    assert available_quantity(conn, container_id) == 12


def test_container_shortage_rolls_back_everything(conn, make_batch, container_id):
    _, gid = make_batch()
    add_stock_entry(conn, item_id=container_id, quantity=2, unit_cost=1, purchase_date="2024-01-01")
    with pytest.raises(InsufficientStockError):
        create_sale(conn, payment_method="cash", sale_date="2024-02-01", items=[_decant(gid, container_id, 3)])
    assert q(conn, "SELECT COUNT(1) AS n FROM sales")[0]["n"] == 0
    assert tracking(conn, gid)["decants_sold"] == 0
    assert available_quantity(conn, container_id) == 2


def test_inactive_container_rejected(conn, make_batch):
    _, gid = make_batch()
    item = create_item(conn, name="Mini Vial", category="decant_bottle", unit_label="bottle", default_ml=5)
    add_stock_entry(conn, item_id=item, quantity=5, unit_cost=1, purchase_date="2024-01-01")
    deactivate_item(conn, item)
    with pytest.raises(NotFoundError):
        create_sale(conn, payment_method="cash", sale_date="2024-02-01", items=[_decant(gid, item, 1)])


def test_full_bottles_exclude_bottles_finished_by_decanting(conn, make_batch):
    _, gid = make_batch(quantity=5)
    mark_bottle_done(conn, gid, 8)
    with pytest.raises(InsufficientStockError, match="Available: 4"):
        create_sale(conn, payment_method="cash", sale_date="2024-02-01", items=[_full(gid, 5)])

    create_sale(conn, payment_method="cash", sale_date="2024-02-01", items=[_full(gid, 4)])
    t = tracking(conn, gid)
    assert (t["bottles_sold"], t["bottles_done"]) == (4, 1)
    assert t["bottles_done"] <= 5 - t["bottles_sold"]


def test_late_container_failure_rolls_back_sale_and_tracking(conn, make_batch, container_id, monkeypatch):
    _, gid = make_batch(quantity=5)
    add_stock_entry(conn, item_id=container_id, quantity=2, unit_cost=1, purchase_date="2024-01-01")
    # Let the upfront check pass so the shortage surfaces while consuming.
    monkeypatch.setattr(sales, "available_quantity", lambda conn, item_id: 1000)

    with pytest.raises(InsufficientStockError, match="decant bottle stock"):
        create_sale(conn, payment_method="cash", sale_date="2024-02-01", items=[_decant(gid, container_id, 12)])

    assert q(conn, "SELECT COUNT(1) AS n FROM sales")[0]["n"] == 0
    assert q(conn, "SELECT COUNT(1) AS n FROM sale_items")[0]["n"] == 0
    assert q(conn, "SELECT COUNT(1) AS n FROM decant_bottle_logs")[0]["n"] == 0
    t = tracking(conn, gid)
    assert (t["decants_sold"], t["bottles_done"]) == (0, 0)
    assert available_quantity(conn, container_id) == 2
    assert not conn.in_transaction


def test_missing_batch_id_is_a_validation_error(conn):
    line = SaleLineInput(stock_group_id=None, sale_type=FULL_BOTTLE, quantity=1, unit_price=10)
    with pytest.raises(ValidationError, match="Stock batch is required"):
        create_sale(conn, payment_method="cash", sale_date="2024-02-01", items=[line])

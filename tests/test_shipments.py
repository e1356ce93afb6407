from __future__ import annotations

import pytest

from conftest import batch, tracking
from perfume_pos.db import q
from perfume_pos.errors import ConflictError, HasSalesError, NotFoundError, ValidationError
from perfume_pos.services.custom_inventory import consume_fifo
from perfume_pos.services.perfumes import create_perfume
from perfume_pos.services.sales import DECANT, FULL_BOTTLE, SaleLineInput, create_sale
from perfume_pos.services.shipments import (
    CustomItemInput,
    ShipmentItemInput,
    create_shipment,
    delete_shipment,
    delete_stock_batch,
    get_shipment,
    list_shipments,
    list_stock,
    update_shipment,
)


def _count(conn, table, where="1=1", params=()):
    return int(q(conn, f"SELECT COUNT(1) AS n FROM {table} WHERE {where}", params)[0]["n"])


def _sell_one(conn, gid):
    create_sale(
        conn,
        payment_method="cash",
        sale_date="2024-02-01",
        items=[SaleLineInput(stock_group_id=gid, sale_type=FULL_BOTTLE, quantity=1, unit_price=150)],
    )


def test_create_shipment(conn, perfume_id, container_id):
    shipment_id = create_shipment(
        conn,
        shipment_name="Dubai order",
        purchase_date="2024-01-10",
        transport_cost=30,
        other_expenses=20,
        funded_from="capital",
        items=[ShipmentItemInput(perfume_id=perfume_id, quantity=4, buying_cost_per_bottle=100)],
        custom_items=[CustomItemInput(item_id=container_id, quantity=50, unit_cost=2)],
    )
    detail = get_shipment(conn, shipment_id)
    assert detail["shipment"]["total_additional_expenses"] == 50
    item = detail["items"][0]
    assert (item["quantity"], item["remaining_quantity"], item["subtotal_cost"]) == (4, 4, 400)
    assert (item["decants_sold"], item["bottles_sold"], item["bottles_done"]) == (0, 0, 0)
    assert detail["custom_items"][0]["purchase_date"] == "2024-01-10"

    inv = q(conn, "SELECT * FROM investments WHERE source_shipment_id=?", (shipment_id,))[0]
    assert inv["amount"] == 550
    assert inv["description"] == "Stock purchase (capital) - Dubai order"
    assert inv["investment_date"] == "2024-01-10"
    assert list_shipments(conn)[0]["total_cost"] == 550


def test_create_shipment_validation(conn, perfume_id):
    with pytest.raises(ValidationError):
        create_shipment(conn, purchase_date="2024-01-01", items=[])
    with pytest.raises(ValidationError):
        create_shipment(
            conn,
            purchase_date="2024-01-01",
            funded_from="loan",
            items=[ShipmentItemInput(perfume_id=perfume_id, quantity=1, buying_cost_per_bottle=1)],
        )
    with pytest.raises(NotFoundError):
        create_shipment(
            conn, purchase_date="2024-01-01", items=[ShipmentItemInput(perfume_id=999, quantity=1, buying_cost_per_bottle=1)]
        )
    assert _count(conn, "stock_shipments") == 0


def test_update_quantity_keeps_sold_bottles(conn, perfume_id, make_batch):
    shipment_id, gid = make_batch(quantity=5, cost=100, funded_from="capital")
    _sell_one(conn, gid)
    _sell_one(conn, gid)

    update_shipment(
        conn,
        shipment_id,
        purchase_date="2024-01-01",
        funded_from="capital",
        items=[ShipmentItemInput(perfume_id=perfume_id, quantity=8, buying_cost_per_bottle=90, stock_group_id=gid)],
    )
    b = batch(conn, gid)
    assert (b["quantity"], b["remaining_quantity"], b["subtotal_cost"]) == (8, 6, 720)
    assert q(conn, "SELECT amount FROM investments WHERE source_shipment_id=?", (shipment_id,))[0]["amount"] == 720

    with pytest.raises(ValidationError):
        update_shipment(
            conn,
            shipment_id,
            purchase_date="2024-01-01",
            items=[ShipmentItemInput(perfume_id=perfume_id, quantity=1, buying_cost_per_bottle=90, stock_group_id=gid)],
        )
    assert batch(conn, gid)["quantity"] == 8


def test_update_cannot_remove_sold_batch(conn, perfume_id, make_batch):
    shipment_id, gid = make_batch()
    _sell_one(conn, gid)
    with pytest.raises(HasSalesError):
        update_shipment(
            conn,
            shipment_id,
            purchase_date="2024-01-01",
            items=[ShipmentItemInput(perfume_id=perfume_id, quantity=1, buying_cost_per_bottle=1)],
        )
    assert _count(conn, "stock_groups") == 1


def test_update_adds_and_removes_batches(conn, perfume_id, make_batch):
    other = create_perfume(conn, name="Bleu Nuit")
    shipment_id, gid = make_batch()
    update_shipment(
        conn,
        shipment_id,
        purchase_date="2024-01-01",
        items=[ShipmentItemInput(perfume_id=other, quantity=3, buying_cost_per_bottle=50)],
    )
    rows = list_stock(conn, shipment_id=shipment_id)
    assert [r["perfume_name"] for r in rows] == ["Bleu Nuit"]
    assert _count(conn, "decant_tracking", "stock_group_id=?", (gid,)) == 0


def test_switching_funding_removes_investment(conn, perfume_id, make_batch):
    shipment_id, gid = make_batch(funded_from="capital")
    update_shipment(
        conn,
        shipment_id,
        purchase_date="2024-01-01",
        funded_from="sales",
        items=[ShipmentItemInput(perfume_id=perfume_id, quantity=5, buying_cost_per_bottle=100, stock_group_id=gid)],
    )
    assert _count(conn, "investments") == 0


def test_custom_entry_cannot_drop_below_used(conn, perfume_id, container_id):
    shipment_id = create_shipment(
        conn,
        purchase_date="2024-01-01",
        items=[],
        custom_items=[CustomItemInput(item_id=container_id, quantity=10, unit_cost=1)],
    )
    entry_id = int(q(conn, "SELECT id FROM custom_inventory_stock_entries")[0]["id"])
    consume_fifo(conn, container_id, 6)

    with pytest.raises(ValidationError):
        update_shipment(
            conn,
            shipment_id,
            purchase_date="2024-01-01",
            items=[],
            custom_items=[CustomItemInput(item_id=container_id, quantity=5, unit_cost=1, entry_id=entry_id)],
        )
    with pytest.raises(ConflictError):
        update_shipment(
            conn,
            shipment_id,
            purchase_date="2024-01-01",
            items=[ShipmentItemInput(perfume_id=perfume_id, quantity=1, buying_cost_per_bottle=1)],
        )

    update_shipment(
        conn,
        shipment_id,
        purchase_date="2024-01-05",
        items=[],
        custom_items=[CustomItemInput(item_id=container_id, quantity=12, unit_cost=1, entry_id=entry_id)],
    )
    entry = q(conn, "SELECT * FROM custom_inventory_stock_entries WHERE id=?", (entry_id,))[0]
    assert (entry["quantity_added"], entry["remaining_quantity"], entry["purchase_date"]) == (12, 6, "2024-01-05")


def test_delete_capital_shipment_without_sales(conn, perfume_id, container_id):
    shipment_id = create_shipment(
        conn,
        purchase_date="2024-01-01",
        funded_from="capital",
        items=[ShipmentItemInput(perfume_id=perfume_id, quantity=2, buying_cost_per_bottle=100)],
        custom_items=[CustomItemInput(item_id=container_id, quantity=10, unit_cost=1)],
    )
    assert _count(conn, "investments") == 1

    delete_shipment(conn, shipment_id)
    assert _count(conn, "stock_shipments") == 0
    assert _count(conn, "stock_groups") == 0
    assert _count(conn, "decant_tracking") == 0
    assert _count(conn, "custom_inventory_stock_entries") == 0
    assert _count(conn, "investments") == 0


def test_delete_shipment_with_sales_changes_nothing(conn, perfume_id, make_batch):
    shipment_id, gid = make_batch(funded_from="capital")
    _sell_one(conn, gid)
    with pytest.raises(HasSalesError):
        delete_shipment(conn, shipment_id)
    assert _count(conn, "stock_shipments") == 1
    assert _count(conn, "stock_groups") == 1
    assert _count(conn, "investments") == 1


def test_delete_stock_batch(conn, perfume_id, make_batch):
    other = create_perfume(conn, name="Bleu Nuit")
    shipment_id = create_shipment(
        conn,
        purchase_date="2024-01-01",
        funded_from="capital",
        items=[
            ShipmentItemInput(perfume_id=perfume_id, quantity=2, buying_cost_per_bottle=100),
            ShipmentItemInput(perfume_id=other, quantity=1, buying_cost_per_bottle=50),
        ],
    )
    sold, unsold = [int(r["id"]) for r in list_stock(conn, shipment_id=shipment_id)]
    _sell_one(conn, sold)

    with pytest.raises(HasSalesError):
        delete_stock_batch(conn, sold)
    delete_stock_batch(conn, unsold)
    assert q(conn, "SELECT amount FROM investments WHERE source_shipment_id=?", (shipment_id,))[0]["amount"] == 200
    with pytest.raises(NotFoundError):
        delete_stock_batch(conn, unsold)


def test_raising_quantity_resyncs_auto_completions(conn, make_batch, perfume_id, containers):
    shipment_id, gid = make_batch(quantity=2, cost=100)
    create_sale(
        conn,
        payment_method="cash",
        sale_date="2024-02-01",
        items=[
            SaleLineInput(
                stock_group_id=gid, sale_type=DECANT, quantity=30, unit_price=10, decant_bottle_item_id=containers
            )
        ],
    )
    assert tracking(conn, gid)["bottles_done"] == 2

    update_shipment(
        conn,
        shipment_id,
        purchase_date="2024-01-01",
        items=[ShipmentItemInput(perfume_id=perfume_id, quantity=4, buying_cost_per_bottle=100, stock_group_id=gid)],
    )
    assert tracking(conn, gid)["bottles_done"] == 3
    assert _count(conn, "decant_bottle_logs", "stock_group_id=? AND completion_source='auto'", (gid,)) == 3

from __future__ import annotations

import pytest

from perfume_pos.db import connect, ensure_schema, q
from perfume_pos.services.custom_inventory import add_stock_entry
from perfume_pos.services.demo_data import upsert_reference_data
from perfume_pos.services.perfumes import create_perfume
from perfume_pos.services.shipments import ShipmentItemInput, create_shipment


@pytest.fixture
def conn():
    c = connect(":memory:")
    ensure_schema(c)
    upsert_reference_data(c)
    yield c
    c.close()


@pytest.fixture
def container_id(conn):
    return int(q(conn, "SELECT id FROM custom_inventory_items WHERE name='Decant Bottle'")[0]["id"])


@pytest.fixture
def containers(conn, container_id):
    """100 decant bottles in stock."""
    add_stock_entry(conn, item_id=container_id, quantity=100, unit_cost=500, purchase_date="2024-01-01")
    return container_id


@pytest.fixture
def perfume_id(conn):
    return create_perfume(conn, name="Oud Wood", volume_ml=100, estimated_decants_per_bottle=10)


@pytest.fixture
def make_batch(conn, perfume_id):
    def _make(quantity=5, cost=100.0, funded_from="sales", purchase_date="2024-01-01", pid=None):
        shipment_id = create_shipment(
            conn,
            purchase_date=purchase_date,
            funded_from=funded_from,
            items=[ShipmentItemInput(perfume_id=pid or perfume_id, quantity=quantity, buying_cost_per_bottle=cost)],
        )
        group_id = int(q(conn, "SELECT id FROM stock_groups WHERE shipment_id=?", (shipment_id,))[0]["id"])
        return shipment_id, group_id

    return _make


def batch(conn, group_id):
    return q(conn, "SELECT * FROM stock_groups WHERE id=?", (group_id,))[0]


def tracking(conn, group_id):
    return q(conn, "SELECT * FROM decant_tracking WHERE stock_group_id=?", (group_id,))[0]

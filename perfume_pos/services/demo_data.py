from __future__ import annotations

import random
from datetime import date, timedelta

from perfume_pos.db import q, x, ensure_schema, transaction
from perfume_pos.schema import TABLE_ORDER
from perfume_pos.services.custom_inventory import DECANT_BOTTLE_CATEGORY
from perfume_pos.services.debts import record_debt_payment
from perfume_pos.services.expenses import create_expense
from perfume_pos.services.perfumes import create_perfume
from perfume_pos.services.sales import DECANT, FULL_BOTTLE, SaleLineInput, create_sale
from perfume_pos.services.shipments import CustomItemInput, ShipmentItemInput, create_shipment


DEFAULT_CATEGORIES = [
    (DECANT_BOTTLE_CATEGORY, "Bottles used for decants (usually ml-based)"),
    ("polythene", "Packaging polythenes"),
    ("packaging", "General packaging supplies"),
]
DEFAULT_ITEMS = [
    ("Decant Bottle", DECANT_BOTTLE_CATEGORY, "bottle", 10),
    ("Polythene", "polythene", "piece", None),
]
DEMO_PERFUMES = [
    ("Oud Wood", 100, 10),
    ("Bleu Nuit", 100, 10),
    ("Amber Musk", 50, 5),
    ("Rose Vanille", 75, 8),
]


def upsert_reference_data(conn) -> None:
    ensure_schema(conn)

    with transaction(conn):
        for code, desc in DEFAULT_CATEGORIES:
            x(
                conn,
                "INSERT OR IGNORE INTO custom_inventory_categories(code, description) VALUES (?, ?)",
                (code, desc),
            )
        for name, category, unit, ml in DEFAULT_ITEMS:
            x(
                conn,
                """
                INSERT OR IGNORE INTO custom_inventory_items(name, category, unit_label, default_ml)
                VALUES (?, ?, ?, ?)
                """,
                (name, category, unit, ml),
            )


def wipe_all(conn) -> None:
    # Keep schema, delete data (children first).
    with transaction(conn):
        for t in reversed(TABLE_ORDER):
            conn.execute(f"DELETE FROM {t};")


def load_demo_data(conn, *, seed: int = 7) -> None:
    random.seed(seed)
    upsert_reference_data(conn)

    container = q(conn, "SELECT id FROM custom_inventory_items WHERE name='Decant Bottle'")[0]
    polythene = q(conn, "SELECT id FROM custom_inventory_items WHERE name='Polythene'")[0]

    existing = {r["name"] for r in q(conn, "SELECT name FROM perfumes")}
    for name, ml, decants in DEMO_PERFUMES:
        if name not in existing:
            create_perfume(conn, name=name, volume_ml=ml, estimated_decants_per_bottle=decants)
    perfumes = q(conn, "SELECT * FROM perfumes ORDER BY id")

    base_date = date.today() - timedelta(days=20)
    for i, funded in enumerate(["capital", "sales"]):
        create_shipment(
            conn,
            shipment_name=f"Demo shipment {i + 1}",
            purchase_date=(base_date + timedelta(days=i * 7)).isoformat(),
            transport_cost=random.choice([20000, 35000, 50000]),
            other_expenses=random.choice([0, 10000]),
            funded_from=funded,
            items=[
                ShipmentItemInput(
                    perfume_id=int(p["id"]),
                    quantity=random.randint(3, 8),
                    buying_cost_per_bottle=float(random.choice([150000, 180000, 220000])),
                )
                for p in perfumes
            ],
            custom_items=[
                CustomItemInput(item_id=int(container["id"]), quantity=200, unit_cost=500),
                CustomItemInput(item_id=int(polythene["id"]), quantity=100, unit_cost=200),
            ],
        )

    batches = q(conn, "SELECT * FROM stock_groups ORDER BY id")
    sale_date = base_date + timedelta(days=8)
    for n, b in enumerate(batches[: len(perfumes)]):
        lines = [
            SaleLineInput(
                stock_group_id=int(b["id"]),
                sale_type=DECANT,
                quantity=random.randint(5, 25),
                unit_price=25000,
                decant_bottle_item_id=int(container["id"]),
            )
        ]
        result = create_sale(
            conn,
            customer_name=random.choice(["Walk-in", "Amina", "Brian", "Grace"]),
            payment_method=random.choice(["cash", "mobile_money"]),
            sale_date=(sale_date + timedelta(days=n)).isoformat(),
            items=lines,
            amount_paid=None if n % 2 == 0 else 100000,
        )
        if result.debt_amount > 0:
            record_debt_payment(
                conn,
                sale_id=result.sale_id,
                amount_paid=round(result.debt_amount / 2, 2),
                payment_date=(sale_date + timedelta(days=n + 2)).isoformat(),
                payment_method="cash",
            )

    for b in batches[len(perfumes):]:
        create_sale(
            conn,
            customer_name="Walk-in",
            payment_method="cash",
            sale_date=(sale_date + timedelta(days=9)).isoformat(),
            items=[SaleLineInput(stock_group_id=int(b["id"]), sale_type=FULL_BOTTLE, quantity=1, unit_price=320000)],
        )

    create_expense(conn, description="Shop rent", amount=300000, category="rent", expense_date=base_date.isoformat())
    create_expense(
        conn,
        description="Instagram ads",
        amount=50000,
        category="marketing",
        expense_date=(base_date + timedelta(days=10)).isoformat(),
    )

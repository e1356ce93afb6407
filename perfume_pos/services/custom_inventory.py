from __future__ import annotations

import sqlite3
from typing import Optional

from perfume_pos.db import q, q1, x, transaction
from perfume_pos.errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from perfume_pos.logging_utils import get_logger
from perfume_pos.utils import clean_text

log = get_logger(__name__)

DECANT_BOTTLE_CATEGORY = "decant_bottle"


def list_categories(conn, *, active_only: bool = True):
    where = "WHERE is_active=1" if active_only else ""
    return q(conn, f"SELECT * FROM custom_inventory_categories {where} ORDER BY code")


def create_category(conn, *, code: str, description: Optional[str] = None) -> int:
    code = clean_text(code)
    if not code:
        raise ValidationError("Category code is required.")
    code = code.lower().replace(" ", "_")
    try:
        return x(
            conn,
            "INSERT INTO custom_inventory_categories (code, description) VALUES (?, ?)",
            (code, clean_text(description)),
        )
    except sqlite3.IntegrityError:
        raise ConflictError("Category already exists", payload={"code": code})


def get_item(conn, item_id: int):
    row = q1(conn, "SELECT * FROM custom_inventory_items WHERE id=?", (int(item_id),))
    if row is None:
        raise NotFoundError("Inventory item not found.")
    return row


def list_items(conn, *, category: Optional[str] = None, active_only: bool = True):
    """Items with their summed remaining stock."""
    clauses = []
    params: list = []
    if active_only:
        clauses.append("i.is_active=1")
    if category:
        clauses.append("i.category=?")
        params.append(category)
    where = ("WHERE " + " AND ".join(clauses)) if clauses else ""
    return q(
        conn,
        f"""
        SELECT i.*,
               COALESCE(SUM(e.remaining_quantity), 0) AS available_quantity
        FROM custom_inventory_items i
        LEFT JOIN custom_inventory_stock_entries e ON e.item_id = i.id
        {where}
        GROUP BY i.id
        ORDER BY i.category, i.name
        """,
        params,
    )


def create_item(
    conn,
    *,
    name: str,
    category: str,
    unit_label: str = "piece",
    default_ml: Optional[int] = None,
) -> int:
    name = clean_text(name)
    if not name:
        raise ValidationError("Item name is required.")
    cat = q1(conn, "SELECT * FROM custom_inventory_categories WHERE code=? AND is_active=1", (category,))
    if cat is None:
        raise NotFoundError("Category not found.", payload={"category": category})
    try:
        item_id = x(
            conn,
            """
            INSERT INTO custom_inventory_items (name, category, unit_label, default_ml)
            VALUES (?, ?, ?, ?)
            """,
            (name, str(category), clean_text(unit_label) or "piece", int(default_ml) if default_ml else None),
        )
    except sqlite3.IntegrityError:
        raise ConflictError("Item with this name already exists", payload={"name": name})
    log.info("Created inventory item %s (%s)", item_id, name)
    return item_id


def deactivate_item(conn, item_id: int) -> None:
    get_item(conn, item_id)
    x(conn, "UPDATE custom_inventory_items SET is_active=0 WHERE id=?", (int(item_id),))


def add_stock_entry(
    conn,
    *,
    item_id: int,
    quantity: int,
    unit_cost: float,
    purchase_date: str,
    note: Optional[str] = None,
    shipment_id: Optional[int] = None,
) -> int:
    if int(quantity) <= 0:
        raise ValidationError("Quantity must be > 0.")
    if float(unit_cost) < 0:
        raise ValidationError("Unit cost cannot be negative.")
    if not purchase_date:
        raise ValidationError("Purchase date is required.")
    get_item(conn, item_id)

    return x(
        conn,
        """
        INSERT INTO custom_inventory_stock_entries (
            shipment_id, item_id, quantity_added, remaining_quantity, unit_cost, purchase_date, note
        ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            int(shipment_id) if shipment_id is not None else None,
            int(item_id),
            int(quantity),
            int(quantity),
            float(unit_cost),
            str(purchase_date),
            clean_text(note),
        ),
    )


def list_stock_entries(conn, *, item_id: Optional[int] = None):
    where = "WHERE e.item_id=?" if item_id is not None else ""
    params = (int(item_id),) if item_id is not None else ()
    return q(
        conn,
        f"""
        SELECT e.*, i.name AS item_name, i.category,
               ROUND(e.quantity_added * e.unit_cost, 2) AS total_cost
        FROM custom_inventory_stock_entries e
        JOIN custom_inventory_items i ON i.id = e.item_id
        {where}
        ORDER BY e.purchase_date ASC, e.id ASC
        """,
        params,
    )


def available_quantity(conn, item_id: int) -> int:
    row = q1(
        conn,
        "SELECT COALESCE(SUM(remaining_quantity), 0) AS n FROM custom_inventory_stock_entries WHERE item_id=?",
        (int(item_id),),
    )
    return int(row["n"])


def require_decant_container(conn, item_id: int):
    row = q1(
        conn,
        "SELECT * FROM custom_inventory_items WHERE id=? AND category=? AND is_active=1",
        (int(item_id), DECANT_BOTTLE_CATEGORY),
    )
    if row is None:
        raise NotFoundError("Selected decant bottle item not found.", payload={"item_id": int(item_id)})
    return row


def consume_fifo(conn, item_id: int, quantity: int) -> list[tuple[int, int]]:
    """Deplete an item's stock entries oldest first (purchase_date, then id).

    Entries are read once, in order, and walked until the need is met.
    Returns ``[(entry_id, taken), ...]``.
    """
    need = int(quantity)
    if need <= 0:
        return []

    with transaction(conn):
        entries = q(
            conn,
            """
            SELECT id, remaining_quantity
            FROM custom_inventory_stock_entries
            WHERE item_id=? AND remaining_quantity > 0
            ORDER BY purchase_date ASC, id ASC
            """,
            (int(item_id),),
        )

        taken: list[tuple[int, int]] = []
        for e in entries:
            if need <= 0:
                break
            take = min(need, int(e["remaining_quantity"]))
            x(
                conn,
                "UPDATE custom_inventory_stock_entries SET remaining_quantity = remaining_quantity - ? WHERE id=?",
                (take, int(e["id"])),
            )
            taken.append((int(e["id"]), take))
            need -= take

        if need > 0:
            raise InsufficientStockError(
                "Insufficient decant bottle stock.",
                payload={"item_id": int(item_id), "short_by": need},
            )
    return taken

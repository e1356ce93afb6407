from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from perfume_pos.config import DEFAULT_DECANTS_PER_BOTTLE
from perfume_pos.db import q, q1, x, transaction
from perfume_pos.errors import ConflictError, HasSalesError, NotFoundError, ValidationError
from perfume_pos.logging_utils import get_logger
from perfume_pos.services.bottles import sync_auto_completed_bottles
from perfume_pos.services.capital import sync_shipment_capital_investment
from perfume_pos.services.custom_inventory import get_item
from perfume_pos.services.perfumes import get_perfume
from perfume_pos.utils import clean_text, money

log = get_logger(__name__)

FUNDING_SOURCES = {"sales", "capital"}


@dataclass
class ShipmentItemInput:
    perfume_id: int
    quantity: int
    buying_cost_per_bottle: float
    stock_group_id: Optional[int] = None  # set when editing an existing batch


@dataclass
class CustomItemInput:
    item_id: int
    quantity: int
    unit_cost: float
    note: Optional[str] = None
    entry_id: Optional[int] = None  # set when editing an existing entry


def _as_number(v, label: str) -> float:
    try:
        n = float(v or 0)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number.")
    if n < 0:
        raise ValidationError(f"{label} cannot be negative.")
    return n


def _validate_header(purchase_date, transport_cost, other_expenses, funded_from) -> tuple[float, float, str]:
    if not purchase_date:
        raise ValidationError("Purchase date is required.")
    funded = str(funded_from or "sales").strip().lower()
    if funded not in FUNDING_SOURCES:
        raise ValidationError("Funding source must be 'sales' or 'capital'.")
    return _as_number(transport_cost, "Transport cost"), _as_number(other_expenses, "Other expenses"), funded


def _validate_lines(conn, items: list[ShipmentItemInput], custom_items: list[CustomItemInput]) -> None:
    if not items and not custom_items:
        raise ValidationError("At least one perfume or inventory item is required.")
    for it in items:
        if int(it.quantity) <= 0:
            raise ValidationError("Quantity must be > 0 for each perfume.")
        _as_number(it.buying_cost_per_bottle, "Buying cost per bottle")
        get_perfume(conn, it.perfume_id)
    for c in custom_items:
        if int(c.quantity) <= 0:
            raise ValidationError("Quantity must be > 0 for each inventory item.")
        _as_number(c.unit_cost, "Unit cost")
        get_item(conn, c.item_id)


def _insert_batch(conn, shipment_id: int, it: ShipmentItemInput) -> int:
    qty = int(it.quantity)
    cost = float(it.buying_cost_per_bottle)
    group_id = x(
        conn,
        """
        INSERT INTO stock_groups (
            shipment_id, perfume_id, quantity, buying_cost_per_bottle, subtotal_cost, remaining_quantity
        ) VALUES (?, ?, ?, ?, ?, ?)
        """,
        (int(shipment_id), int(it.perfume_id), qty, cost, money(qty * cost), qty),
    )
    x(
        conn,
        """
        INSERT INTO decant_tracking (stock_group_id, perfume_id, decants_sold, bottles_sold, bottles_done)
        VALUES (?, ?, 0, 0, 0)
        """,
        (group_id, int(it.perfume_id)),
    )
    return group_id


def _insert_custom_entry(conn, shipment_id: int, purchase_date: str, c: CustomItemInput) -> int:
    return x(
        conn,
        """
        INSERT INTO custom_inventory_stock_entries (
            shipment_id, item_id, quantity_added, remaining_quantity, unit_cost, purchase_date, note
        ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            int(shipment_id),
            int(c.item_id),
            int(c.quantity),
            int(c.quantity),
            float(c.unit_cost),
            str(purchase_date),
            clean_text(c.note),
        ),
    )


def _has_sales(conn, stock_group_id: int) -> bool:
    row = q1(conn, "SELECT COUNT(1) AS n FROM sale_items WHERE stock_group_id=?", (int(stock_group_id),))
    return int(row["n"]) > 0


def _delete_batch_rows(conn, stock_group_id: int) -> None:
    for t in ["decant_bottle_logs", "decant_tracking", "deleted_bottles"]:
        conn.execute(f"DELETE FROM {t} WHERE stock_group_id=?", (int(stock_group_id),))
    conn.execute("DELETE FROM stock_groups WHERE id=?", (int(stock_group_id),))


def get_shipment(conn, shipment_id: int) -> dict:
    shipment = q1(conn, "SELECT * FROM stock_shipments WHERE id=?", (int(shipment_id),))
    if shipment is None:
        raise NotFoundError("Shipment not found.")
    return {
        "shipment": shipment,
        "items": list_stock(conn, shipment_id=shipment_id),
        "custom_items": q(
            conn,
            """
            SELECT e.*, i.name AS item_name
            FROM custom_inventory_stock_entries e
            JOIN custom_inventory_items i ON i.id = e.item_id
            WHERE e.shipment_id=?
            ORDER BY e.id
            """,
            (int(shipment_id),),
        ),
    }


def list_shipments(conn):
    return q(
        conn,
        """
        SELECT s.*,
               (SELECT COUNT(1) FROM stock_groups g WHERE g.shipment_id = s.id) AS batches,
               COALESCE((SELECT SUM(subtotal_cost) FROM stock_groups g WHERE g.shipment_id = s.id), 0)
               + COALESCE((SELECT SUM(quantity_added * unit_cost)
                           FROM custom_inventory_stock_entries e WHERE e.shipment_id = s.id), 0)
               + s.total_additional_expenses AS total_cost
        FROM stock_shipments s
        ORDER BY s.purchase_date DESC, s.id DESC
        """,
    )


def list_stock(
    conn,
    *,
    perfume_id: Optional[int] = None,
    shipment_id: Optional[int] = None,
    in_stock_only: bool = False,
):
    """Batches with perfume, shipment, decant counters and logged decants."""
    clauses = []
    params: list = []
    if perfume_id is not None:
        clauses.append("g.perfume_id=?")
        params.append(int(perfume_id))
    if shipment_id is not None:
        clauses.append("g.shipment_id=?")
        params.append(int(shipment_id))
    if in_stock_only:
        clauses.append("g.remaining_quantity > 0")
    where = ("WHERE " + " AND ".join(clauses)) if clauses else ""
    return q(
        conn,
        f"""
        SELECT g.*,
               p.name AS perfume_name,
               p.estimated_decants_per_bottle,
               s.shipment_name, s.purchase_date, s.funded_from,
               COALESCE(t.decants_sold, 0) AS decants_sold,
               COALESCE(t.bottles_sold, 0) AS bottles_sold,
               COALESCE(t.bottles_done, 0) AS bottles_done,
               COALESCE((SELECT SUM(l.decants_obtained) FROM decant_bottle_logs l
                         WHERE l.stock_group_id = g.id), 0) AS logged_decants
        FROM stock_groups g
        JOIN perfumes p ON p.id = g.perfume_id
        JOIN stock_shipments s ON s.id = g.shipment_id
        LEFT JOIN decant_tracking t ON t.stock_group_id = g.id
        {where}
        ORDER BY s.purchase_date ASC, g.id ASC
        """,
        params,
    )


def create_shipment(
    conn,
    *,
    purchase_date: str,
    items: Iterable[ShipmentItemInput],
    custom_items: Iterable[CustomItemInput] = (),
    shipment_name: Optional[str] = None,
    transport_cost: float = 0,
    other_expenses: float = 0,
    funded_from: str = "sales",
) -> int:
    items = list(items)
    custom_items = list(custom_items)
    transport, other, funded = _validate_header(purchase_date, transport_cost, other_expenses, funded_from)

    with transaction(conn):
        _validate_lines(conn, items, custom_items)
        shipment_id = x(
            conn,
            """
            INSERT INTO stock_shipments (
                shipment_name, transport_cost, other_expenses, total_additional_expenses,
                purchase_date, funded_from
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (clean_text(shipment_name), transport, other, money(transport + other), str(purchase_date), funded),
        )
        for it in items:
            _insert_batch(conn, shipment_id, it)
        for c in custom_items:
            _insert_custom_entry(conn, shipment_id, str(purchase_date), c)
        sync_shipment_capital_investment(conn, shipment_id)

    log.info(
        "Created shipment %s (%s batches, %s inventory entries, funded from %s)",
        shipment_id, len(items), len(custom_items), funded,
    )
    return shipment_id


def _reconcile_batches(
    conn, shipment_id: int, items: list[ShipmentItemInput], default_decants: int = DEFAULT_DECANTS_PER_BOTTLE
) -> None:
    existing = {int(r["id"]): r for r in q(conn, "SELECT * FROM stock_groups WHERE shipment_id=?", (int(shipment_id),))}
    keep = {int(it.stock_group_id) for it in items if it.stock_group_id is not None}

    unknown = keep - set(existing)
    if unknown:
        raise NotFoundError("Batch does not belong to this shipment.", payload={"stock_group_ids": sorted(unknown)})

    for group_id in sorted(set(existing) - keep):
        if _has_sales(conn, group_id):
            raise HasSalesError(
                "Cannot remove a perfume that has sales records.", payload={"stock_group_id": group_id}
            )
        _delete_batch_rows(conn, group_id)

    for it in items:
        if it.stock_group_id is None:
            _insert_batch(conn, shipment_id, it)
            continue

        cur = existing[int(it.stock_group_id)]
        tracking = q1(conn, "SELECT * FROM decant_tracking WHERE stock_group_id=?", (int(cur["id"]),))
        gone = int(cur["quantity"]) - int(cur["remaining_quantity"])
        new_qty = int(it.quantity)
        if new_qty < gone:
            raise ValidationError(
                f"Quantity cannot be less than bottles already sold or removed ({gone}).",
                payload={"stock_group_id": int(cur["id"])},
            )
        if tracking is not None and new_qty < int(tracking["bottles_sold"]) + int(tracking["bottles_done"]):
            raise ValidationError(
                "Quantity cannot be less than bottles already sold or finished by decanting.",
                payload={"stock_group_id": int(cur["id"])},
            )
        if int(it.perfume_id) != int(cur["perfume_id"]) and _has_sales(conn, int(cur["id"])):
            raise ConflictError("Cannot change the perfume of a batch that has sales records.")

        cost = float(it.buying_cost_per_bottle)
        x(
            conn,
            """
            UPDATE stock_groups
            SET perfume_id=?, quantity=?, buying_cost_per_bottle=?, subtotal_cost=?, remaining_quantity=?
            WHERE id=?
            """,
            (int(it.perfume_id), new_qty, cost, money(new_qty * cost), new_qty - gone, int(cur["id"])),
        )
        if tracking is None:
            x(
                conn,
                "INSERT INTO decant_tracking (stock_group_id, perfume_id) VALUES (?, ?)",
                (int(cur["id"]), int(it.perfume_id)),
            )
        else:
            x(
                conn,
                "UPDATE decant_tracking SET perfume_id=? WHERE stock_group_id=?",
                (int(it.perfume_id), int(cur["id"])),
            )
            # A changed quantity moves the auto-completion cap.
            if int(tracking["decants_sold"]) > 0:
                sync_auto_completed_bottles(conn, int(cur["id"]), default_decants=default_decants)


def _reconcile_custom_entries(conn, shipment_id: int, purchase_date: str, custom_items: list[CustomItemInput]) -> None:
    existing = {
        int(r["id"]): r
        for r in q(conn, "SELECT * FROM custom_inventory_stock_entries WHERE shipment_id=?", (int(shipment_id),))
    }
    keep = {int(c.entry_id) for c in custom_items if c.entry_id is not None}

    unknown = keep - set(existing)
    if unknown:
        raise NotFoundError("Inventory entry does not belong to this shipment.", payload={"entry_ids": sorted(unknown)})

    for entry_id in sorted(set(existing) - keep):
        cur = existing[entry_id]
        if int(cur["remaining_quantity"]) < int(cur["quantity_added"]):
            raise ConflictError("Cannot remove an inventory entry that has already been used.")
        conn.execute("DELETE FROM custom_inventory_stock_entries WHERE id=?", (entry_id,))

    for c in custom_items:
        if c.entry_id is None:
            _insert_custom_entry(conn, shipment_id, purchase_date, c)
            continue

        cur = existing[int(c.entry_id)]
        consumed = int(cur["quantity_added"]) - int(cur["remaining_quantity"])
        if int(c.quantity) < consumed:
            raise ValidationError(f"Quantity cannot be less than already used ({consumed}).")
        if int(c.item_id) != int(cur["item_id"]) and consumed > 0:
            raise ConflictError("Cannot change the item of an entry that has already been used.")
        x(
            conn,
            """
            UPDATE custom_inventory_stock_entries
            SET item_id=?, quantity_added=?, remaining_quantity=?, unit_cost=?, purchase_date=?, note=?
            WHERE id=?
            """,
            (
                int(c.item_id),
                int(c.quantity),
                int(c.quantity) - consumed,
                float(c.unit_cost),
                str(purchase_date),
                clean_text(c.note),
                int(cur["id"]),
            ),
        )


def update_shipment(
    conn,
    shipment_id: int,
    *,
    purchase_date: str,
    items: Iterable[ShipmentItemInput],
    custom_items: Iterable[CustomItemInput] = (),
    shipment_name: Optional[str] = None,
    transport_cost: float = 0,
    other_expenses: float = 0,
    funded_from: str = "sales",
    default_decants: int = DEFAULT_DECANTS_PER_BOTTLE,
) -> None:
    """Replace a shipment's header and lines.

    Lines carrying an id are edited in place, lines without one are added and
    stored lines missing from the input are removed. Bottles already sold or
    written off, and containers already used, bound how far quantities can drop.
    """
    items = list(items)
    custom_items = list(custom_items)
    transport, other, funded = _validate_header(purchase_date, transport_cost, other_expenses, funded_from)

    with transaction(conn):
        if q1(conn, "SELECT id FROM stock_shipments WHERE id=?", (int(shipment_id),)) is None:
            raise NotFoundError("Shipment not found.")
        _validate_lines(conn, items, custom_items)

        x(
            conn,
            """
            UPDATE stock_shipments
            SET shipment_name=?, transport_cost=?, other_expenses=?, total_additional_expenses=?,
                purchase_date=?, funded_from=?
            WHERE id=?
            """,
            (clean_text(shipment_name), transport, other, money(transport + other), str(purchase_date), funded, int(shipment_id)),
        )
        _reconcile_batches(conn, shipment_id, items, default_decants)
        _reconcile_custom_entries(conn, shipment_id, str(purchase_date), custom_items)
        sync_shipment_capital_investment(conn, shipment_id)

    log.info("Updated shipment %s", shipment_id)


def delete_shipment(conn, shipment_id: int) -> None:
    with transaction(conn):
        if q1(conn, "SELECT id FROM stock_shipments WHERE id=?", (int(shipment_id),)) is None:
            raise NotFoundError("Shipment not found.")

        sold = q1(
            conn,
            """
            SELECT COUNT(1) AS n
            FROM sale_items si
            JOIN stock_groups g ON g.id = si.stock_group_id
            WHERE g.shipment_id=?
            """,
            (int(shipment_id),),
        )
        if int(sold["n"]) > 0:
            raise HasSalesError(
                "Cannot delete shipment with perfumes that have sales records.",
                payload={"shipment_id": int(shipment_id)},
            )

        for g in q(conn, "SELECT id FROM stock_groups WHERE shipment_id=?", (int(shipment_id),)):
            _delete_batch_rows(conn, int(g["id"]))
        conn.execute("DELETE FROM custom_inventory_stock_entries WHERE shipment_id=?", (int(shipment_id),))
        conn.execute("DELETE FROM stock_shipments WHERE id=?", (int(shipment_id),))
        sync_shipment_capital_investment(conn, shipment_id)

    log.info("Deleted shipment %s", shipment_id)


def delete_stock_batch(conn, stock_group_id: int) -> None:
    with transaction(conn):
        group = q1(conn, "SELECT * FROM stock_groups WHERE id=?", (int(stock_group_id),))
        if group is None:
            raise NotFoundError("Stock batch not found.")
        if _has_sales(conn, stock_group_id):
            raise HasSalesError(
                "Cannot delete a batch that has sales records.", payload={"stock_group_id": int(stock_group_id)}
            )
        _delete_batch_rows(conn, stock_group_id)
        sync_shipment_capital_investment(conn, int(group["shipment_id"]))

    log.info("Deleted stock batch %s", stock_group_id)

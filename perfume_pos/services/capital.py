from __future__ import annotations

from typing import Optional

from perfume_pos.db import q, q1, x, transaction
from perfume_pos.errors import NotFoundError, ValidationError
from perfume_pos.logging_utils import get_logger
from perfume_pos.utils import clean_text, money

log = get_logger(__name__)

ORIGIN_MANUAL = "manual"
ORIGIN_SHIPMENT = "shipment_capital"
CAPITAL_DESCRIPTION_PREFIX = "Stock purchase (capital)"


def capital_description(shipment) -> str:
    name = clean_text(shipment["shipment_name"])
    return f"{CAPITAL_DESCRIPTION_PREFIX} - {name or 'Shipment #' + str(int(shipment['id']))}"


def shipment_total_cost(conn, shipment_id: int) -> float:
    """Batch subtotals + custom entry costs + the shipment's additional expenses."""
    row = q1(
        conn,
        """
        SELECT
          COALESCE((SELECT SUM(subtotal_cost) FROM stock_groups WHERE shipment_id = s.id), 0)
          + COALESCE((SELECT SUM(quantity_added * unit_cost)
                      FROM custom_inventory_stock_entries WHERE shipment_id = s.id), 0)
          + COALESCE(s.total_additional_expenses, 0) AS total
        FROM stock_shipments s
        WHERE s.id=?
        """,
        (int(shipment_id),),
    )
    return money(row["total"]) if row else 0.0


def _delete_linked(conn, shipment_id: int, description: Optional[str]) -> int:
    cur = conn.execute("DELETE FROM investments WHERE source_shipment_id=?", (int(shipment_id),))
    n = cur.rowcount
    if description:
        # Rows written before investments were linked to their shipment.
        cur = conn.execute(
            "DELETE FROM investments WHERE source_shipment_id IS NULL AND origin=? AND description=?",
            (ORIGIN_SHIPMENT, description),
        )
        n += cur.rowcount
    return n


def sync_shipment_capital_investment(conn, shipment_id: int) -> Optional[int]:
    """Keep exactly one investment row for a capital-funded shipment.

    Returns the investment id, or None when the shipment should not carry one
    (missing, funded from sales, or zero cost). Safe to call repeatedly.
    """
    with transaction(conn):
        shipment = q1(conn, "SELECT * FROM stock_shipments WHERE id=?", (int(shipment_id),))
        if shipment is None:
            removed = _delete_linked(conn, shipment_id, None)
            if removed:
                log.info("Removed %s capital investment row(s) of deleted shipment %s", removed, shipment_id)
            return None

        description = capital_description(shipment)
        total = shipment_total_cost(conn, shipment_id)

        if shipment["funded_from"] != "capital" or total <= 0:
            if _delete_linked(conn, shipment_id, description):
                log.info("Removed capital investment of shipment %s", shipment_id)
            return None

        existing = q1(conn, "SELECT id FROM investments WHERE source_shipment_id=?", (int(shipment_id),))
        if existing is None:
            # Adopt a legacy unlinked row instead of duplicating it.
            existing = q1(
                conn,
                """
                SELECT id FROM investments
                WHERE source_shipment_id IS NULL AND origin=? AND description=?
                ORDER BY id LIMIT 1
                """,
                (ORIGIN_SHIPMENT, description),
            )

        if existing is None:
            inv_id = x(
                conn,
                """
                INSERT INTO investments (description, amount, investment_date, source_shipment_id, origin)
                VALUES (?, ?, ?, ?, ?)
                """,
                (description, total, shipment["purchase_date"], int(shipment_id), ORIGIN_SHIPMENT),
            )
        else:
            inv_id = int(existing["id"])
            x(
                conn,
                """
                UPDATE investments
                SET description=?, amount=?, investment_date=?, source_shipment_id=?, origin=?
                WHERE id=?
                """,
                (description, total, shipment["purchase_date"], int(shipment_id), ORIGIN_SHIPMENT, inv_id),
            )
    log.debug("Shipment %s capital investment %s = %.2f", shipment_id, inv_id, total)
    return inv_id


def create_investment(conn, *, description: str, amount: float, investment_date: str) -> int:
    description = clean_text(description)
    if not description:
        raise ValidationError("Description is required.")
    if float(amount) <= 0:
        raise ValidationError("Amount must be > 0.")
    if not investment_date:
        raise ValidationError("Investment date is required.")
    inv_id = x(
        conn,
        "INSERT INTO investments (description, amount, investment_date, origin) VALUES (?, ?, ?, ?)",
        (description, money(amount), str(investment_date), ORIGIN_MANUAL),
    )
    log.info("Recorded capital investment %s: %.2f", inv_id, float(amount))
    return inv_id


def list_investments(conn, *, include_auto: bool = True):
    where = "" if include_auto else f"WHERE origin='{ORIGIN_MANUAL}'"
    return q(conn, f"SELECT * FROM investments {where} ORDER BY investment_date DESC, id DESC")


def delete_investment(conn, investment_id: int) -> None:
    row = q1(conn, "SELECT * FROM investments WHERE id=?", (int(investment_id),))
    if row is None:
        raise NotFoundError("Investment not found.")
    if row["origin"] != ORIGIN_MANUAL:
        raise ValidationError("Shipment capital rows follow their shipment; edit the shipment instead.")
    x(conn, "DELETE FROM investments WHERE id=?", (int(investment_id),))

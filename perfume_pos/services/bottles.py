from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from perfume_pos.config import DEFAULT_DECANTS_PER_BOTTLE
from perfume_pos.db import q, q1, x, transaction
from perfume_pos.errors import ExhaustedError, InsufficientStockError, NotFoundError, ValidationError
from perfume_pos.logging_utils import get_logger
from perfume_pos.services.perfumes import decants_baseline
from perfume_pos.utils import clean_text

log = get_logger(__name__)

SOURCE_AUTO = "auto"
SOURCE_MANUAL = "manual"


@dataclass
class BottleLogEntry:
    id: int
    stock_group_id: int
    perfume_id: int
    bottle_sequence: int
    decants_obtained: int
    completion_source: str


def _load_batch(conn, stock_group_id: int):
    row = q1(
        conn,
        """
        SELECT g.id, g.perfume_id, g.quantity, g.remaining_quantity,
               p.estimated_decants_per_bottle
        FROM stock_groups g
        JOIN perfumes p ON p.id = g.perfume_id
        WHERE g.id=?
        """,
        (int(stock_group_id),),
    )
    if row is None:
        raise NotFoundError("Stock batch not found.", payload={"stock_group_id": int(stock_group_id)})
    return row


def ensure_tracking(conn, stock_group_id: int, perfume_id: int):
    x(
        conn,
        """
        INSERT INTO decant_tracking (stock_group_id, perfume_id)
        VALUES (?, ?)
        ON CONFLICT(stock_group_id) DO NOTHING
        """,
        (int(stock_group_id), int(perfume_id)),
    )
    return q1(conn, "SELECT * FROM decant_tracking WHERE stock_group_id=?", (int(stock_group_id),))


def _log_counts(conn, stock_group_id: int) -> dict:
    row = q1(
        conn,
        """
        SELECT
          COALESCE(SUM(CASE WHEN completion_source='auto' THEN 1 ELSE 0 END), 0) AS auto_count,
          COALESCE(SUM(CASE WHEN completion_source='manual' THEN 1 ELSE 0 END), 0) AS manual_count,
          COALESCE(SUM(decants_obtained), 0) AS decants_logged,
          COALESCE(MAX(bottle_sequence), 0) AS max_sequence
        FROM decant_bottle_logs
        WHERE stock_group_id=?
        """,
        (int(stock_group_id),),
    )
    return {k: int(row[k]) for k in row.keys()}


def _next_sequence(max_sequence: int, bottles_sold: int) -> int:
    # Bottles sold whole take the first positions of a batch.
    return max(int(max_sequence), int(bottles_sold)) + 1


def _append_log(conn, *, stock_group_id: int, perfume_id: int, sequence: int, decants: int, source: str) -> int:
    return x(
        conn,
        """
        INSERT INTO decant_bottle_logs (
            stock_group_id, perfume_id, bottle_sequence, decants_obtained, completion_source
        ) VALUES (?, ?, ?, ?, ?)
        """,
        (int(stock_group_id), int(perfume_id), int(sequence), int(decants), source),
    )


def sync_auto_completed_bottles(
    conn,
    stock_group_id: int,
    *,
    default_decants: int = DEFAULT_DECANTS_PER_BOTTLE,
) -> int:
    """Bring auto completion logs in line with the batch's decant counter.

    Every ``baseline`` decants sold counts as one finished bottle. The count is
    capped at the bottles physically available for decanting (bought, minus
    sold whole, minus finished manually). Returns the number of logs added.
    """
    with transaction(conn):
        batch = _load_batch(conn, stock_group_id)
        tracking = ensure_tracking(conn, stock_group_id, batch["perfume_id"])
        counts = _log_counts(conn, stock_group_id)

        baseline = decants_baseline(batch["estimated_decants_per_bottle"], default_decants)
        bottles_sold = int(tracking["bottles_sold"])
        manual_count = counts["manual_count"]
        cap = max(0, int(batch["quantity"]) - bottles_sold - manual_count)
        auto_done = min(int(tracking["decants_sold"]) // baseline, cap)

        bottles_done = manual_count + max(auto_done, counts["auto_count"])
        if bottles_done != int(tracking["bottles_done"]):
            x(
                conn,
                "UPDATE decant_tracking SET bottles_done=?, updated_at=CURRENT_TIMESTAMP WHERE stock_group_id=?",
                (bottles_done, int(stock_group_id)),
            )

        added = 0
        sequence = counts["max_sequence"]
        for _ in range(counts["auto_count"] + 1, auto_done + 1):
            sequence = _next_sequence(sequence, bottles_sold)
            _append_log(
                conn,
                stock_group_id=stock_group_id,
                perfume_id=batch["perfume_id"],
                sequence=sequence,
                decants=baseline,
                source=SOURCE_AUTO,
            )
            added += 1

    if added:
        log.debug("Batch %s: %s bottle(s) auto-completed (baseline %s)", stock_group_id, added, baseline)
    return added


def mark_bottle_done(conn, stock_group_id: int, decants_obtained: Optional[int] = None) -> BottleLogEntry:
    """Record that one more bottle of the batch was finished by decanting.

    Without ``decants_obtained`` the bottle is credited with every decant sold
    that no earlier log accounts for.
    """
    with transaction(conn):
        batch = _load_batch(conn, stock_group_id)
        tracking = ensure_tracking(conn, stock_group_id, batch["perfume_id"])
        counts = _log_counts(conn, stock_group_id)

        max_decantable = max(0, int(batch["quantity"]) - int(tracking["bottles_sold"]))
        if int(tracking["bottles_done"]) >= max_decantable:
            raise ExhaustedError(
                "No bottles left to mark as done for this batch.",
                payload={"bottles_done": int(tracking["bottles_done"]), "max_decantable": max_decantable},
            )

        if decants_obtained is None:
            decants = max(0, int(tracking["decants_sold"]) - counts["decants_logged"])
        else:
            try:
                decants = int(decants_obtained)
            except (TypeError, ValueError):
                raise ValidationError("Decants obtained must be a whole number.")
        if decants <= 0:
            raise ValidationError("Decants obtained must be > 0.")

        sequence = _next_sequence(counts["max_sequence"], int(tracking["bottles_sold"]))
        log_id = _append_log(
            conn,
            stock_group_id=stock_group_id,
            perfume_id=batch["perfume_id"],
            sequence=sequence,
            decants=decants,
            source=SOURCE_MANUAL,
        )
        x(
            conn,
            """
            UPDATE decant_tracking
            SET bottles_done = bottles_done + 1, updated_at=CURRENT_TIMESTAMP
            WHERE stock_group_id=?
            """,
            (int(stock_group_id),),
        )

    log.info("Batch %s: bottle #%s marked done (%s decants)", stock_group_id, sequence, decants)
    return BottleLogEntry(
        id=log_id,
        stock_group_id=int(stock_group_id),
        perfume_id=int(batch["perfume_id"]),
        bottle_sequence=sequence,
        decants_obtained=decants,
        completion_source=SOURCE_MANUAL,
    )


def mark_out_of_stock(conn, stock_group_id: int, quantity: int = 1, note: Optional[str] = None) -> int:
    """Write bottles off a batch. The batch's cost to recover stays as bought."""
    try:
        qty = int(quantity)
    except (TypeError, ValueError):
        raise ValidationError("Quantity must be a whole number.")
    if qty <= 0:
        raise ValidationError("Quantity must be > 0.")

    with transaction(conn):
        batch = _load_batch(conn, stock_group_id)
        remaining = int(batch["remaining_quantity"])
        if qty > remaining:
            raise InsufficientStockError(
                f"Cannot remove {qty} bottle(s); only {remaining} remaining.",
                payload={"stock_group_id": int(stock_group_id), "remaining_quantity": remaining},
            )
        x(
            conn,
            "UPDATE stock_groups SET remaining_quantity = remaining_quantity - ? WHERE id=?",
            (qty, int(stock_group_id)),
        )
        removal_id = x(
            conn,
            """
            INSERT INTO deleted_bottles (stock_group_id, perfume_id, quantity_removed, reason, note)
            VALUES (?, ?, ?, 'out_of_stock', ?)
            """,
            (int(stock_group_id), int(batch["perfume_id"]), qty, clean_text(note)),
        )

    log.info("Batch %s: %s bottle(s) written off", stock_group_id, qty)
    return removal_id


def list_bottle_logs(conn, stock_group_id: int):
    return q(
        conn,
        """
        SELECT l.*, p.name AS perfume_name
        FROM decant_bottle_logs l
        JOIN perfumes p ON p.id = l.perfume_id
        WHERE l.stock_group_id=?
        ORDER BY l.bottle_sequence
        """,
        (int(stock_group_id),),
    )


def list_deleted_bottles(conn):
    return q(
        conn,
        """
        SELECT d.*, p.name AS perfume_name, s.shipment_name, s.purchase_date
        FROM deleted_bottles d
        JOIN perfumes p ON p.id = d.perfume_id
        JOIN stock_groups g ON g.id = d.stock_group_id
        JOIN stock_shipments s ON s.id = g.shipment_id
        ORDER BY d.removed_at DESC, d.id DESC
        """,
    )

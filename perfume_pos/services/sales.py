from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Optional

from perfume_pos.config import DEFAULT_DECANTS_PER_BOTTLE
from perfume_pos.db import q, q1, x, transaction
from perfume_pos.errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from perfume_pos.logging_utils import get_logger
from perfume_pos.services.bottles import ensure_tracking, sync_auto_completed_bottles
from perfume_pos.services.custom_inventory import available_quantity, consume_fifo, require_decant_container
from perfume_pos.utils import clean_text, money

log = get_logger(__name__)

FULL_BOTTLE = "full_bottle"
DECANT = "decant"
SALE_TYPES = {FULL_BOTTLE, DECANT}


@dataclass
class SaleLineInput:
    stock_group_id: int
    sale_type: str
    quantity: int
    unit_price: float
    perfume_id: Optional[int] = None
    decant_bottle_item_id: Optional[int] = None


@dataclass
class SaleResult:
    sale_id: int
    total_amount: float
    amount_paid: float
    debt_amount: float
    item_ids: list[int] = field(default_factory=list)
    bottles_completed: int = 0


def _normalize_line(line: SaleLineInput) -> SaleLineInput:
    sale_type = str(line.sale_type or "").strip().lower()
    if sale_type not in SALE_TYPES:
        raise ValidationError("Sale type must be 'full_bottle' or 'decant'.")
    try:
        group_id = int(line.stock_group_id)
    except (TypeError, ValueError):
        raise ValidationError("Stock batch is required for every item.")
    try:
        qty = int(line.quantity)
        price = float(line.unit_price)
    except (TypeError, ValueError):
        raise ValidationError("Quantity and unit price must be numbers.")
    if qty <= 0:
        raise ValidationError("Quantity must be > 0.")
    if price < 0:
        raise ValidationError("Unit price cannot be negative.")
    if sale_type == DECANT and line.decant_bottle_item_id is None:
        raise ValidationError("Decant bottle selection is required for decant sales.")
    return SaleLineInput(
        stock_group_id=group_id,
        sale_type=sale_type,
        quantity=qty,
        unit_price=price,
        perfume_id=int(line.perfume_id) if line.perfume_id is not None else None,
        decant_bottle_item_id=int(line.decant_bottle_item_id) if sale_type == DECANT else None,
    )


def _load_batches(conn, lines: list[SaleLineInput]) -> dict[int, dict]:
    batches: dict[int, dict] = {}
    for line in lines:
        if line.stock_group_id in batches:
            continue
        row = q1(
            conn,
            """
            SELECT g.id, g.perfume_id, g.quantity, g.remaining_quantity,
                   COALESCE(t.decants_sold, 0) AS decants_sold,
                   COALESCE(t.bottles_sold, 0) AS bottles_sold,
                   COALESCE(t.bottles_done, 0) AS bottles_done
            FROM stock_groups g
            LEFT JOIN decant_tracking t ON t.stock_group_id = g.id
            WHERE g.id=?
            """,
            (line.stock_group_id,),
        )
        if row is None:
            raise NotFoundError(
                f"Stock batch {line.stock_group_id} not found.", payload={"stock_group_id": line.stock_group_id}
            )
        batches[line.stock_group_id] = dict(row)
    return batches


def _check_stock(conn, lines: list[SaleLineInput], batches: dict[int, dict]) -> dict[int, int]:
    """Validate every line against current stock. Returns container needs per item."""
    full_need: dict[int, int] = defaultdict(int)
    decant_batches: set[int] = set()
    container_need: dict[int, int] = defaultdict(int)

    for line in lines:
        batch = batches[line.stock_group_id]
        if line.perfume_id is None:
            line.perfume_id = int(batch["perfume_id"])
        elif line.perfume_id != int(batch["perfume_id"]):
            raise ValidationError("Perfume does not match the selected stock batch.")

        if line.sale_type == FULL_BOTTLE:
            full_need[line.stock_group_id] += line.quantity
        else:
            decant_batches.add(line.stock_group_id)
            container_need[int(line.decant_bottle_item_id)] += line.quantity

    for group_id, qty in full_need.items():
        batch = batches[group_id]
        if group_id in decant_batches or int(batch["decants_sold"]) > 0:
            raise ConflictError(
                "Cannot sell full bottle: batch already has decant activity.", payload={"stock_group_id": group_id}
            )
        # Bottles finished by decanting are still counted in remaining_quantity.
        sellable = min(
            int(batch["remaining_quantity"]),
            int(batch["quantity"]) - int(batch["bottles_sold"]) - int(batch["bottles_done"]),
        )
        sellable = max(0, sellable)
        if qty > sellable:
            raise InsufficientStockError(
                f"Insufficient stock. Available: {sellable}, requested: {qty}.",
                payload={"stock_group_id": group_id},
            )

    for item_id, qty in container_need.items():
        item = require_decant_container(conn, item_id)
        available = available_quantity(conn, item_id)
        if qty > available:
            raise InsufficientStockError(
                f"Insufficient '{item['name']}' stock. Available: {available}, requested: {qty}.",
                payload={"item_id": item_id},
            )
    return dict(container_need)


def create_sale(
    conn,
    *,
    payment_method: str,
    sale_date: str,
    items: Iterable[SaleLineInput],
    amount_paid: Optional[float] = None,
    customer_name: Optional[str] = None,
    default_decants: int = DEFAULT_DECANTS_PER_BOTTLE,
) -> SaleResult:
    """Record a sale and consume its stock in one transaction.

    Full bottles come off the batch's remaining quantity. Decants add to the
    batch's decant counter (which may auto-complete bottles) and use one
    container each, drawn oldest purchase first. ``amount_paid`` defaults to
    the full total; anything short of it is recorded as debt.
    """
    if not clean_text(payment_method):
        raise ValidationError("Payment method is required.")
    if not sale_date:
        raise ValidationError("Sale date is required.")
    lines = [_normalize_line(it) for it in items]
    if not lines:
        raise ValidationError("At least one item is required.")

    total = money(sum(line.quantity * line.unit_price for line in lines))
    paid = total if amount_paid is None else money(amount_paid)
    if paid < 0:
        raise ValidationError("Amount paid cannot be negative.")
    if paid > total:
        raise ValidationError("Amount paid cannot exceed the sale total.", payload={"total_amount": total})

    with transaction(conn):
        batches = _load_batches(conn, lines)
        container_need = _check_stock(conn, lines, batches)

        sale_id = x(
            conn,
            """
            INSERT INTO sales (customer_name, payment_method, total_amount, amount_paid, debt_amount, sale_date)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (clean_text(customer_name), clean_text(payment_method), total, paid, money(total - paid), str(sale_date)),
        )

        result = SaleResult(sale_id=sale_id, total_amount=total, amount_paid=paid, debt_amount=money(total - paid))
        for line in lines:
            item_id = x(
                conn,
                """
                INSERT INTO sale_items (
                    sale_id, perfume_id, stock_group_id, sale_type, quantity, unit_price, subtotal
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    sale_id,
                    line.perfume_id,
                    line.stock_group_id,
                    line.sale_type,
                    line.quantity,
                    line.unit_price,
                    money(line.quantity * line.unit_price),
                ),
            )
            result.item_ids.append(item_id)

            ensure_tracking(conn, line.stock_group_id, line.perfume_id)
            if line.sale_type == FULL_BOTTLE:
                x(
                    conn,
                    "UPDATE stock_groups SET remaining_quantity = remaining_quantity - ? WHERE id=?",
                    (line.quantity, line.stock_group_id),
                )
                x(
                    conn,
                    """
                    UPDATE decant_tracking
                    SET bottles_sold = bottles_sold + ?, updated_at=CURRENT_TIMESTAMP
                    WHERE stock_group_id=?
                    """,
                    (line.quantity, line.stock_group_id),
                )
            else:
                x(
                    conn,
                    """
                    UPDATE decant_tracking
                    SET decants_sold = decants_sold + ?, updated_at=CURRENT_TIMESTAMP
                    WHERE stock_group_id=?
                    """,
                    (line.quantity, line.stock_group_id),
                )
                result.bottles_completed += sync_auto_completed_bottles(
                    conn, line.stock_group_id, default_decants=default_decants
                )

        for container_id, qty in sorted(container_need.items()):
            consume_fifo(conn, container_id, qty)

    log.info(
        "Sale %s recorded: %s item(s), total %.2f, paid %.2f, debt %.2f",
        sale_id, len(lines), total, paid, result.debt_amount,
    )
    return result


def get_sale(conn, sale_id: int) -> dict:
    sale = q1(conn, "SELECT * FROM sales WHERE id=?", (int(sale_id),))
    if sale is None:
        raise NotFoundError("Sale not found.")
    items = q(
        conn,
        """
        SELECT si.*, p.name AS perfume_name
        FROM sale_items si
        JOIN perfumes p ON p.id = si.perfume_id
        WHERE si.sale_id=?
        ORDER BY si.id
        """,
        (int(sale_id),),
    )
    payments = q(conn, "SELECT * FROM debt_payments WHERE sale_id=? ORDER BY payment_date, id", (int(sale_id),))
    return {"sale": sale, "items": items, "payments": payments}


def list_sales(
    conn,
    *,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    with_debt: bool = False,
    limit: Optional[int] = None,
):
    clauses = []
    params: list = []
    if start_date:
        clauses.append("DATE(s.sale_date) >= DATE(?)")
        params.append(str(start_date))
    if end_date:
        clauses.append("DATE(s.sale_date) <= DATE(?)")
        params.append(str(end_date))
    if with_debt:
        clauses.append("s.debt_amount > 0")
    where = ("WHERE " + " AND ".join(clauses)) if clauses else ""
    limit_sql = f"LIMIT {int(limit)}" if limit else ""
    return q(
        conn,
        f"""
        SELECT s.*,
               (SELECT GROUP_CONCAT(p.name || ' x' || si.quantity || ' (' || si.sale_type || ')', ', ')
                FROM sale_items si JOIN perfumes p ON p.id = si.perfume_id
                WHERE si.sale_id = s.id) AS items
        FROM sales s
        {where}
        ORDER BY s.sale_date DESC, s.id DESC
        {limit_sql}
        """,
        params,
    )

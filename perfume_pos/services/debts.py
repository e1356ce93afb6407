from __future__ import annotations

from perfume_pos.db import q, q1, x, transaction
from perfume_pos.errors import ConflictError, NotFoundError, ValidationError
from perfume_pos.logging_utils import get_logger
from perfume_pos.utils import clean_text, money

log = get_logger(__name__)


def record_debt_payment(
    conn,
    *,
    sale_id: int,
    amount_paid: float,
    payment_date: str,
    payment_method: str,
) -> int:
    """Move ``amount_paid`` from a sale's debt to what it has received."""
    if sale_id is None or not payment_date or not clean_text(payment_method):
        raise ValidationError("Sale, amount, payment date and payment method are required.")
    try:
        amount = money(amount_paid)
    except (TypeError, ValueError):
        raise ValidationError("Amount paid must be a number.")
    if amount <= 0:
        raise ValidationError("Amount paid must be > 0.")

    with transaction(conn):
        sale = q1(conn, "SELECT id, debt_amount FROM sales WHERE id=?", (int(sale_id),))
        if sale is None:
            raise NotFoundError("Sale not found.")
        debt = money(sale["debt_amount"])
        if amount > debt:
            raise ConflictError(
                "Payment amount exceeds outstanding debt.", payload={"debt_amount": debt, "amount_paid": amount}
            )

        payment_id = x(
            conn,
            """
            INSERT INTO debt_payments (sale_id, amount_paid, payment_date, payment_method)
            VALUES (?, ?, ?, ?)
            """,
            (int(sale_id), amount, str(payment_date), clean_text(payment_method)),
        )
        x(
            conn,
            """
            UPDATE sales
            SET debt_amount = ROUND(debt_amount - ?, 2), amount_paid = ROUND(amount_paid + ?, 2)
            WHERE id=?
            """,
            (amount, amount, int(sale_id)),
        )

    log.info("Debt payment %s on sale %s: %.2f", payment_id, sale_id, amount)
    return payment_id


def list_debt_payments(conn, sale_id: int | None = None):
    where = "WHERE dp.sale_id=?" if sale_id is not None else ""
    params = (int(sale_id),) if sale_id is not None else ()
    return q(
        conn,
        f"""
        SELECT dp.*, s.customer_name
        FROM debt_payments dp
        JOIN sales s ON s.id = dp.sale_id
        {where}
        ORDER BY dp.payment_date DESC, dp.id DESC
        """,
        params,
    )
